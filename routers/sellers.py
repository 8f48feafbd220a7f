import logging
import re
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel, Field, ValidationError
from pymongo import ReturnDocument
from pymongo.database import Database

from catalog import attach_owners, geo_point
from database import create_document, find_by_id, get_db, get_documents, now, page_params, pagination, serialize
from orders import owner_stats
from routers import first_error, ok
from routers.auth import token_response
from schemas import GeoPoint, Seller, SellerAddress, Sellerdetails
from security import Principal, authorize, hash_password, require_seller, verify_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/sellers", tags=["sellers"])
details_router = APIRouter(prefix="/api/v1/seller-details", tags=["seller-details"])


class SellerRegisterPayload(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    phone: str
    password: str = Field(..., min_length=6)
    store_name: str = Field(..., min_length=1, max_length=100)
    store_description: Optional[str] = Field(None, max_length=500)
    address: SellerAddress
    geo: GeoPoint
    service_radius_km: float = Field(5, ge=1, le=100)


class SellerLoginPayload(BaseModel):
    email: str
    password: str


class SellerUpdatePayload(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    phone: Optional[str] = None
    store_name: Optional[str] = Field(None, min_length=1, max_length=100)
    store_description: Optional[str] = Field(None, max_length=500)
    address: Optional[SellerAddress] = None
    geo: Optional[GeoPoint] = None
    service_radius_km: Optional[float] = Field(None, ge=1, le=100)
    business_hours: Optional[dict] = None
    payment_settings: Optional[dict] = None


class SellerStatusPayload(BaseModel):
    is_approved: Optional[bool] = None
    is_suspended: Optional[bool] = None


class SellerDetailsPayload(BaseModel):
    seller_name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[dict] = None
    location: Optional[GeoPoint] = None
    pincode: Optional[str] = None
    gst_number: Optional[str] = None


@router.post("/register", status_code=201)
def register_seller(payload: SellerRegisterPayload, response: Response, database: Database = Depends(get_db)):
    email = payload.email.lower()
    if database["seller"].find_one({"email": email}):
        raise HTTPException(status_code=400, detail="Seller already exists with this email")
    data = payload.model_dump()
    data.update(email=email, password=hash_password(payload.password))
    try:
        seller = Seller(**data)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=first_error(e))
    create_document(database, "seller", seller)
    doc = database["seller"].find_one({"email": email})
    logger.info("Seller registered: %s (%s)", doc["_id"], payload.store_name)
    return token_response(database, response, "seller", doc, "seller")


@router.post("/login")
def login_seller(payload: SellerLoginPayload, response: Response, database: Database = Depends(get_db)):
    seller = database["seller"].find_one({"email": payload.email.lower()})
    if not seller or not verify_password(payload.password, seller.get("password")):
        logger.warning("Failed seller login for %s", payload.email.lower())
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if seller.get("is_suspended"):
        raise HTTPException(status_code=401, detail="Account is suspended")
    return token_response(database, response, "seller", seller, "seller")


@router.get("/feed/{seller_id}")
def seller_feed(seller_id: str, database: Database = Depends(get_db)):
    seller = find_by_id(database, "seller", seller_id, "Seller not found")
    products = list(database["product"].find({"seller_id": seller_id, "status": "active"})
                    .sort("created_at", -1).limit(20))
    banners = list(database["banner"].find({"is_active": True}).sort([("priority", -1), ("order", 1)]).limit(5))
    return ok({
        "seller": {"id": seller_id, "name": seller.get("store_name") or seller["name"],
                   "avatar": seller.get("avatar")},
        "banners": [serialize(b) for b in banners],
        "products": attach_owners(database, products),
    })


@router.get("/me")
def get_me(principal: Principal = Depends(require_seller)):
    return ok(serialize(principal.seller))


@router.patch("/me")
def update_me(payload: SellerUpdatePayload, principal: Principal = Depends(require_seller),
              database: Database = Depends(get_db)):
    changes = payload.model_dump(exclude_none=True)
    changes["updated_at"] = now()
    updated = database["seller"].find_one_and_update(
        {"_id": principal.seller["_id"]}, {"$set": changes}, return_document=ReturnDocument.AFTER,
    )
    if "geo" in changes:
        # products follow the store location
        database["product"].update_many({"seller_id": principal.seller_id}, {"$set": {"location": changes["geo"]}})
    return ok(serialize(updated))


@router.get("/dashboard")
def dashboard(principal: Principal = Depends(require_seller), database: Database = Depends(get_db)):
    seller_id = principal.seller_id
    recent = database["order"].find({"vendor_orders.owner_id": seller_id}).sort("created_at", -1).limit(5)
    stats = owner_stats(database, seller_id)
    return ok({
        "products": {
            "total": database["product"].count_documents({"seller_id": seller_id}),
            "active": database["product"].count_documents({"seller_id": seller_id, "status": "active"}),
        },
        "orders": {
            "total": stats["total_orders"],
            "today": stats["today_orders"],
            "by_status": stats["by_status"],
            "revenue": {"total": stats["total_revenue"], "today": stats["today_revenue"]},
        },
        "recent_orders": [serialize(o) for o in recent],
    })


@router.post("/logout")
def logout_seller(response: Response, principal: Principal = Depends(require_seller),
                  database: Database = Depends(get_db)):
    database["seller"].update_one({"_id": principal.seller["_id"]}, {"$set": {"refresh_tokens": []}})
    response.delete_cookie("token")
    return ok(None, message="Logged out successfully")


@router.get("")
def list_sellers(page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                 status: Optional[str] = None, search: Optional[str] = None,
                 _: Principal = Depends(authorize("admin")), database: Database = Depends(get_db)):
    query: dict = {}
    if status == "approved":
        query["is_approved"] = True
    elif status == "pending":
        query["is_approved"] = False
    elif status == "suspended":
        query["is_suspended"] = True
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"name": pattern}, {"email": pattern}, {"store_name": pattern}]
    total = database["seller"].count_documents(query)
    docs = get_documents(database, "seller", query, sort=[("created_at", -1)], **page_params(page, limit))
    return ok([serialize(d) for d in docs], pagination=pagination(page, limit, total))


@router.get("/{seller_id}")
def get_seller(seller_id: str, _: Principal = Depends(authorize("admin")), database: Database = Depends(get_db)):
    return ok(serialize(find_by_id(database, "seller", seller_id, "Seller not found")))


@router.patch("/{seller_id}/status")
def update_seller_status(seller_id: str, payload: SellerStatusPayload,
                         admin: Principal = Depends(authorize("admin")), database: Database = Depends(get_db)):
    seller = find_by_id(database, "seller", seller_id, "Seller not found")
    changes = payload.model_dump(exclude_none=True)
    changes["updated_at"] = now()
    updated = database["seller"].find_one_and_update({"_id": seller["_id"]}, {"$set": changes},
                                                     return_document=ReturnDocument.AFTER)
    logger.info("Admin %s set seller %s status %s", admin.id, seller_id, payload.model_dump(exclude_none=True))
    return ok(serialize(updated))


@router.delete("/{seller_id}")
def delete_seller(seller_id: str, admin: Principal = Depends(authorize("admin")),
                  database: Database = Depends(get_db)):
    seller = find_by_id(database, "seller", seller_id, "Seller not found")
    database["product"].update_many({"seller_id": seller_id}, {"$set": {"status": "archived", "updated_at": now()}})
    database["seller"].delete_one({"_id": seller["_id"]})
    logger.info("Admin %s deleted seller %s", admin.id, seller_id)
    return ok(None, message="Seller deleted successfully")


# Seller details (1:1 with a user account)

def nearby_pipeline(lat: float, lng: float, radius_km: float, limit: int = 50) -> List[dict]:
    return [
        {"$geoNear": {
            "near": geo_point(lat, lng),
            "distanceField": "distance",
            "maxDistance": radius_km * 1000,
            "spherical": True,
            "query": {"location": {"$exists": True, "$ne": None}},
        }},
        {"$limit": limit},
    ]


@details_router.get("/nearby")
def nearby_sellers(lat: float = Query(..., ge=-90, le=90), lng: float = Query(..., ge=-180, le=180),
                   radius: float = Query(5, gt=0), database: Database = Depends(get_db)):
    found = list(database["sellerdetails"].aggregate(nearby_pipeline(lat, lng, radius)))
    users = {str(u["_id"]): u for u in database["user"].find(
        {"role": "seller", "is_suspended": {"$ne": True}}, {"name": 1, "email": 1, "avatar": 1, "created_at": 1},
    )}
    data = []
    for details in found:
        user = users.get(details.get("user_id"))
        if not user:
            continue
        view = serialize(details)
        view["distance"] = round(details.get("distance", 0) / 1000, 2)
        view["user"] = serialize(user)
        data.append(view)
    return ok(data, count=len(data), search_params={"latitude": lat, "longitude": lng, "radius": radius})


@details_router.get("/me")
def get_my_details(principal: Principal = Depends(authorize("seller", "admin")),
                   database: Database = Depends(get_db)):
    return ok(serialize(database["sellerdetails"].find_one({"user_id": principal.id})))


@details_router.put("/me")
def upsert_my_details(payload: SellerDetailsPayload, principal: Principal = Depends(authorize("seller", "admin")),
                      database: Database = Depends(get_db)):
    changes = payload.model_dump(exclude_none=True)
    if "pincode" not in changes and (payload.address or {}).get("pincode"):
        changes["pincode"] = payload.address["pincode"]
    existing = database["sellerdetails"].find_one({"user_id": principal.id}) or {}
    base = {"seller_name": (principal.user or {}).get("name", "")}
    base.update({k: existing[k] for k in Sellerdetails.model_fields if k in existing})
    try:
        details = Sellerdetails(**{**base, **changes, "user_id": principal.id}).model_dump(exclude_none=True)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=first_error(exc))
    details["updated_at"] = now()
    saved = database["sellerdetails"].find_one_and_update(
        {"user_id": principal.id},
        {"$set": details, "$setOnInsert": {"created_at": now()}},
        upsert=True, return_document=ReturnDocument.AFTER,
    )
    return ok(serialize(saved))
