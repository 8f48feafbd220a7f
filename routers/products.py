import logging
from typing import List, Literal, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pymongo import ReturnDocument
from pymongo.database import Database
from starlette.datastructures import UploadFile

from catalog import (
    attach_owners, category_counts, normalize_images, product_view, search_products, text_search,
    validate_product,
)
from database import create_document, find_by_id, get_db, now, pagination
from routers import ok
from schemas import DeliveryOption
from security import Principal, authorize, optional_auth
from storage import destroy_image, save_uploads

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/products", tags=["products"])

SortOption = Literal["newest", "oldest", "price_low", "price_high", "rating", "popular", "distance"]


async def read_product_payload(request: Request) -> Tuple[dict, List[UploadFile]]:
    """Fields and uploaded files from either a JSON body or a multipart form."""
    if request.headers.get("content-type", "").startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid JSON body")
        if not isinstance(body, dict):
            raise HTTPException(status_code=400, detail="Request body must be an object")
        return body, []
    form = await request.form()
    files = [f for f in form.getlist("images") if isinstance(f, UploadFile) and f.filename]
    fields = {k: v for k, v in form.items() if not isinstance(v, UploadFile)}
    return fields, files


def owns_product(principal: Principal, product: dict) -> bool:
    if principal.is_admin:
        return True
    if product.get("vendor_id") and product["vendor_id"] == principal.id:
        return True
    return bool(product.get("seller_id")) and product["seller_id"] == principal.seller_id


async def apply_image_changes(product: dict, changes: dict, files: List[UploadFile]) -> None:
    """Append new uploads to the image list and destroy images the update dropped."""
    if files:
        uploaded = await save_uploads(files, "products")
        changes["images"] = normalize_images(changes.get("images", product.get("images", [])) + uploaded)
    if "images" in changes:
        kept = {img["public_id"] for img in changes["images"]}
        for img in product.get("images", []):
            if img.get("public_id") not in kept:
                destroy_image(img.get("public_id"))


@router.get("")
def list_products(page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                  category: Optional[str] = None,
                  min_price: Optional[float] = Query(None, ge=0), max_price: Optional[float] = Query(None, ge=0),
                  min_rating: Optional[float] = Query(None, ge=0, le=5),
                  sort: SortOption = "newest", delivery: Optional[DeliveryOption] = None,
                  lat: Optional[float] = Query(None, ge=-90, le=90),
                  lng: Optional[float] = Query(None, ge=-180, le=180),
                  pincode: Optional[str] = None, radius_km: float = Query(5, gt=0, le=500),
                  database: Database = Depends(get_db)):
    docs, total = search_products(
        database, page=page, limit=limit, category=category, min_price=min_price, max_price=max_price,
        min_rating=min_rating, sort=sort, delivery=delivery, lat=lat, lng=lng, pincode=pincode,
        radius_km=radius_km,
    )
    return ok(docs, pagination=pagination(page, limit, total))


@router.get("/batch")
def products_by_ids(ids: str = Query(..., min_length=1), database: Database = Depends(get_db)):
    oids = []
    for raw in ids.split(","):
        try:
            oids.append(ObjectId(raw.strip()))
        except (InvalidId, TypeError):
            continue
    docs = list(database["product"].find({"_id": {"$in": oids}}))
    return ok(attach_owners(database, docs))


@router.get("/featured")
def featured_products(limit: int = Query(8, ge=1, le=50), database: Database = Depends(get_db)):
    docs = database["product"].find({"status": "active", "featured": True}).sort("created_at", -1).limit(limit)
    return ok(attach_owners(database, list(docs)))


@router.get("/categories")
def categories(database: Database = Depends(get_db)):
    return ok(category_counts(database))


@router.get("/search")
def search(q: str = Query(..., min_length=1), page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
           database: Database = Depends(get_db)):
    docs, total = text_search(database, q, limit=limit, skip=(page - 1) * limit)
    return ok(docs, pagination=pagination(page, limit, total))


@router.get("/{product_id}")
def get_product(product_id: str, principal: Optional[Principal] = Depends(optional_auth),
                database: Database = Depends(get_db)):
    product = find_by_id(database, "product", product_id, "Product not found")
    if product.get("status") != "active" and not (principal and owns_product(principal, product)):
        raise HTTPException(status_code=404, detail="Product not found")
    return ok(attach_owners(database, [product])[0])


@router.post("", status_code=201)
async def create_product(request: Request, principal: Principal = Depends(authorize("vendor", "admin")),
                         database: Database = Depends(get_db)):
    fields, files = await read_product_payload(request)
    data = validate_product(fields)
    if files:
        uploaded = await save_uploads(files, "products")
        data["images"] = normalize_images(data["images"] + uploaded)
    data["vendor_id"] = principal.id
    product_id = create_document(database, "product", data)
    logger.info("Product %s created by %s", product_id, principal.id)
    return ok(product_view(find_by_id(database, "product", product_id)))


@router.put("/{product_id}")
async def update_product(product_id: str, request: Request,
                         principal: Principal = Depends(authorize("vendor", "admin")),
                         database: Database = Depends(get_db)):
    product = find_by_id(database, "product", product_id, "Product not found")
    if not owns_product(principal, product):
        raise HTTPException(status_code=403, detail="Not authorized to update this product")
    fields, files = await read_product_payload(request)
    changes = validate_product(fields, existing=product)
    await apply_image_changes(product, changes, files)
    changes["updated_at"] = now()
    updated = database["product"].find_one_and_update({"_id": product["_id"]}, {"$set": changes},
                                                      return_document=ReturnDocument.AFTER)
    return ok(product_view(updated))


@router.delete("/{product_id}")
def delete_product(product_id: str, principal: Principal = Depends(authorize("vendor", "admin")),
                   database: Database = Depends(get_db)):
    product = find_by_id(database, "product", product_id, "Product not found")
    if not owns_product(principal, product):
        raise HTTPException(status_code=403, detail="Not authorized to delete this product")
    for img in product.get("images", []):
        destroy_image(img.get("public_id"))
    database["product"].delete_one({"_id": product["_id"]})
    logger.info("Product %s deleted by %s", product_id, principal.id)
    return ok(None, message="Product deleted successfully")
