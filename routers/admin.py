import logging
import re
from datetime import timedelta
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from pymongo import ReturnDocument
from pymongo.database import Database

import orders
from catalog import attach_owners, product_view
from database import (
    as_utc, find_by_id, get_db, get_documents, now, page_params, pagination, serialize, to_obj_id,
)
from routers import ok
from schemas import OrderStatus, ProductStatus, UserRole
from security import Principal, authorize
from storage import ALLOWED_EXTENSIONS, MAX_BYTES

logger = logging.getLogger(__name__)

admin_only = authorize("admin")
router = APIRouter(prefix="/api/v1/admin", tags=["admin"], dependencies=[Depends(admin_only)])

PERIODS = {"7d": 7, "30d": 30, "90d": 90, "1y": 365}
SETTINGS_KEY = "site"
DEFAULT_SITE_SETTINGS = {
    "site_name": "Marketplace",
    "site_description": "Multi-role e-commerce platform",
    "maintenance_mode": False,
    "allow_registration": True,
    "currency": "USD",
    "timezone": "UTC",
}


class UserUpdatePayload(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    email: Optional[str] = Field(None, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    role: Optional[UserRole] = None


class SuspendPayload(BaseModel):
    is_suspended: bool


class OrderStatusPayload(BaseModel):
    status: OrderStatus
    notes: str = Field("", max_length=500)
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None


class SiteSettingsPayload(BaseModel):
    site_name: Optional[str] = Field(None, min_length=1, max_length=100)
    site_description: Optional[str] = Field(None, max_length=500)
    maintenance_mode: Optional[bool] = None
    allow_registration: Optional[bool] = None
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    timezone: Optional[str] = None


def since(period: str):
    return now() - timedelta(days=PERIODS[period])


def created_after(doc: dict, start) -> bool:
    created = as_utc(doc.get("created_at"))
    return created is not None and created >= start


def site_settings(database: Database) -> dict:
    stored = database["setting"].find_one({"key": SETTINGS_KEY}) or {}
    data = {**DEFAULT_SITE_SETTINGS, **{k: stored[k] for k in DEFAULT_SITE_SETTINGS if k in stored}}
    data["max_file_size"] = MAX_BYTES
    data["allowed_file_types"] = sorted(ALLOWED_EXTENSIONS)
    return data


@router.get("/dashboard")
def dashboard(database: Database = Depends(get_db)):
    year = [o for o in database["order"].find({}) if created_after(o, since("1y"))]
    delivered = database["order"].find({"status": "delivered"}, {"pricing.total": 1})
    recent = database["order"].find({}).sort("created_at", -1).limit(10)
    top = database["product"].find({"status": "active"}).sort("sales.count", -1).limit(5)
    return ok({
        "stats": {
            "total_users": database["user"].count_documents({"role": "customer"}),
            "total_vendors": database["user"].count_documents({"role": "vendor"}),
            "total_sellers": database["seller"].count_documents({}),
            "total_products": database["product"].count_documents({}),
            "total_orders": database["order"].count_documents({}),
            "pending_orders": database["order"].count_documents({"status": {"$in": ["pending", "confirmed"]}}),
            "total_revenue": round(sum(float((o.get("pricing") or {}).get("total", 0)) for o in delivered), 2),
        },
        "recent_orders": [serialize(o) for o in recent],
        "top_products": [product_view(p) for p in top],
        "monthly_revenue": orders.revenue_by_month(year),
    })


@router.get("/users")
def list_users(page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100), role: Optional[UserRole] = None,
               search: Optional[str] = None, is_suspended: Optional[bool] = None,
               database: Database = Depends(get_db)):
    query: dict = {}
    if role:
        query["role"] = role
    if is_suspended is not None:
        query["is_suspended"] = is_suspended
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"name": pattern}, {"email": pattern}]
    total = database["user"].count_documents(query)
    docs = get_documents(database, "user", query, sort=[("created_at", -1)], **page_params(page, limit))
    return ok([serialize(d) for d in docs], pagination=pagination(page, limit, total))


@router.get("/users/{user_id}")
def get_user(user_id: str, database: Database = Depends(get_db)):
    return ok(serialize(find_by_id(database, "user", user_id, "User not found")))


@router.put("/users/{user_id}")
def update_user(user_id: str, payload: UserUpdatePayload, database: Database = Depends(get_db)):
    changes = payload.model_dump(exclude_none=True)
    if "email" in changes:
        changes["email"] = changes["email"].lower()
        clash = database["user"].find_one({"email": changes["email"]})
        if clash and str(clash["_id"]) != user_id:
            raise HTTPException(status_code=400, detail="Email is already taken")
    changes["updated_at"] = now()
    updated = database["user"].find_one_and_update({"_id": to_obj_id(user_id)}, {"$set": changes},
                                                   return_document=ReturnDocument.AFTER)
    if not updated:
        raise HTTPException(status_code=404, detail="User not found")
    return ok(serialize(updated))


@router.put("/users/{user_id}/suspend")
def suspend_user(user_id: str, payload: SuspendPayload, admin: Principal = Depends(admin_only),
                 database: Database = Depends(get_db)):
    if user_id == admin.id:
        raise HTTPException(status_code=400, detail="You cannot suspend your own account")
    updated = database["user"].find_one_and_update(
        {"_id": to_obj_id(user_id)}, {"$set": {"is_suspended": payload.is_suspended, "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise HTTPException(status_code=404, detail="User not found")
    logger.info("User %s suspended=%s by %s", user_id, payload.is_suspended, admin.id)
    return ok(serialize(updated))


@router.get("/products")
def list_products(page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                  status: Optional[ProductStatus] = None, category: Optional[str] = None,
                  vendor_id: Optional[str] = None, seller_id: Optional[str] = None, search: Optional[str] = None,
                  database: Database = Depends(get_db)):
    query: dict = {}
    for key, value in (("status", status), ("category", category), ("vendor_id", vendor_id),
                       ("seller_id", seller_id)):
        if value:
            query[key] = value
    if search:
        query["name"] = {"$regex": re.escape(search), "$options": "i"}
    total = database["product"].count_documents(query)
    docs = get_documents(database, "product", query, sort=[("created_at", -1)], **page_params(page, limit))
    return ok(attach_owners(database, list(docs)), pagination=pagination(page, limit, total))


@router.get("/orders")
def list_orders(page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                status: Optional[OrderStatus] = None, database: Database = Depends(get_db)):
    query = {"status": status} if status else {}
    total = database["order"].count_documents(query)
    docs = get_documents(database, "order", query, sort=[("created_at", -1)], **page_params(page, limit))
    return ok([serialize(d) for d in docs], pagination=pagination(page, limit, total))


@router.put("/orders/{order_id}/status")
def set_order_status(order_id: str, payload: OrderStatusPayload, admin: Principal = Depends(admin_only),
                     database: Database = Depends(get_db)):
    order = find_by_id(database, "order", order_id, "Order not found")
    if payload.status == "cancelled" and order["status"] in orders.CANCELLABLE:
        updated = orders.cancel_order(database, order, admin.id, payload.notes or "Order cancelled by admin")
    else:
        updated = orders.update_status(database, order, payload.status, payload.notes, admin.id)
    tracking = {f"tracking.{k}": v for k, v in (("tracking_number", payload.tracking_number),
                                                ("carrier", payload.carrier)) if v}
    if tracking:
        updated = database["order"].find_one_and_update({"_id": order["_id"]}, {"$set": tracking},
                                                        return_document=ReturnDocument.AFTER)
    return ok(serialize(updated))


@router.get("/analytics")
def analytics(period: Literal["7d", "30d", "90d", "1y"] = "30d", database: Database = Depends(get_db)):
    start = since(period)
    recent = [o for o in database["order"].find({}) if created_after(o, start)]
    delivered = [o for o in recent if o.get("status") == "delivered"]

    def count_by(docs, key):
        counts: dict = {}
        for doc in docs:
            counts[doc.get(key)] = counts.get(doc.get(key), 0) + 1
        return counts

    users = [u for u in database["user"].find({}, {"role": 1, "created_at": 1}) if created_after(u, start)]
    products = [p for p in database["product"].find({}, {"status": 1, "created_at": 1}) if created_after(p, start)]
    return ok({
        "period": period,
        "revenue": {
            "total": round(sum(float(o["pricing"]["total"]) for o in delivered), 2),
            "count": len(delivered),
        },
        "orders_by_status": count_by(recent, "status"),
        "users_by_role": count_by(users, "role"),
        "products_by_status": count_by(products, "status"),
        "revenue_by_month": orders.revenue_by_month(recent),
        "top_products": orders.top_products(recent),
    })


@router.get("/settings")
def get_site_settings(database: Database = Depends(get_db)):
    return ok(site_settings(database))


@router.put("/settings")
def update_site_settings(payload: SiteSettingsPayload, admin: Principal = Depends(admin_only),
                         database: Database = Depends(get_db)):
    changes = payload.model_dump(exclude_none=True)
    changes.update(updated_at=now(), updated_by=admin.id)
    database["setting"].update_one({"key": SETTINGS_KEY},
                                   {"$set": changes, "$setOnInsert": {"created_at": now()}}, upsert=True)
    logger.info("Site settings updated by %s: %s", admin.id, sorted(changes))
    return ok(site_settings(database))
