import logging
from datetime import timedelta
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from pymongo.database import Database

import orders
from catalog import product_view
from database import as_utc, find_by_id, get_db, get_documents, now, page_params, pagination, serialize
from routers import ok
from routers.products import create_product, delete_product, update_product
from schemas import OrderStatus, ProductStatus
from security import Principal, authorize

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/vendor", tags=["vendor"], dependencies=[Depends(authorize("vendor"))])

PERIODS = {"7d": 7, "30d": 30, "90d": 90, "1y": 365}
vendor_only = authorize("vendor")


class SubOrderStatusPayload(BaseModel):
    status: Literal["confirmed", "processing", "shipped", "delivered", "cancelled"]
    tracking_number: Optional[str] = Field(None, max_length=100)
    carrier: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = Field(None, max_length=500)


def vendor_view(order: dict, vendor_id: str) -> dict:
    """An order as its vendor sees it: their sub-order and only their items."""
    data = serialize(order)
    data["items"] = [i for i in data.get("items", []) if i.get("owner_id") == vendor_id]
    data["vendor_order"] = orders.sub_order_of(data, vendor_id)
    data.pop("vendor_orders", None)
    return data


@router.get("/dashboard")
def dashboard(principal: Principal = Depends(vendor_only), database: Database = Depends(get_db)):
    products = database["product"]
    stats = orders.owner_stats(database, principal.id)
    by_status = stats["by_status"]
    recent, _ = orders.owner_orders(database, principal.id, limit=10)
    top = products.find({"vendor_id": principal.id, "status": "active"}).sort("sales.count", -1).limit(5)
    since = now() - timedelta(days=365)
    year = [o for o in database["order"].find({"vendor_orders.owner_id": principal.id})
            if (as_utc(o.get("created_at")) or since) >= since]
    return ok({
        "stats": {
            "total_products": products.count_documents({"vendor_id": principal.id}),
            "active_products": products.count_documents({"vendor_id": principal.id, "status": "active"}),
            "total_orders": stats["total_orders"],
            "pending_orders": by_status.get("pending", 0) + by_status.get("confirmed", 0),
            "total_revenue": stats["total_revenue"],
            "today_orders": stats["today_orders"],
            "today_revenue": stats["today_revenue"],
        },
        "recent_orders": [vendor_view(o, principal.id) for o in recent],
        "top_products": [product_view(p) for p in top],
        "monthly_revenue": orders.revenue_by_month(year, principal.id),
    })


@router.get("/products")
def my_products(page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                status: Optional[ProductStatus] = None, category: Optional[str] = None,
                principal: Principal = Depends(vendor_only), database: Database = Depends(get_db)):
    query: dict = {"vendor_id": principal.id}
    if status:
        query["status"] = status
    if category:
        query["category"] = category
    total = database["product"].count_documents(query)
    docs = get_documents(database, "product", query, sort=[("created_at", -1)], **page_params(page, limit))
    return ok([product_view(d) for d in docs], pagination=pagination(page, limit, total))


router.add_api_route("/products", create_product, methods=["POST"], status_code=201)
router.add_api_route("/products/{product_id}", update_product, methods=["PUT"])
router.add_api_route("/products/{product_id}", delete_product, methods=["DELETE"])


@router.get("/orders")
def my_orders(page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
              status: Optional[OrderStatus] = None, principal: Principal = Depends(vendor_only),
              database: Database = Depends(get_db)):
    docs, total = orders.owner_orders(database, principal.id, status=status, skip=(page - 1) * limit, limit=limit)
    return ok([vendor_view(o, principal.id) for o in docs], pagination=pagination(page, limit, total))


@router.get("/orders/{order_id}")
def get_order(order_id: str, principal: Principal = Depends(vendor_only), database: Database = Depends(get_db)):
    order = find_by_id(database, "order", order_id, "Order not found")
    if not orders.sub_order_of(order, principal.id):
        raise HTTPException(status_code=403, detail="Not authorized to access this order")
    return ok(vendor_view(order, principal.id))


@router.put("/orders/{order_id}/status")
def update_order_status(order_id: str, payload: SubOrderStatusPayload, principal: Principal = Depends(vendor_only),
                        database: Database = Depends(get_db)):
    order = find_by_id(database, "order", order_id, "Order not found")
    updated = orders.update_vendor_order(database, order, principal.id, payload.status,
                                         tracking_number=payload.tracking_number, carrier=payload.carrier,
                                         notes=payload.notes)
    return ok(vendor_view(updated, principal.id))


@router.get("/analytics")
def analytics(period: Literal["7d", "30d", "90d", "1y"] = "30d", principal: Principal = Depends(vendor_only),
              database: Database = Depends(get_db)):
    since = now() - timedelta(days=PERIODS[period])
    recent = [o for o in database["order"].find({"vendor_orders.owner_id": principal.id})
              if (as_utc(o.get("created_at")) or since) >= since]
    order_status: dict = {}
    revenue, count = 0.0, 0
    for order in recent:
        sub = orders.sub_order_of(order, principal.id)
        order_status[sub["status"]] = order_status.get(sub["status"], 0) + 1
        if sub["status"] == "delivered":
            revenue += float(sub.get("total", 0))
            count += 1
    product_status: dict = {}
    for product in database["product"].find({"vendor_id": principal.id}, {"status": 1, "created_at": 1}):
        if (as_utc(product.get("created_at")) or since) >= since:
            product_status[product["status"]] = product_status.get(product["status"], 0) + 1
    return ok({
        "period": period,
        "revenue": {"total": round(revenue, 2), "count": count},
        "orders_by_status": order_status,
        "products_by_status": product_status,
        "revenue_by_month": orders.revenue_by_month(recent, principal.id),
        "top_products": orders.top_products(recent, principal.id),
    })
