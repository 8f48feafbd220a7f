import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from pymongo.database import Database

import orders
from database import find_by_id, get_db, get_documents, page_params, pagination, serialize
from routers import ok
from schemas import Address, OrderStatus, PaymentMethod, ReturnReason
from security import Principal, protect

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/orders", tags=["orders"])


class OrderItemPayload(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    variant: Optional[dict] = None


class OrderPaymentPayload(BaseModel):
    method: PaymentMethod


class OrderPayload(BaseModel):
    items: List[OrderItemPayload] = Field(..., min_length=1)
    shipping_address: Address
    billing_address: Optional[Address] = None
    payment: OrderPaymentPayload
    notes: Optional[str] = Field(None, max_length=500)


class ReturnPayload(BaseModel):
    reason: ReturnReason
    description: str = Field("", max_length=500)


class CancelPayload(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


def order_for(database: Database, principal: Principal, order_id: str) -> dict:
    order = find_by_id(database, "order", order_id, "Order not found")
    if order["user_id"] != principal.id and not principal.is_admin:
        raise HTTPException(status_code=403, detail="Not authorized to access this order")
    return order


@router.post("", status_code=201)
def create_order(payload: OrderPayload, principal: Principal = Depends(protect),
                 database: Database = Depends(get_db)):
    order = orders.create_order(
        database,
        user_id=principal.id,
        items=[i.model_dump() for i in payload.items],
        shipping_address=payload.shipping_address.model_dump(),
        billing_address=payload.billing_address.model_dump() if payload.billing_address else None,
        payment_method=payload.payment.method,
        notes=payload.notes,
    )
    ordered = [line["product_id"] for line in order["items"]]
    database["cart"].update_one({"user_id": principal.id},
                                {"$pull": {"items": {"product_id": {"$in": ordered}}}})
    return ok(serialize(order))


@router.get("")
def my_orders(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100),
              status: Optional[OrderStatus] = None, principal: Principal = Depends(protect),
              database: Database = Depends(get_db)):
    query: dict = {"user_id": principal.id}
    if status:
        query["status"] = status
    total = database["order"].count_documents(query)
    docs = get_documents(database, "order", query, sort=[("created_at", -1)], **page_params(page, limit))
    return ok([serialize(d) for d in docs], pagination=pagination(page, limit, total))


@router.get("/{order_id}")
def get_order(order_id: str, principal: Principal = Depends(protect), database: Database = Depends(get_db)):
    return ok(serialize(order_for(database, principal, order_id)))


@router.put("/{order_id}/cancel")
def cancel_order(order_id: str, payload: Optional[CancelPayload] = None, principal: Principal = Depends(protect),
                 database: Database = Depends(get_db)):
    order = order_for(database, principal, order_id)
    reason = (payload.reason if payload else None) or "Order cancelled by customer"
    return ok(serialize(orders.cancel_order(database, order, principal.id, reason)))


@router.post("/{order_id}/return")
def request_return(order_id: str, payload: ReturnPayload, principal: Principal = Depends(protect),
                   database: Database = Depends(get_db)):
    order = find_by_id(database, "order", order_id, "Order not found")
    if order["user_id"] != principal.id:
        raise HTTPException(status_code=403, detail="Not authorized to request return for this order")
    updated = orders.request_return(database, order, payload.reason, payload.description)
    logger.info("Return requested for order %s (%s)", order.get("order_number"), payload.reason)
    return ok(serialize(updated["return_info"]["return_requests"][-1]),
              message="Return request submitted successfully")


@router.get("/{order_id}/track")
def track_order(order_id: str, principal: Principal = Depends(protect), database: Database = Depends(get_db)):
    order = order_for(database, principal, order_id)
    return ok(serialize({
        "order_number": order["order_number"],
        "status": order["status"],
        "tracking": order.get("tracking", {}),
        "items": order["items"],
        "shipping_address": order["shipping_address"],
        "status_history": order.get("status_history", []),
    }))
