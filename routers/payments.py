import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from pymongo import ReturnDocument
from pymongo.database import Database

import payments
from database import find_by_id, get_db, now, serialize, to_obj_id
from routers import ok
from security import Principal, authorize, protect, require_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/payments", tags=["payments"])


class IntentPayload(BaseModel):
    amount: float = Field(..., gt=0)
    currency: str = Field("usd", min_length=3, max_length=3)
    order_id: Optional[str] = None


class ConfirmPayload(BaseModel):
    payment_intent_id: str = Field(..., min_length=1)
    order_id: Optional[str] = None


class RefundPayload(BaseModel):
    order_id: str
    amount: Optional[float] = Field(None, gt=0)
    reason: Optional[str] = Field(None, max_length=500)


class PaymentMethodPayload(BaseModel):
    payment_method_id: str = Field(..., min_length=1)
    brand: Optional[str] = None
    last4: Optional[str] = Field(None, min_length=4, max_length=4)
    is_default: bool = False


def provider_call(fn, *args, **kwargs):
    try:
        return fn(*args, **kwargs)
    except payments.PaymentError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


def mark_paid(database: Database, query: dict, intent_id: str) -> Optional[dict]:
    return database["order"].find_one_and_update(
        query,
        {"$set": {"payment.status": "completed", "payment.transaction_id": intent_id,
                  "payment.payment_intent_id": intent_id, "payment.paid_at": now(), "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )


@router.post("/create-intent")
def create_intent(payload: IntentPayload, principal: Principal = Depends(protect)):
    intent = provider_call(payments.create_payment_intent, payload.amount, payload.currency,
                           user_id=principal.id, order_id=payload.order_id or "")
    return ok({"client_secret": intent.get("client_secret"), "payment_intent_id": intent.get("id")})


@router.post("/confirm")
def confirm_payment(payload: ConfirmPayload, principal: Principal = Depends(protect),
                    database: Database = Depends(get_db)):
    intent = provider_call(payments.retrieve_payment_intent, payload.payment_intent_id)
    if intent.get("status") != "succeeded":
        raise HTTPException(status_code=400, detail="Payment not completed")
    if payload.order_id:
        order = find_by_id(database, "order", payload.order_id, "Order not found")
        if order["user_id"] != principal.id:
            raise HTTPException(status_code=403, detail="Not authorized to confirm payment for this order")
        mark_paid(database, {"_id": order["_id"]}, intent["id"])
        logger.info("Payment %s confirmed for order %s", intent["id"], order.get("order_number"))
    return ok({"payment_intent": intent, "order_id": payload.order_id})


@router.post("/webhook")
async def stripe_webhook(request: Request, database: Database = Depends(get_db)):
    payload = await request.body()
    event = provider_call(payments.construct_event, payload, request.headers.get("Stripe-Signature"))
    intent = (event.get("data") or {}).get("object") or {}
    kind = event.get("type")
    if kind == "payment_intent.succeeded":
        order_id = (intent.get("metadata") or {}).get("order_id")
        query = {"_id": to_obj_id(order_id)} if order_id else {"payment.payment_intent_id": intent.get("id")}
        mark_paid(database, query, intent.get("id"))
    elif kind == "payment_intent.payment_failed":
        database["order"].update_one({"payment.payment_intent_id": intent.get("id")},
                                     {"$set": {"payment.status": "failed", "updated_at": now()}})
    logger.info("Webhook %s handled for %s", kind, intent.get("id"))
    return ok({"received": True})


@router.post("/refund")
def refund(payload: RefundPayload, admin: Principal = Depends(authorize("admin")),
           database: Database = Depends(get_db)):
    order = find_by_id(database, "order", payload.order_id, "Order not found")
    payment = order.get("payment") or {}
    intent_id = payment.get("payment_intent_id")
    if payment.get("status") not in ("completed", "partially_refunded") or not intent_id:
        raise HTTPException(status_code=400, detail="Order has no completed payment to refund")
    paid = float(payment.get("amount", 0))
    already = float(payment.get("refund_amount", 0))
    amount = payload.amount if payload.amount is not None else paid - already
    if amount <= 0 or already + amount > paid + 0.005:
        raise HTTPException(status_code=400, detail="Refund amount exceeds the amount paid")
    result = provider_call(payments.refund_payment_intent, intent_id, amount)
    total_refunded = round(already + amount, 2)
    status = "refunded" if total_refunded >= paid - 0.005 else "partially_refunded"
    updated = database["order"].find_one_and_update(
        {"_id": order["_id"]},
        {"$set": {"payment.status": status, "payment.refund_amount": total_refunded,
                  "payment.refunded_at": now(), "updated_at": now()},
         "$push": {"status_history": {"status": order["status"], "changed_at": now(),
                                      "notes": payload.reason or f"Refunded {amount:.2f}",
                                      "changed_by": admin.id}}},
        return_document=ReturnDocument.AFTER,
    )
    return ok({"refund_id": result.get("id"), "order": serialize(updated)})


def saved_methods(database: Database, principal: Principal) -> list:
    user = database["user"].find_one({"_id": to_obj_id(principal.id)}, {"payment_methods": 1})
    return list((user or {}).get("payment_methods", []))


def save_methods(database: Database, principal: Principal, methods: list) -> list:
    if methods and not any(m.get("is_default") for m in methods):
        methods[0]["is_default"] = True
    database["user"].update_one({"_id": to_obj_id(principal.id)},
                                {"$set": {"payment_methods": methods, "updated_at": now()}})
    return methods


@router.get("/methods")
def list_methods(principal: Principal = Depends(require_user), database: Database = Depends(get_db)):
    return ok(saved_methods(database, principal))


@router.post("/methods", status_code=201)
def add_method(payload: PaymentMethodPayload, principal: Principal = Depends(require_user),
               database: Database = Depends(get_db)):
    methods = saved_methods(database, principal)
    if any(m["id"] == payload.payment_method_id for m in methods):
        raise HTTPException(status_code=400, detail="Payment method already saved")
    if payload.is_default:
        for m in methods:
            m["is_default"] = False
    entry = {"id": payload.payment_method_id, "brand": payload.brand, "last4": payload.last4,
             "is_default": payload.is_default, "added_at": now()}
    methods.append(entry)
    save_methods(database, principal, methods)
    return ok(serialize(entry))


@router.delete("/methods/{method_id}")
def remove_method(method_id: str, principal: Principal = Depends(require_user),
                  database: Database = Depends(get_db)):
    methods = saved_methods(database, principal)
    if not any(m["id"] == method_id for m in methods):
        raise HTTPException(status_code=404, detail="Payment method not found")
    save_methods(database, principal, [m for m in methods if m["id"] != method_id])
    return ok(None, message="Payment method removed successfully")


@router.put("/methods/{method_id}/default")
def set_default_method(method_id: str, principal: Principal = Depends(require_user),
                       database: Database = Depends(get_db)):
    methods = saved_methods(database, principal)
    if not any(m["id"] == method_id for m in methods):
        raise HTTPException(status_code=404, detail="Payment method not found")
    for m in methods:
        m["is_default"] = m["id"] == method_id
    return ok([serialize(m) for m in save_methods(database, principal, methods)],
              message="Default payment method set successfully")
