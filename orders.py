"""
Order lifecycle

Placement (validation, price freeze, vendor sub-orders, inventory decrement),
the status machine, cancellation with inventory restore, return requests and
vendor sub-order updates that roll up to the parent order.
"""

import logging
import time
from datetime import timedelta
from typing import Dict, List, Optional

from fastapi import HTTPException
from pymongo import ReturnDocument
from pymongo.database import Database

from catalog import owner_of, refresh_sales
from cart import stock_of
from database import as_utc, now, to_obj_id
from schemas import Order, Payment, Pricing
from settings import get_settings

logger = logging.getLogger(__name__)

TRANSITIONS: Dict[str, tuple] = {
    "pending": ("confirmed", "cancelled"),
    "confirmed": ("processing", "cancelled"),
    "processing": ("shipped", "cancelled"),
    "shipped": ("delivered",),
    "delivered": ("refunded",),
    "cancelled": ("refunded",),
    "refunded": (),
}
VENDOR_TRANSITIONS = {k: tuple(s for s in v if s != "refunded") for k, v in TRANSITIONS.items()}
CANCELLABLE = ("pending", "confirmed")
RETURN_REASONS = ("defective", "wrong_item", "not_as_described", "changed_mind", "other")


def can_transition(current: str, new: str, table: Dict[str, tuple] = TRANSITIONS) -> bool:
    return new in table.get(current, ())


def next_order_number(database: Database) -> str:
    count = database["order"].count_documents({})
    return f"ORD-{int(time.time() * 1000)}-{count + 1:04d}"


def _round(value: float) -> float:
    return round(value, 2)


def create_order(database: Database, user_id: str, items: List[dict], shipping_address: dict,
                 billing_address: Optional[dict], payment_method: str, notes: Optional[str] = None) -> dict:
    if not items:
        raise HTTPException(status_code=400, detail="Order must contain at least one item")

    # validate everything before anything is written
    order_items, vendor_groups = [], {}
    subtotal = 0.0
    requested: Dict[str, int] = {}
    for item in items:
        requested[str(item["product_id"])] = requested.get(str(item["product_id"]), 0) + int(item["quantity"])
    for item in items:
        quantity = int(item["quantity"])
        try:
            product = database["product"].find_one({"_id": to_obj_id(item["product_id"])})
        except HTTPException:
            product = None
        if not product:
            raise HTTPException(status_code=404, detail=f"Product not found: {item['product_id']}")
        if product.get("status") != "active":
            raise HTTPException(status_code=400, detail=f"Product is not available: {product['name']}")
        track, available = stock_of(product)
        if track and available < requested[str(item["product_id"])]:
            raise HTTPException(status_code=400, detail=f"Insufficient stock for: {product['name']}")

        price = float(product["price"])
        owner_id, owner_type = owner_of(product)
        line = {
            "product_id": str(product["_id"]),
            "name": product["name"],
            "variant": item.get("variant"),
            "quantity": quantity,
            "price": price,
            "total": _round(price * quantity),
            "owner_id": owner_id,
        }
        subtotal += line["total"]
        order_items.append(line)
        if owner_id:
            group = vendor_groups.setdefault(owner_id, {
                "owner_id": owner_id, "owner_type": owner_type, "items": [], "total": 0.0,
                "status": "pending", "tracking": {}, "notes": None,
            })
            group["items"].append(line)
            group["total"] = _round(group["total"] + line["total"])

    settings = get_settings()
    shipping, discount = 0.0, 0.0
    tax = _round(subtotal * settings.tax_rate)
    total = _round(subtotal + shipping + tax - discount)
    stamp = now()
    order = Order(
        order_number=next_order_number(database),
        user_id=user_id,
        items=order_items,
        shipping_address=shipping_address,
        billing_address=billing_address or shipping_address,
        payment=Payment(method=payment_method, amount=total),
        pricing=Pricing(subtotal=_round(subtotal), shipping=shipping, tax=tax, discount=discount, total=total),
        status_history=[{"status": "pending", "changed_at": stamp, "notes": "Order placed"}],
        notes={"customer": notes} if notes else {},
        return_info={"is_returnable": True, "return_window": settings.return_window_days, "return_requests": []},
        vendor_orders=list(vendor_groups.values()),
    ).model_dump()
    order.update(created_at=stamp, updated_at=stamp)
    order["_id"] = database["order"].insert_one(order).inserted_id

    # not transactional: a failure here leaves the order placed with partial decrements
    for line in order_items:
        database["product"].update_one({"_id": to_obj_id(line["product_id"])},
                                       {"$inc": {"inventory.quantity": -line["quantity"]}})
    logger.info("Order %s placed by %s: %d items, total %.2f",
                order["order_number"], user_id, len(order_items), total)
    return order


def _status_changes(order: dict, new_status: str, notes: str = "", actor_id: Optional[str] = None) -> dict:
    stamp = now()
    changes = {"status": new_status, "updated_at": stamp}
    tracking = order.get("tracking") or {}
    if new_status == "shipped" and not tracking.get("shipped_at"):
        changes["tracking.shipped_at"] = stamp
    if new_status == "delivered" and not tracking.get("delivered_at"):
        changes["tracking.delivered_at"] = stamp
    if new_status == "cancelled":
        changes["payment.status"] = "refunded"
        changes["payment.refunded_at"] = stamp
    return {
        "$set": changes,
        "$push": {"status_history": {"status": new_status, "changed_at": stamp, "notes": notes,
                                     "changed_by": actor_id}},
    }


def update_status(database: Database, order: dict, new_status: str, notes: str = "",
                  actor_id: Optional[str] = None) -> dict:
    if not can_transition(order["status"], new_status):
        raise HTTPException(status_code=400,
                            detail=f"Cannot change order status from {order['status']} to {new_status}")
    updated = database["order"].find_one_and_update(
        {"_id": order["_id"]}, _status_changes(order, new_status, notes, actor_id),
        return_document=ReturnDocument.AFTER,
    )
    logger.info("Order %s: %s -> %s", order.get("order_number"), order["status"], new_status)
    if new_status == "delivered":
        for product_id in {it["product_id"] for it in updated.get("items", [])}:
            refresh_sales(database, product_id)
    return updated


def cancel_order(database: Database, order: dict, actor_id: Optional[str] = None,
                 reason: str = "Order cancelled by customer") -> dict:
    if order["status"] not in CANCELLABLE:
        raise HTTPException(status_code=400, detail="Order cannot be cancelled at this stage")
    updated = update_status(database, order, "cancelled", reason, actor_id)
    for line in order.get("items", []):
        database["product"].update_one({"_id": to_obj_id(line["product_id"])},
                                       {"$inc": {"inventory.quantity": line["quantity"]}})
    if updated.get("vendor_orders"):
        database["order"].update_one(
            {"_id": order["_id"]},
            {"$set": {f"vendor_orders.{i}.status": "cancelled" for i in range(len(updated["vendor_orders"]))}},
        )
        for vo in updated["vendor_orders"]:
            vo["status"] = "cancelled"
    logger.info("Order %s cancelled; inventory restored for %d items",
                order.get("order_number"), len(order.get("items", [])))
    return updated


def request_return(database: Database, order: dict, reason: str, description: str = "") -> dict:
    if order["status"] != "delivered":
        raise HTTPException(status_code=400, detail="Only delivered orders can be returned")
    info = order.get("return_info") or {}
    if not info.get("is_returnable", True):
        raise HTTPException(status_code=400, detail="This order is not returnable")
    if reason not in RETURN_REASONS:
        raise HTTPException(status_code=400, detail="Invalid return reason")
    delivered_at = as_utc((order.get("tracking") or {}).get("delivered_at"))
    window = int(info.get("return_window", get_settings().return_window_days))
    if delivered_at and now() - delivered_at > timedelta(days=window):
        raise HTTPException(status_code=400, detail="Return window has expired")
    request = {"reason": reason, "description": description, "status": "pending", "requested_at": now()}
    return database["order"].find_one_and_update(
        {"_id": order["_id"]},
        {"$push": {"return_info.return_requests": request}, "$set": {"updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )


def update_vendor_order(database: Database, order: dict, owner_id: str, new_status: str,
                        tracking_number: Optional[str] = None, carrier: Optional[str] = None,
                        notes: Optional[str] = None) -> dict:
    vendor_orders = order.get("vendor_orders") or []
    index = next((i for i, vo in enumerate(vendor_orders) if vo.get("owner_id") == owner_id), None)
    if index is None:
        raise HTTPException(status_code=403, detail="Not authorized to update this order")
    current = vendor_orders[index].get("status", "pending")
    if not can_transition(current, new_status, VENDOR_TRANSITIONS):
        raise HTTPException(status_code=400, detail=f"Cannot change order status from {current} to {new_status}")

    prefix = f"vendor_orders.{index}"
    changes = {f"{prefix}.status": new_status, "updated_at": now()}
    if tracking_number:
        changes[f"{prefix}.tracking.tracking_number"] = tracking_number
    if carrier:
        changes[f"{prefix}.tracking.carrier"] = carrier
    if notes:
        changes[f"{prefix}.notes"] = notes
    updated = database["order"].find_one_and_update({"_id": order["_id"]}, {"$set": changes},
                                                    return_document=ReturnDocument.AFTER)
    logger.info("Order %s sub-order for %s: %s -> %s", order.get("order_number"), owner_id, current, new_status)

    statuses = {vo.get("status") for vo in updated.get("vendor_orders", [])}
    if len(statuses) == 1 and can_transition(updated["status"], new_status):
        if new_status == "cancelled":
            if updated["status"] in CANCELLABLE:
                updated = cancel_order(database, updated, owner_id, "All vendor orders cancelled")
            return updated
        updated = update_status(database, updated, new_status, "All vendor orders updated", owner_id)
    return updated


def owner_orders(database: Database, owner_id: str, status: Optional[str] = None,
                 skip: int = 0, limit: int = 20) -> tuple:
    if status:
        query = {"vendor_orders": {"$elemMatch": {"owner_id": owner_id, "status": status}}}
    else:
        query = {"vendor_orders.owner_id": owner_id}
    total = database["order"].count_documents(query)
    docs = list(database["order"].find(query).sort("created_at", -1).skip(skip).limit(limit))
    return docs, total


def sub_order_of(order: dict, owner_id: str) -> Optional[dict]:
    return next((vo for vo in order.get("vendor_orders", []) if vo.get("owner_id") == owner_id), None)


def owner_stats(database: Database, owner_id: str) -> dict:
    """Order count and revenue over an owner's sub-orders, overall and for today (UTC)."""
    today = now().replace(hour=0, minute=0, second=0, microsecond=0)
    stats = {"total_orders": 0, "total_revenue": 0.0, "today_orders": 0, "today_revenue": 0.0,
             "by_status": {}}
    for order in database["order"].find({"vendor_orders.owner_id": owner_id}):
        sub = sub_order_of(order, owner_id)
        status = sub.get("status", "pending")
        stats["by_status"][status] = stats["by_status"].get(status, 0) + 1
        if status in ("cancelled", "refunded"):
            continue
        stats["total_orders"] += 1
        stats["total_revenue"] += float(sub.get("total", 0))
        created = as_utc(order.get("created_at"))
        if created and created >= today:
            stats["today_orders"] += 1
            stats["today_revenue"] += float(sub.get("total", 0))
    stats["total_revenue"] = round(stats["total_revenue"], 2)
    stats["today_revenue"] = round(stats["today_revenue"], 2)
    return stats


def revenue_by_month(orders: List[dict], owner_id: Optional[str] = None) -> List[dict]:
    buckets: Dict[str, dict] = {}
    for order in orders:
        if owner_id:
            sub = sub_order_of(order, owner_id)
            if not sub or sub.get("status") in ("cancelled", "refunded"):
                continue
            amount = float(sub.get("total", 0))
        else:
            if order.get("status") in ("cancelled", "refunded"):
                continue
            amount = float((order.get("pricing") or {}).get("total", 0))
        created = as_utc(order.get("created_at")) or now()
        key = created.strftime("%Y-%m")
        bucket = buckets.setdefault(key, {"month": key, "revenue": 0.0, "orders": 0})
        bucket["revenue"] = round(bucket["revenue"] + amount, 2)
        bucket["orders"] += 1
    return [buckets[k] for k in sorted(buckets)]


def top_products(orders: List[dict], owner_id: Optional[str] = None, limit: int = 5) -> List[dict]:
    totals: Dict[str, dict] = {}
    for order in orders:
        if order.get("status") in ("cancelled", "refunded"):
            continue
        for item in order.get("items", []):
            if owner_id and item.get("owner_id") != owner_id:
                continue
            entry = totals.setdefault(item["product_id"], {"product_id": item["product_id"], "name": item.get("name"),
                                                           "quantity": 0, "revenue": 0.0})
            entry["quantity"] += int(item.get("quantity", 0))
            entry["revenue"] = round(entry["revenue"] + float(item.get("total", 0)), 2)
    return sorted(totals.values(), key=lambda e: e["revenue"], reverse=True)[:limit]
