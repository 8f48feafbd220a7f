"""
Cart rules

Stock reconciliation shared by the server cart and the client-side cart, plus
the server cart operations. A line never exceeds live inventory while the
product tracks quantity.
"""

import logging
from typing import List, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException
from pymongo import ReturnDocument
from pymongo.database import Database

from catalog import product_view
from database import now
from schemas import Cart

logger = logging.getLogger(__name__)


class OutOfStockError(Exception):
    pass


def stock_of(product: dict) -> Tuple[bool, int]:
    inventory = product.get("inventory") or {}
    track = inventory.get("track_quantity", True) is not False
    return track, max(int(inventory.get("quantity") or 0), 0)


def adjusted_message(product: dict, available: int) -> str:
    return f'Only {available} units of "{product.get("name")}" are available. Quantity adjusted.'


def reconcile_add(product: dict, existing: int, requested: int) -> Tuple[int, Optional[str]]:
    """Quantity of a line after adding `requested` units, and a message when it was clamped."""
    track, available = stock_of(product)
    requested = max(int(requested or 0), 1)
    if track and available <= 0:
        raise OutOfStockError(f'Sorry, "{product.get("name")}" is currently out of stock')
    wanted = existing + requested
    if not track or wanted <= available:
        return wanted, None
    if existing >= available:
        return available, f'Sorry, only {available} units of "{product.get("name")}" are available'
    return available, adjusted_message(product, available)


def reconcile_set(product: dict, requested: int) -> Tuple[int, Optional[str]]:
    """Quantity after setting a line to `requested`; 0 means the line goes away."""
    requested = int(requested or 0)
    if requested <= 0:
        return 0, None
    track, available = stock_of(product)
    if track and requested > available:
        return available, adjusted_message(product, available)
    return requested, None


# Server cart

def _find_product(database: Database, product_id: str) -> Optional[dict]:
    try:
        oid = ObjectId(str(product_id))
    except (InvalidId, TypeError):
        return None
    return database["product"].find_one({"_id": oid})


def cart_view(database: Database, cart: Optional[dict], user_id: str) -> dict:
    items = (cart or {}).get("items", [])
    ids = []
    for it in items:
        try:
            ids.append(ObjectId(it["product_id"]))
        except (InvalidId, TypeError):
            continue
    products = {str(p["_id"]): p for p in database["product"].find({"_id": {"$in": ids}})}
    lines = [
        {
            "product": product_view(products[it["product_id"]]),
            "quantity": it["quantity"],
            "added_at": it.get("added_at"),
        }
        for it in items if it["product_id"] in products
    ]
    return {
        "id": str(cart["_id"]) if cart else None,
        "user_id": user_id,
        "items": lines,
        "updated_at": (cart or {}).get("updated_at"),
    }


def _save_items(database: Database, user_id: str, items: List[dict]) -> dict:
    items = Cart(user_id=user_id, items=items).model_dump()["items"]
    return database["cart"].find_one_and_update(
        {"user_id": user_id},
        {"$set": {"items": items, "updated_at": now()}, "$setOnInsert": {"created_at": now()}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )


def get_cart(database: Database, user_id: str) -> dict:
    return cart_view(database, database["cart"].find_one({"user_id": user_id}), user_id)


def add_item(database: Database, user_id: str, product_id: str, quantity: int = 1) -> Tuple[dict, Optional[str]]:
    product = _find_product(database, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")

    cart = database["cart"].find_one({"user_id": user_id}) or {"items": []}
    items = list(cart.get("items", []))
    line = next((it for it in items if it["product_id"] == str(product["_id"])), None)
    try:
        new_qty, message = reconcile_add(product, line["quantity"] if line else 0, quantity)
    except OutOfStockError:
        raise HTTPException(status_code=400, detail="Out of stock")

    if line:
        line["quantity"] = new_qty
    else:
        items.append({"product_id": str(product["_id"]), "quantity": new_qty, "added_at": now()})
    saved = _save_items(database, user_id, items)
    if message:
        logger.info("Cart of %s clamped for product %s: %s", user_id, product_id, message)
    return cart_view(database, saved, user_id), message


def update_item(database: Database, user_id: str, product_id: str, quantity: int) -> Tuple[dict, Optional[str]]:
    cart = database["cart"].find_one({"user_id": user_id})
    if not cart:
        raise HTTPException(status_code=404, detail="Cart not found")
    items = list(cart.get("items", []))
    line = next((it for it in items if it["product_id"] == product_id), None)
    if not line:
        raise HTTPException(status_code=404, detail="Item not found in cart")

    message = None
    if quantity <= 0:
        items = [it for it in items if it["product_id"] != product_id]
    else:
        product = _find_product(database, product_id)
        if not product:
            raise HTTPException(status_code=404, detail="Product not found")
        new_qty, message = reconcile_set(product, quantity)
        if new_qty <= 0:
            items = [it for it in items if it["product_id"] != product_id]
        else:
            line["quantity"] = new_qty
    saved = _save_items(database, user_id, items)
    return cart_view(database, saved, user_id), message


def replace_cart(database: Database, user_id: str, lines: List[dict]) -> Tuple[dict, Optional[str]]:
    """Replace the whole cart, e.g. when merging a local cart after login.

    Unknown, out-of-stock and non-positive lines are dropped, repeated
    products are merged and every quantity is clamped to stock.
    """
    merged: dict = {}
    for line in lines:
        product_id = str(line.get("product_id") or "")
        quantity = int(line.get("quantity") or 0)
        if not product_id or quantity <= 0:
            continue
        merged[product_id] = merged.get(product_id, 0) + quantity

    items, messages = [], []
    stamp = now()
    for product_id, quantity in merged.items():
        product = _find_product(database, product_id)
        if not product:
            continue
        track, available = stock_of(product)
        if track and available <= 0:
            messages.append(f'Sorry, "{product.get("name")}" is currently out of stock')
            continue
        new_qty, message = reconcile_set(product, quantity)
        if message:
            messages.append(message)
        items.append({"product_id": product_id, "quantity": new_qty, "added_at": stamp})

    saved = _save_items(database, user_id, items)
    return cart_view(database, saved, user_id), " ".join(messages) or None


def clear_cart(database: Database, user_id: str) -> dict:
    return cart_view(database, _save_items(database, user_id, []), user_id)
