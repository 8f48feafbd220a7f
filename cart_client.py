"""
Client-side cart

A cart that lives on the shopper's machine until they sign in, a thin
requests client for the server cart, and SmartCart, which prefers the server
and falls back to the local copy when the server cannot be reached.
Stock problems end up in `error`; they are never raised to the caller.
"""

import json
import logging
from datetime import datetime, timezone
from typing import List, Optional

import requests

from cart import OutOfStockError, reconcile_add, reconcile_set, stock_of

logger = logging.getLogger(__name__)

TIMEOUT = 10


class LocalCart:
    """Cart lines persisted to a JSON file: [{product, quantity, added_at}]."""

    def __init__(self, path: str):
        self.path = path
        self.error: Optional[str] = None
        self.items: List[dict] = self._load()

    def _load(self) -> List[dict]:
        try:
            with open(self.path, encoding="utf-8") as f:
                items = json.load(f)
        except (OSError, ValueError):
            return []
        return items if isinstance(items, list) else []

    def save(self) -> None:
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(self.items, f)

    def _line(self, product_id: str) -> Optional[dict]:
        return next((i for i in self.items if i["product"].get("id") == product_id), None)

    @property
    def count(self) -> int:
        return sum(i["quantity"] for i in self.items)

    @property
    def total(self) -> float:
        return round(sum(float(i["product"].get("price", 0)) * i["quantity"] for i in self.items), 2)

    def add(self, product: dict, quantity: int = 1) -> None:
        line = self._line(product["id"])
        try:
            new_qty, message = reconcile_add(product, line["quantity"] if line else 0, quantity)
        except OutOfStockError as e:
            self.error = str(e)
            return
        self.error = message
        if line:
            line["quantity"] = new_qty
            line["product"] = product
        else:
            self.items.append({"product": product, "quantity": new_qty,
                               "added_at": datetime.now(timezone.utc).isoformat()})
        self.save()

    def update(self, product_id: str, quantity: int) -> None:
        line = self._line(product_id)
        if not line:
            return
        new_qty, self.error = reconcile_set(line["product"], quantity)
        if new_qty <= 0:
            self.remove(product_id)
            return
        line["quantity"] = new_qty
        self.save()

    def remove(self, product_id: str) -> None:
        self.items = [i for i in self.items if i["product"].get("id") != product_id]
        self.save()

    def clear(self) -> None:
        self.items = []
        self.error = None
        self.save()

    def set_items(self, items: List[dict]) -> None:
        self.items = [{"product": i["product"], "quantity": i["quantity"], "added_at": i.get("added_at")}
                      for i in items]
        self.save()

    def validate_inventory(self, fresh_products: List[dict]) -> None:
        """Clamp lines to fresh stock, drop empty lines and adopt the fresh product data."""
        fresh = {p["id"]: p for p in fresh_products}
        kept = []
        for line in self.items:
            product = fresh.get(line["product"].get("id"))
            if product:
                track, available = stock_of(product)
                if track and line["quantity"] > available:
                    line["quantity"] = available
                    self.error = (f'Inventory updated for "{line["product"].get("name")}". '
                                  "Quantity adjusted to available stock.")
                line["product"] = product
            if line["quantity"] > 0:
                kept.append(line)
        self.items = kept
        self.save()


class CartAPIError(Exception):
    pass


class CartAPI:
    def __init__(self, base_url: str, token: Optional[str] = None, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.session = session or requests.Session()

    def _call(self, method: str, path: str, **kwargs) -> dict:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        response = self.session.request(method, f"{self.base_url}/api/v1{path}", headers=headers,
                                        timeout=TIMEOUT, **kwargs)
        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code >= 400 or not body.get("success", False):
            raise CartAPIError(body.get("error") or f"Request failed with status {response.status_code}")
        return body

    def get(self) -> dict:
        return self._call("GET", "/cart/me")

    def add(self, product_id: str, quantity: int = 1) -> dict:
        return self._call("POST", "/cart/me/items", json={"product_id": product_id, "quantity": quantity})

    def update(self, product_id: str, quantity: int) -> dict:
        return self._call("PATCH", "/cart/me/items", json={"product_id": product_id, "quantity": quantity})

    def replace(self, items: List[dict]) -> dict:
        return self._call("PUT", "/cart/me", json={"items": items})

    def clear(self) -> dict:
        return self._call("DELETE", "/cart/me")

    def products(self, ids: List[str]) -> List[dict]:
        return self._call("GET", "/products/batch", params={"ids": ",".join(ids)})["data"]


class SmartCart:
    """Routes cart operations to the server when signed in, else to the local cart."""

    def __init__(self, local: LocalCart, api: CartAPI):
        self.local = local
        self.api = api

    @property
    def authenticated(self) -> bool:
        return bool(self.api.token)

    @property
    def error(self) -> Optional[str]:
        return self.local.error

    def _adopt(self, body: dict) -> None:
        self.local.set_items(body["data"]["items"])
        self.local.error = body.get("message")

    def _server(self, call, fallback) -> None:
        if not self.authenticated:
            fallback()
            return
        try:
            self._adopt(call())
        except (CartAPIError, requests.RequestException) as e:
            logger.warning("Server cart unavailable, using local cart: %s", e)
            fallback()
            self.local.error = self.local.error or str(e)

    def add(self, product: dict, quantity: int = 1) -> None:
        self._server(lambda: self.api.add(product["id"], quantity), lambda: self.local.add(product, quantity))

    def update(self, product_id: str, quantity: int) -> None:
        self._server(lambda: self.api.update(product_id, quantity), lambda: self.local.update(product_id, quantity))

    def remove(self, product_id: str) -> None:
        self._server(lambda: self.api.update(product_id, 0), lambda: self.local.remove(product_id))

    def clear(self) -> None:
        self._server(self.api.clear, self.local.clear)

    def fetch(self) -> None:
        self._server(self.api.get, lambda: None)

    def sync_after_login(self, token: Optional[str] = None) -> None:
        """Push the local cart to the server and adopt what the server kept."""
        if token:
            self.api.token = token
        lines = [{"product_id": i["product"]["id"], "quantity": i["quantity"]} for i in self.local.items]
        self._server(lambda: self.api.replace(lines), lambda: None)

    def refresh_products(self) -> None:
        ids = [i["product"]["id"] for i in self.local.items]
        if not ids:
            return
        try:
            fresh = self.api.products(ids)
        except (CartAPIError, requests.RequestException) as e:
            logger.warning("Could not refresh cart products: %s", e)
            self.local.error = str(e)
            return
        self.local.validate_inventory(fresh)
