import re

from bson import ObjectId

from conftest import ADDRESS
from orders import VENDOR_TRANSITIONS, can_transition


def order_payload(*lines):
    return {
        "items": [{"product_id": str(p["_id"]), "quantity": q} for p, q in lines],
        "shipping_address": ADDRESS,
        "payment": {"method": "credit_card"},
    }


def stock(db, product):
    return db["product"].find_one({"_id": product["_id"]})["inventory"]["quantity"]


def test_status_machine():
    assert can_transition("pending", "confirmed")
    assert can_transition("processing", "cancelled")
    assert can_transition("delivered", "refunded")
    assert not can_transition("pending", "delivered")
    assert not can_transition("shipped", "cancelled")
    assert not can_transition("delivered", "refunded", VENDOR_TRANSITIONS)


def test_create_order_freezes_prices_and_decrements_stock(client, db, make_user, make_product):
    vendor, _ = make_user(role="vendor")
    _, headers = make_user()
    lamp = make_product(price=25.0, quantity=10, vendor_id=str(vendor["_id"]))
    res = client.post("/api/v1/orders", json=order_payload((lamp, 2)), headers=headers)
    assert res.status_code == 201
    order = res.json()["data"]
    assert re.match(r"^ORD-\d{13}-\d{4}$", order["order_number"])
    assert order["pricing"] == {"subtotal": 50.0, "shipping": 0.0, "tax": 5.0, "discount": 0.0, "total": 55.0}
    assert order["items"][0]["price"] == 25.0
    assert order["billing_address"] == order["shipping_address"]
    assert order["vendor_orders"][0]["owner_id"] == str(vendor["_id"])
    assert order["vendor_orders"][0]["total"] == 50.0
    assert order["status_history"][0]["status"] == "pending"
    assert stock(db, lamp) == 8


def test_create_order_removes_ordered_lines_from_cart(client, make_user, make_product):
    _, headers = make_user()
    lamp, chair = make_product(), make_product(name="Chair")
    for product in (lamp, chair):
        client.post("/api/v1/cart/me/items", json={"product_id": str(product["_id"])}, headers=headers)
    client.post("/api/v1/orders", json=order_payload((lamp, 1)), headers=headers)
    items = client.get("/api/v1/cart/me", headers=headers).json()["data"]["items"]
    assert [i["product"]["name"] for i in items] == ["Chair"]


def test_insufficient_stock_writes_nothing(client, db, make_user, make_product):
    _, headers = make_user()
    lamp = make_product(quantity=5)
    chair = make_product(name="Chair", quantity=1)
    res = client.post("/api/v1/orders", json=order_payload((lamp, 2), (chair, 3)), headers=headers)
    assert res.status_code == 400
    assert res.json()["error"] == "Insufficient stock for: Chair"
    assert db["order"].count_documents({}) == 0
    assert stock(db, lamp) == 5


def test_repeated_lines_count_against_stock_together(client, db, make_user, make_product):
    _, headers = make_user()
    lamp = make_product(quantity=5)
    res = client.post("/api/v1/orders", json=order_payload((lamp, 3), (lamp, 3)), headers=headers)
    assert res.status_code == 400
    assert res.json()["error"] == "Insufficient stock for: Desk Lamp"
    assert stock(db, lamp) == 5
    assert db["order"].count_documents({}) == 0

    res = client.post("/api/v1/orders", json=order_payload((lamp, 2), (lamp, 3)), headers=headers)
    assert res.status_code == 201
    assert stock(db, lamp) == 0


def test_inactive_and_unknown_products_are_rejected(client, make_user, make_product):
    _, headers = make_user()
    draft = make_product(status="draft")
    res = client.post("/api/v1/orders", json=order_payload((draft, 1)), headers=headers)
    assert res.status_code == 400
    assert res.json()["error"] == "Product is not available: Desk Lamp"

    ghost = {"_id": ObjectId()}
    res = client.post("/api/v1/orders", json=order_payload((ghost, 1)), headers=headers)
    assert res.status_code == 404


def test_cancel_restores_inventory(client, db, make_user, make_product, place_order):
    user, headers = make_user()
    lamp = make_product(quantity=10)
    order = place_order(user, [(lamp, 3)])
    assert stock(db, lamp) == 7
    res = client.put(f"/api/v1/orders/{order['_id']}/cancel", headers=headers)
    assert res.status_code == 200
    data = res.json()["data"]
    assert data["status"] == "cancelled"
    assert data["payment"]["status"] == "refunded"
    assert stock(db, lamp) == 10


def test_cancel_after_shipping_is_rejected(client, db, make_user, make_product, place_order):
    user, headers = make_user()
    lamp = make_product(quantity=10)
    order = place_order(user, [(lamp, 1)], status="shipped")
    res = client.put(f"/api/v1/orders/{order['_id']}/cancel", headers=headers)
    assert res.status_code == 400
    assert res.json()["error"] == "Order cannot be cancelled at this stage"
    assert stock(db, lamp) == 9


def test_other_customers_cannot_see_an_order(client, make_user, make_product, place_order):
    owner, _ = make_user()
    _, stranger = make_user()
    order = place_order(owner, [(make_product(), 1)])
    assert client.get(f"/api/v1/orders/{order['_id']}", headers=stranger).status_code == 403


def test_return_within_window(client, make_user, make_product, place_order):
    user, headers = make_user()
    order = place_order(user, [(make_product(), 1)], status="delivered", delivered_days_ago=5)
    res = client.post(f"/api/v1/orders/{order['_id']}/return", json={"reason": "defective"}, headers=headers)
    assert res.status_code == 200
    assert res.json()["data"]["status"] == "pending"


def test_return_after_window(client, make_user, make_product, place_order):
    user, headers = make_user()
    order = place_order(user, [(make_product(), 1)], status="delivered", delivered_days_ago=40)
    res = client.post(f"/api/v1/orders/{order['_id']}/return", json={"reason": "defective"}, headers=headers)
    assert res.status_code == 400
    assert res.json()["error"] == "Return window has expired"


def test_return_requires_delivery(client, make_user, make_product, place_order):
    user, headers = make_user()
    order = place_order(user, [(make_product(), 1)], status="shipped")
    res = client.post(f"/api/v1/orders/{order['_id']}/return", json={"reason": "other"}, headers=headers)
    assert res.status_code == 400


def test_vendor_sub_orders_roll_up(client, db, make_user, make_product, place_order):
    vendor_a, headers_a = make_user(role="vendor")
    vendor_b, headers_b = make_user(role="vendor")
    customer, _ = make_user()
    lamp = make_product(vendor_id=str(vendor_a["_id"]))
    chair = make_product(name="Chair", vendor_id=str(vendor_b["_id"]))
    order = place_order(customer, [(lamp, 1), (chair, 1)])
    url = f"/api/v1/vendor/orders/{order['_id']}/status"

    res = client.put(url, json={"status": "confirmed"}, headers=headers_a)
    assert res.status_code == 200
    assert res.json()["data"]["vendor_order"]["status"] == "confirmed"
    assert [i["name"] for i in res.json()["data"]["items"]] == ["Desk Lamp"]
    assert db["order"].find_one({"_id": order["_id"]})["status"] == "pending"

    client.put(url, json={"status": "confirmed", "tracking_number": "TRK1"}, headers=headers_b)
    assert db["order"].find_one({"_id": order["_id"]})["status"] == "confirmed"


def test_vendor_cannot_touch_foreign_sub_order(client, make_user, make_product, place_order):
    vendor, _ = make_user(role="vendor")
    _, outsider = make_user(role="vendor")
    customer, _ = make_user()
    order = place_order(customer, [(make_product(vendor_id=str(vendor["_id"])), 1)])
    res = client.put(f"/api/v1/vendor/orders/{order['_id']}/status", json={"status": "confirmed"},
                     headers=outsider)
    assert res.status_code == 403


def test_admin_status_updates(client, db, make_user, make_product, place_order):
    _, admin = make_user(role="admin")
    customer, _ = make_user()
    lamp = make_product(price=10.0)
    order = place_order(customer, [(lamp, 2)], status="confirmed")
    url = f"/api/v1/admin/orders/{order['_id']}/status"

    res = client.put(url, json={"status": "delivered"}, headers=admin)
    assert res.status_code == 400
    assert res.json()["error"] == "Cannot change order status from confirmed to delivered"

    for status in ("processing", "shipped", "delivered"):
        assert client.put(url, json={"status": status}, headers=admin).status_code == 200
    stored = db["order"].find_one({"_id": order["_id"]})
    assert stored["tracking"]["shipped_at"] and stored["tracking"]["delivered_at"]
    assert [h["status"] for h in stored["status_history"]][-3:] == ["processing", "shipped", "delivered"]
    assert db["product"].find_one({"_id": lamp["_id"]})["sales"] == {"total": 20.0, "count": 2}


def test_customers_cannot_use_admin_routes(client, make_user):
    _, headers = make_user()
    res = client.get("/api/v1/admin/orders", headers=headers)
    assert res.status_code == 403
    assert res.json()["error"] == "User role customer is not authorized to access this route"
