import pytest

from cart import OutOfStockError, reconcile_add, reconcile_set

LAMP = {"name": "Desk Lamp", "inventory": {"track_quantity": True, "quantity": 3}}


def test_reconcile_add_within_stock():
    assert reconcile_add(LAMP, 1, 2) == (3, None)


def test_reconcile_add_clamps_with_message():
    qty, message = reconcile_add(LAMP, 0, 5)
    assert qty == 3
    assert message == 'Only 3 units of "Desk Lamp" are available. Quantity adjusted.'


def test_reconcile_add_at_cap():
    qty, message = reconcile_add(LAMP, 3, 1)
    assert qty == 3
    assert message == 'Sorry, only 3 units of "Desk Lamp" are available'


def test_reconcile_add_counts_non_positive_request_as_one():
    assert reconcile_add(LAMP, 0, 0) == (1, None)


def test_reconcile_add_out_of_stock():
    with pytest.raises(OutOfStockError, match='"Desk Lamp" is currently out of stock'):
        reconcile_add({"name": "Desk Lamp", "inventory": {"quantity": 0}}, 0, 1)


def test_untracked_inventory_is_not_clamped():
    product = {"name": "E-book", "inventory": {"track_quantity": False, "quantity": 0}}
    assert reconcile_add(product, 4, 10) == (14, None)
    assert reconcile_set(product, 50) == (50, None)


def test_reconcile_set():
    assert reconcile_set(LAMP, 0) == (0, None)
    assert reconcile_set(LAMP, 2) == (2, None)
    assert reconcile_set(LAMP, 9)[0] == 3


def test_add_item_clamps_to_stock(client, make_user, make_product):
    _, headers = make_user()
    lamp = make_product(quantity=3)
    res = client.post("/api/v1/cart/me/items", json={"product_id": str(lamp["_id"]), "quantity": 5},
                      headers=headers)
    assert res.status_code == 200
    body = res.json()
    assert body["data"]["items"][0]["quantity"] == 3
    assert body["data"]["items"][0]["product"]["name"] == "Desk Lamp"
    assert "Quantity adjusted" in body["message"]


def test_add_item_merges_repeated_adds(client, make_user, make_product):
    _, headers = make_user()
    lamp = make_product(quantity=10)
    for _ in range(2):
        client.post("/api/v1/cart/me/items", json={"product_id": str(lamp["_id"]), "quantity": 2}, headers=headers)
    items = client.get("/api/v1/cart/me", headers=headers).json()["data"]["items"]
    assert len(items) == 1
    assert items[0]["quantity"] == 4


def test_add_out_of_stock_item(client, make_user, make_product):
    _, headers = make_user()
    lamp = make_product(quantity=0)
    res = client.post("/api/v1/cart/me/items", json={"product_id": str(lamp["_id"])}, headers=headers)
    assert res.status_code == 400
    assert res.json() == {"success": False, "error": "Out of stock"}


def test_add_unknown_product(client, make_user):
    _, headers = make_user()
    res = client.post("/api/v1/cart/me/items", json={"product_id": "64b000000000000000000000"}, headers=headers)
    assert res.status_code == 404


def test_update_to_zero_removes_line(client, make_user, make_product):
    _, headers = make_user()
    lamp = make_product()
    client.post("/api/v1/cart/me/items", json={"product_id": str(lamp["_id"])}, headers=headers)
    res = client.patch("/api/v1/cart/me/items", json={"product_id": str(lamp["_id"]), "quantity": 0},
                       headers=headers)
    assert res.status_code == 200
    assert res.json()["data"]["items"] == []


def test_update_without_cart(client, make_user, make_product):
    _, headers = make_user()
    lamp = make_product()
    res = client.patch("/api/v1/cart/me/items", json={"product_id": str(lamp["_id"]), "quantity": 2},
                       headers=headers)
    assert res.status_code == 404
    assert res.json()["error"] == "Cart not found"


def test_replace_merges_clamps_and_drops(client, make_user, make_product):
    _, headers = make_user()
    lamp = make_product(quantity=4)
    sold_out = make_product(name="Vase", quantity=0)
    chair = make_product(name="Chair")
    lines = [
        {"product_id": str(lamp["_id"]), "quantity": 3},
        {"product_id": str(lamp["_id"]), "quantity": 3},
        {"product_id": str(sold_out["_id"]), "quantity": 1},
        {"product_id": str(chair["_id"]), "quantity": -2},
        {"product_id": "not-an-id", "quantity": 1},
    ]
    res = client.put("/api/v1/cart/me", json={"items": lines}, headers=headers)
    assert res.status_code == 200
    body = res.json()
    assert [(i["product"]["name"], i["quantity"]) for i in body["data"]["items"]] == [("Desk Lamp", 4)]
    assert '"Vase" is currently out of stock' in body["message"]


def test_clear_cart(client, make_user, make_product):
    _, headers = make_user()
    lamp = make_product()
    client.post("/api/v1/cart/me/items", json={"product_id": str(lamp["_id"])}, headers=headers)
    assert client.delete("/api/v1/cart/me", headers=headers).json()["data"]["items"] == []


def test_cart_requires_login(client):
    res = client.get("/api/v1/cart/me")
    assert res.status_code == 401
    assert res.json()["success"] is False
