def vendor_with_orders(make_user, make_product, place_order):
    vendor, headers = make_user(role="vendor")
    other, _ = make_user(role="vendor")
    customer, _ = make_user()
    lamp = make_product(price=25.0, vendor_id=str(vendor["_id"]))
    chair = make_product(name="Chair", price=40.0, vendor_id=str(other["_id"]))
    place_order(customer, [(lamp, 2)])
    place_order(customer, [(lamp, 1), (chair, 1)])
    return vendor, headers


def test_vendor_dashboard(client, make_user, make_product, place_order):
    _, headers = vendor_with_orders(make_user, make_product, place_order)
    data = client.get("/api/v1/vendor/dashboard", headers=headers).json()["data"]
    stats = data["stats"]
    assert stats["total_products"] == 1
    assert stats["total_orders"] == 2
    assert stats["pending_orders"] == 2
    assert stats["total_revenue"] == 75.0
    assert stats["today_orders"] == 2
    assert len(data["monthly_revenue"]) == 1
    assert data["monthly_revenue"][0]["revenue"] == 75.0
    assert all(i["name"] == "Desk Lamp" for o in data["recent_orders"] for i in o["items"])


def test_vendor_analytics(client, make_user, make_product, place_order):
    _, headers = vendor_with_orders(make_user, make_product, place_order)
    data = client.get("/api/v1/vendor/analytics", params={"period": "7d"}, headers=headers).json()["data"]
    assert data["orders_by_status"] == {"pending": 2}
    assert data["revenue"] == {"total": 0.0, "count": 0}
    assert data["products_by_status"] == {"active": 1}
    top = data["top_products"]
    assert [(p["name"], p["quantity"], p["revenue"]) for p in top] == [("Desk Lamp", 3, 75.0)]
    assert client.get("/api/v1/vendor/analytics", params={"period": "2w"}, headers=headers).status_code == 400


def test_vendor_orders_filter_by_sub_order_status(client, make_user, make_product, place_order):
    vendor, headers = vendor_with_orders(make_user, make_product, place_order)
    listed = client.get("/api/v1/vendor/orders", headers=headers).json()
    assert listed["pagination"]["total"] == 2
    order_id = listed["data"][0]["id"]
    client.put(f"/api/v1/vendor/orders/{order_id}/status", json={"status": "confirmed"}, headers=headers)
    confirmed = client.get("/api/v1/vendor/orders", params={"status": "confirmed"}, headers=headers).json()
    assert [o["id"] for o in confirmed["data"]] == [order_id]
    assert confirmed["data"][0]["vendor_order"]["owner_id"] == str(vendor["_id"])


def test_vendor_product_routes(client, make_user):
    _, headers = make_user(role="vendor")
    payload = {"name": "Floor Lamp", "description": "Tall", "price": 80, "category": "home"}
    created = client.post("/api/v1/vendor/products", json=payload, headers=headers)
    assert created.status_code == 201
    product_id = created.json()["data"]["id"]
    drafts = client.get("/api/v1/vendor/products", params={"status": "draft"}, headers=headers).json()
    assert [p["id"] for p in drafts["data"]] == [product_id]
    client.put(f"/api/v1/vendor/products/{product_id}", json={"status": "active"}, headers=headers)
    assert client.get("/api/v1/vendor/products", params={"status": "draft"}, headers=headers).json()["data"] == []


def test_vendor_routes_need_vendor_role(client, make_user):
    _, headers = make_user()
    assert client.get("/api/v1/vendor/dashboard", headers=headers).status_code == 403


def test_admin_dashboard(client, make_user, make_product, place_order, make_seller):
    _, admin = make_user(role="admin")
    make_seller()
    vendor_with_orders(make_user, make_product, place_order)
    stats = client.get("/api/v1/admin/dashboard", headers=admin).json()["data"]["stats"]
    assert stats["total_users"] == 1
    assert stats["total_vendors"] == 2
    assert stats["total_sellers"] == 1
    assert stats["total_orders"] == 2
    assert stats["pending_orders"] == 2
    assert stats["total_revenue"] == 0.0


def test_admin_user_management(client, make_user):
    admin, headers = make_user(role="admin")
    customer, customer_headers = make_user(email="kim@example.com")
    make_user(role="vendor")

    listed = client.get("/api/v1/admin/users", params={"role": "customer"}, headers=headers).json()
    assert [u["email"] for u in listed["data"]] == ["kim@example.com"]

    clash = client.put(f"/api/v1/admin/users/{customer['_id']}", json={"email": admin["email"]}, headers=headers)
    assert clash.status_code == 400
    assert clash.json()["error"] == "Email is already taken"

    own = client.put(f"/api/v1/admin/users/{admin['_id']}/suspend", json={"is_suspended": True}, headers=headers)
    assert own.status_code == 400
    res = client.put(f"/api/v1/admin/users/{customer['_id']}/suspend", json={"is_suspended": True}, headers=headers)
    assert res.json()["data"]["is_suspended"] is True
    assert client.get("/api/v1/auth/me", headers=customer_headers).status_code == 401
    suspended = client.get("/api/v1/admin/users", params={"is_suspended": True}, headers=headers).json()
    assert suspended["pagination"]["total"] == 1


def test_admin_cancel_restores_stock(client, db, make_user, make_product, place_order):
    _, admin = make_user(role="admin")
    customer, _ = make_user()
    lamp = make_product(quantity=5)
    order = place_order(customer, [(lamp, 2)], status="confirmed")
    res = client.put(f"/api/v1/admin/orders/{order['_id']}/status", json={"status": "cancelled"}, headers=admin)
    assert res.json()["data"]["status"] == "cancelled"
    assert db["product"].find_one({"_id": lamp["_id"]})["inventory"]["quantity"] == 5


def test_admin_site_settings(client, make_user):
    _, headers = make_user(role="admin")
    defaults = client.get("/api/v1/admin/settings", headers=headers).json()["data"]
    assert defaults["site_name"] == "Marketplace"
    assert defaults["max_file_size"] == 5 * 1024 * 1024
    assert "png" in defaults["allowed_file_types"]

    res = client.put("/api/v1/admin/settings", json={"site_name": "Corner Shop", "maintenance_mode": True},
                     headers=headers)
    assert res.json()["data"]["site_name"] == "Corner Shop"
    stored = client.get("/api/v1/admin/settings", headers=headers).json()["data"]
    assert stored["maintenance_mode"] is True
    assert stored["currency"] == "USD"
    assert client.put("/api/v1/admin/settings", json={"currency": "EURO"}, headers=headers).status_code == 400


def test_admin_analytics(client, make_user, make_product, place_order):
    _, admin = make_user(role="admin")
    vendor_with_orders(make_user, make_product, place_order)
    data = client.get("/api/v1/admin/analytics", params={"period": "30d"}, headers=admin).json()["data"]
    assert data["orders_by_status"] == {"pending": 2}
    assert data["users_by_role"] == {"admin": 1, "vendor": 2, "customer": 1}
    assert data["top_products"][0]["name"] == "Desk Lamp"
