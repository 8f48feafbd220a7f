from datetime import timedelta

from bson import ObjectId

from database import now


def banner(**extra):
    return {"title": "Sale", "description": "Everything must go", "image_url": "/uploads/banners/sale.png", **extra}


def iso(delta):
    return (now() + delta).isoformat()


def test_active_banners_order_and_schedule(client, make_user):
    _, admin = make_user(role="admin")
    for title, priority, order in (("B", 5, 2), ("C", 1, 0), ("A", 5, 1)):
        res = client.post("/api/v1/admin/banners", json=banner(title=title, priority=priority, order=order),
                          headers=admin)
        assert res.status_code == 201
    client.post("/api/v1/admin/banners", json=banner(title="Later", start_date=iso(timedelta(days=2))),
                headers=admin)
    client.post("/api/v1/admin/banners", headers=admin, json=banner(
        title="Over", start_date=iso(timedelta(days=-10)), end_date=iso(timedelta(days=-1))))
    client.post("/api/v1/admin/banners", json=banner(title="Off", is_active=False), headers=admin)

    live = client.get("/api/v1/banners").json()["data"]
    assert [b["title"] for b in live] == ["A", "B", "C"]


def test_banner_end_must_follow_start(client, make_user):
    _, admin = make_user(role="admin")
    res = client.post("/api/v1/admin/banners", headers=admin, json=banner(
        start_date=iso(timedelta(days=3)), end_date=iso(timedelta(days=1))))
    assert res.status_code == 400
    assert res.json()["error"] == "End date must be after start date"


def test_banner_update_keeps_other_fields(client, make_user):
    _, admin = make_user(role="admin")
    created = client.post("/api/v1/admin/banners", json=banner(priority=3), headers=admin).json()["data"]
    res = client.put(f"/api/v1/admin/banners/{created['id']}", json={"title": "Big Sale"}, headers=admin)
    data = res.json()["data"]
    assert data["title"] == "Big Sale"
    assert data["priority"] == 3
    bad = client.put(f"/api/v1/admin/banners/{created['id']}", json={"priority": 11}, headers=admin)
    assert bad.status_code == 400


def test_banner_toggle_and_reorder(client, db, make_user):
    _, admin = make_user(role="admin")
    first = client.post("/api/v1/admin/banners", json=banner(title="One"), headers=admin).json()["data"]
    second = client.post("/api/v1/admin/banners", json=banner(title="Two"), headers=admin).json()["data"]

    toggled = client.patch(f"/api/v1/admin/banners/{first['id']}/toggle", headers=admin).json()["data"]
    assert toggled["is_active"] is False
    assert [b["title"] for b in client.get("/api/v1/banners").json()["data"]] == ["Two"]

    body = {"banner_orders": [{"id": first["id"], "order": 2}, {"id": second["id"], "order": 1}]}
    assert client.put("/api/v1/admin/banners/reorder", json=body, headers=admin).status_code == 200
    listed = client.get("/api/v1/admin/banners", headers=admin).json()["data"]
    assert [b["title"] for b in listed] == ["Two", "One"]


def test_banner_admin_routes_need_admin(client, make_user):
    _, customer = make_user()
    assert client.get("/api/v1/admin/banners", headers=customer).status_code == 403
    assert client.post("/api/v1/admin/banners", json=banner(), headers=customer).status_code == 403


def section(**extra):
    return {"title": "Picked for you", "type": "custom", **extra}


def test_section_keeps_newest_products(client, make_user, make_product):
    _, admin = make_user(role="admin")
    created = client.post("/api/v1/admin/homepage-sections", json=section(max_products=2), headers=admin)
    assert created.status_code == 201
    section_id = created.json()["data"]["id"]
    products = [make_product(name=name) for name in ("One", "Two", "Three")]
    for product in products:
        res = client.post(f"/api/v1/admin/homepage-sections/{section_id}/products",
                          json={"product_id": str(product["_id"])}, headers=admin)
    assert [p["name"] for p in res.json()["data"]["products"]] == ["Two", "Three"]

    missing = client.post(f"/api/v1/admin/homepage-sections/{section_id}/products",
                          json={"product_id": str(ObjectId())}, headers=admin)
    assert missing.status_code == 404


def test_section_product_reorder_and_remove(client, make_user, make_product):
    _, admin = make_user(role="admin")
    a, b, c = (make_product(name=name) for name in ("A", "B", "C"))
    ids = [str(p["_id"]) for p in (a, b, c)]
    section_id = client.post("/api/v1/admin/homepage-sections", json=section(products=ids),
                             headers=admin).json()["data"]["id"]
    url = f"/api/v1/admin/homepage-sections/{section_id}/products"
    res = client.put(f"{url}/reorder", json={"product_ids": list(reversed(ids))}, headers=admin)
    assert [p["name"] for p in res.json()["data"]["products"]] == ["C", "B", "A"]
    res = client.delete(f"{url}/{ids[1]}", headers=admin)
    assert [p["name"] for p in res.json()["data"]["products"]] == ["C", "A"]


def test_section_rejects_unknown_products(client, make_user, make_product):
    _, admin = make_user(role="admin")
    ids = [str(make_product()["_id"]), str(ObjectId())]
    res = client.post("/api/v1/admin/homepage-sections", json=section(products=ids), headers=admin)
    assert res.status_code == 400
    assert res.json()["error"] == "One or more products not found"


def test_visible_sections_with_delivery_filter(client, make_user, make_product):
    _, admin = make_user(role="admin")
    fast = make_product(name="Fast", delivery_options={"instant": True, "next_day": False, "standard": True})
    slow = make_product(name="Slow")
    ids = [str(fast["_id"]), str(slow["_id"])]
    client.post("/api/v1/admin/homepage-sections", json=section(title="Second", order=2, products=ids),
                headers=admin)
    client.post("/api/v1/admin/homepage-sections", json=section(title="First", order=1), headers=admin)
    client.post("/api/v1/admin/homepage-sections", json=section(title="Hidden", is_visible=False), headers=admin)

    body = client.get("/api/v1/homepage-sections").json()
    assert body["count"] == 2
    assert [s["title"] for s in body["data"]] == ["First", "Second"]
    assert [p["name"] for p in body["data"][1]["products"]] == ["Fast", "Slow"]

    filtered = client.get("/api/v1/homepage-sections", params={"delivery": "instant"}).json()
    assert [p["name"] for p in filtered["data"][1]["products"]] == ["Fast"]

    assert len(client.get("/api/v1/admin/homepage-sections", headers=admin).json()["data"]) == 3
