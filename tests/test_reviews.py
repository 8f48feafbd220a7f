def review_body(product, **extra):
    return {"product_id": str(product["_id"]), "rating": 4, "title": "Solid", "comment": "Does the job.", **extra}


def test_review_requires_delivered_order(client, make_user, make_product, place_order):
    user, headers = make_user()
    lamp = make_product()
    place_order(user, [(lamp, 1)], status="shipped")
    res = client.post("/api/v1/reviews", json=review_body(lamp), headers=headers)
    assert res.status_code == 400
    assert res.json()["error"] == "You can only review products from delivered orders"


def test_review_is_created_pending_and_verified(client, make_user, make_product, place_order):
    user, headers = make_user()
    lamp = make_product()
    order = place_order(user, [(lamp, 1)], status="delivered")
    res = client.post("/api/v1/reviews", json=review_body(lamp), headers=headers)
    assert res.status_code == 201
    data = res.json()["data"]
    assert data["status"] == "pending"
    assert data["verified"] is True
    assert data["order_id"] == str(order["_id"])
    assert data["user"]["name"] == user["name"]


def test_one_review_per_product(client, make_user, make_product, place_order):
    user, headers = make_user()
    lamp = make_product()
    place_order(user, [(lamp, 1)], status="delivered")
    client.post("/api/v1/reviews", json=review_body(lamp), headers=headers)
    res = client.post("/api/v1/reviews", json=review_body(lamp, rating=1), headers=headers)
    assert res.status_code == 400
    assert res.json()["error"] == "You have already reviewed this product"


def test_moderation_recomputes_ratings(client, db, make_user, make_product, place_order):
    _, admin = make_user(role="admin")
    lamp = make_product()
    review_ids = []
    for rating in (5, 4, 4):
        user, headers = make_user()
        place_order(user, [(lamp, 1)], status="delivered")
        res = client.post("/api/v1/reviews", json=review_body(lamp, rating=rating), headers=headers)
        review_ids.append(res.json()["data"]["id"])

    for review_id in review_ids:
        client.put(f"/api/v1/reviews/{review_id}/moderate", json={"status": "approved"}, headers=admin)
    assert db["product"].find_one({"_id": lamp["_id"]})["ratings"] == {"average": 4.3, "count": 3}

    res = client.get(f"/api/v1/reviews/product/{lamp['_id']}")
    body = res.json()
    assert body["pagination"]["total"] == 3
    assert body["stats"]["distribution"] == {"1": 0, "2": 0, "3": 0, "4": 2, "5": 1}

    client.put(f"/api/v1/reviews/{review_ids[0]}/moderate", json={"status": "rejected"}, headers=admin)
    assert db["product"].find_one({"_id": lamp["_id"]})["ratings"] == {"average": 4.0, "count": 2}


def test_approved_review_cannot_be_edited(client, make_user, make_product, place_order):
    _, admin = make_user(role="admin")
    user, headers = make_user()
    lamp = make_product()
    place_order(user, [(lamp, 1)], status="delivered")
    review_id = client.post("/api/v1/reviews", json=review_body(lamp), headers=headers).json()["data"]["id"]
    assert client.put(f"/api/v1/reviews/{review_id}", json={"rating": 2}, headers=headers).status_code == 200
    client.put(f"/api/v1/reviews/{review_id}/moderate", json={"status": "approved"}, headers=admin)
    assert client.put(f"/api/v1/reviews/{review_id}", json={"rating": 1}, headers=headers).status_code == 400


def test_helpful_toggles(client, make_user, make_product, place_order):
    user, headers = make_user()
    _, reader = make_user()
    lamp = make_product()
    place_order(user, [(lamp, 1)], status="delivered")
    review_id = client.post("/api/v1/reviews", json=review_body(lamp), headers=headers).json()["data"]["id"]
    first = client.post(f"/api/v1/reviews/{review_id}/helpful", headers=reader).json()["data"]
    second = client.post(f"/api/v1/reviews/{review_id}/helpful", headers=reader).json()["data"]
    assert first == {"helpful_count": 1, "is_helpful": True}
    assert second == {"helpful_count": 0, "is_helpful": False}


def test_only_the_product_owner_responds(client, make_user, make_product, place_order):
    vendor, vendor_headers = make_user(role="vendor")
    _, other_vendor = make_user(role="vendor")
    user, headers = make_user()
    lamp = make_product(vendor_id=str(vendor["_id"]))
    place_order(user, [(lamp, 1)], status="delivered")
    review_id = client.post("/api/v1/reviews", json=review_body(lamp), headers=headers).json()["data"]["id"]
    url = f"/api/v1/reviews/{review_id}/response"
    assert client.post(url, json={"comment": "Thanks!"}, headers=other_vendor).status_code == 403
    res = client.post(url, json={"comment": "Thanks!"}, headers=vendor_headers)
    assert res.json()["data"]["response"]["comment"] == "Thanks!"
