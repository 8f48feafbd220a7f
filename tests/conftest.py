import os
import tempfile
from datetime import timedelta

os.environ["JWT_SECRET"] = "test-access-secret"
os.environ["JWT_REFRESH_SECRET"] = "test-refresh-secret"
os.environ["ENVIRONMENT"] = "test"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="marketplace-uploads-")
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test"
for name in ("DATABASE_URL", "DATABASE_NAME", "STRIPE_SECRET_KEY", "CLOUDINARY_CLOUD_NAME",
             "CLOUDINARY_API_KEY", "CLOUDINARY_API_SECRET"):
    os.environ.pop(name, None)

from bson import ObjectId
import mongomock
import pytest
from fastapi.testclient import TestClient

import orders
from database import create_document, get_db, now
from main import app
from routers import auth
from schemas import Product, Seller, User
from security import create_access_token, hash_password

PASSWORD = "secret123"
ADDRESS = {
    "name": "Asha Rao", "phone": "5551234567", "address": "12 Market St", "city": "Springfield",
    "state": "IL", "zip_code": "62701", "country": "US",
}


@pytest.fixture
def db():
    return mongomock.MongoClient()["marketplace_test"]


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    auth.password_limiter.attempts.clear()
    auth.forgot_limiter.attempts.clear()
    yield TestClient(app)
    app.dependency_overrides.clear()


def headers_for(principal_id, role):
    return {"Authorization": f"Bearer {create_access_token(str(principal_id), role)}"}


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def factory(role="customer", email=None, **fields):
        counter["n"] += 1
        email = email or f"{role}{counter['n']}@example.com"
        user = User(name=f"{role.title()} {counter['n']}", email=email, password=hash_password(PASSWORD),
                    role=role, **fields)
        user_id = create_document(db, "user", user)
        return db["user"].find_one({"email": email}), headers_for(user_id, role)
    return factory


@pytest.fixture
def make_seller(db):
    counter = {"n": 0}

    def factory(pincode="560001", lat=12.9716, lng=77.5946, approved=True, **fields):
        counter["n"] += 1
        email = f"seller{counter['n']}@example.com"
        seller = Seller(
            name=f"Seller {counter['n']}", email=email, phone="9876543210", password=hash_password(PASSWORD),
            store_name=f"Store {counter['n']}",
            address={"street": "1 MG Road", "city": "Bengaluru", "state": "KA", "pincode": pincode},
            geo={"type": "Point", "coordinates": [lng, lat]}, is_approved=approved, **fields,
        )
        seller_id = create_document(db, "seller", seller)
        return db["seller"].find_one({"email": email}), headers_for(seller_id, "seller")
    return factory


@pytest.fixture
def make_product(db):
    def factory(name="Desk Lamp", price=25.0, quantity=10, track=True, status="active", category="home", **fields):
        product = Product(
            name=name, description=f"{name} description", price=price, category=category,
            inventory={"track_quantity": track, "quantity": quantity}, status=status, **fields,
        )
        product_id = create_document(db, "product", product)
        return db["product"].find_one({"_id": ObjectId(product_id)})
    return factory


@pytest.fixture
def place_order(db):
    """Place an order through the order service, then force its status."""
    def factory(user, lines, status="pending", delivered_days_ago=0):
        order = orders.create_order(
            db, user_id=str(user["_id"]),
            items=[{"product_id": str(p["_id"]), "quantity": q} for p, q in lines],
            shipping_address=ADDRESS, billing_address=None, payment_method="credit_card",
        )
        changes = {"status": status}
        if status == "delivered":
            changes["tracking.delivered_at"] = now() - timedelta(days=delivered_days_ago)
        db["order"].update_one({"_id": order["_id"]}, {"$set": changes})
        return db["order"].find_one({"_id": order["_id"]})
    return factory
