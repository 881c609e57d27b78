from datetime import datetime, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

import config
import database
import main
from security import create_token


@pytest.fixture(autouse=True)
def jwt_secret(monkeypatch):
    monkeypatch.setattr(config, "JWT_SECRET", "test-secret-for-maktabati-tokens-0123456789")


@pytest.fixture
def db(monkeypatch):
    mock_db = mongomock.MongoClient()["maktabati_test"]
    monkeypatch.setattr(database, "db", mock_db)
    return mock_db


@pytest.fixture
def client(db):
    with TestClient(main.app) as c:
        yield c


def make_admin(db, role="admin", email="admin@maktabati.ma", username="admin", is_active=True):
    now = datetime.now(timezone.utc)
    res = db["adminuser"].insert_one({
        "username": username,
        "email": email,
        "passwordHash": "",
        "role": role,
        "isActive": is_active,
        "lastLogin": None,
        "createdAt": now,
        "updatedAt": now,
    })
    return {"Authorization": f"Bearer {create_token(str(res.inserted_id), email, role)}"}


@pytest.fixture
def admin_headers(db):
    return make_admin(db)


@pytest.fixture
def super_admin_headers(db):
    return make_admin(db, role="super_admin", email="owner@maktabati.ma", username="owner")


def make_category(db, name="Stationery"):
    now = datetime.now(timezone.utc)
    return str(db["category"].insert_one({"name": name, "description": None, "createdAt": now, "updatedAt": now}).inserted_id)


def make_product(db, category, name="Blue Pen", price=10.0, stock=5, tags=None, description="Smooth ink", is_active=True, created_at=None):
    now = created_at or datetime.now(timezone.utc)
    return str(db["product"].insert_one({
        "name": name,
        "description": description,
        "price": price,
        "category": category,
        "images": ["https://res.cloudinary.com/demo/pen.jpg"],
        "stock": stock,
        "isActive": is_active,
        "tags": tags if tags is not None else [],
        "createdAt": now,
        "updatedAt": now,
    }).inserted_id)


def order_body(product_id="p1", price=45.99, quantity=2, phone="0612345678", name="Amina", city="Rabat"):
    total = round(price * quantity, 2)
    return {
        "customer": {"name": name, "city": city, "phone": phone},
        "items": [{"productId": product_id, "name": "Algebra Textbook", "price": price, "quantity": quantity, "total": total}],
        "totalAmount": total,
        "totalItems": quantity,
    }
