from datetime import timedelta

import mongomock
import pytest
from fastapi.testclient import TestClient

import collaborators
import main
import products
import stores
from auth import ROLE_ADMIN, ROLE_STORE_OWNER, create_token
from database import ensure_indexes, get_db, utcnow
from schemas import Address


@pytest.fixture
def db():
    database = mongomock.MongoClient()["bharatverse_test"]
    ensure_indexes(database)
    return database


@pytest.fixture(autouse=True)
def offline(monkeypatch):
    monkeypatch.setattr(main, "geocode", lambda address: None)
    monkeypatch.setattr(collaborators, "SMTP_HOST", None)
    monkeypatch.setattr(collaborators, "GEMINI_API_KEY", None)


@pytest.fixture
def client(db):
    main.app.dependency_overrides[get_db] = lambda: db
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


@pytest.fixture
def make_store(db):
    counter = {"n": 0}

    def _make(status="approved", name=None, user_id=None):
        counter["n"] += 1
        n = counter["n"]
        store = stores.submit_store(db, {
            "name": name or f"Store {n}",
            "username": f"store{n}",
            "email": f"owner{n}@shops.in",
            "contact": "9876543210",
            "password": "secret123",
        }, user_id=user_id)
        if status in ("approved", "rejected", "suspended"):
            store = stores.review_store(db, store["_id"], "rejected" if status == "rejected" else "approved", "admin")
        if status == "suspended":
            store = stores.set_store_active(db, store["_id"], False, "admin")
        return store

    return _make


@pytest.fixture
def make_product(db):
    def _make(store, stock=10, price=500, approved=True, name="Blue Pottery Vase", category="pottery"):
        product = products.create_product(db, store["_id"], {
            "name": name,
            "description": "Hand-painted vase",
            "category": category,
            "mrp": price + 100,
            "price": price,
            "images": ["https://img.shops.in/vase.jpg"],
            "stock_quantity": stock,
        })
        if approved:
            product = products.review_product(db, product["_id"], "approved", "admin")
        return product

    return _make


@pytest.fixture
def address():
    return Address(name="Asha Rao", phone="9812345678", street="12 MG Road", city="Bengaluru",
                   state="Karnataka", pincode="560001")


@pytest.fixture
def expires():
    return utcnow() + timedelta(days=30)


def bearer(payload):
    return {"Authorization": f"Bearer {create_token(payload)}"}


@pytest.fixture
def admin_headers():
    return bearer({"id": "admin", "role": ROLE_ADMIN})


@pytest.fixture
def store_headers():
    def _headers(store):
        store_id = str(store["_id"])
        return bearer({"id": store_id, "store_id": store_id, "role": ROLE_STORE_OWNER})

    return _headers


@pytest.fixture
def customer(client):
    res = client.post("/auth/signup", json={"name": "Asha Rao", "email": "asha@mail.in", "password": "secret123"})
    assert res.status_code == 200
    body = res.json()
    return {"id": body["user"]["id"], "headers": {"Authorization": f"Bearer {body['token']}"}}


