import mongomock
import pytest
from fastapi.testclient import TestClient

from config import Settings
from dto import ProductCreateDTO
from main import create_app
from schemas import UserRole

PASSWORD = "Test@1234"


def product_payload(**overrides):
    payload = {
        "name": "Girl Classic OG Deck",
        "description": "Seven-ply maple deck with the OG logo.",
        "base_price": 100.0,
        "category": "Deck",
        "brand": "Girl",
        "sku": "GIRL-DECK-OG",
        "stock": 10,
        "variations": [
            {"size": "8.0", "color": "Red", "sku": "GIRL-OG-80", "stock_quantity": 10},
            {"size": "8.5", "color": "Red", "sku": "GIRL-OG-85", "stock_quantity": 3, "additional_price": 5},
        ],
        "tags": ["deck", "street"],
    }
    payload.update(overrides)
    return payload


def address_payload(**overrides):
    payload = {
        "street": "1 Ramp Way",
        "city": "Portland",
        "state": "OR",
        "zip_code": "97201",
        "country": "USA",
    }
    payload.update(overrides)
    return payload


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def settings():
    return Settings(jwt_secret="test-secret", bcrypt_rounds=4, environment="test")


@pytest.fixture
def db():
    return mongomock.MongoClient().db


@pytest.fixture
def app(settings, db):
    return create_app(settings, db)


@pytest.fixture
def services(app):
    return app.state.services


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def register(client):
    def _register(email="skater@example.com", password=PASSWORD, **extra):
        body = {"first_name": "Tony", "last_name": "Hawk", "email": email, "password": password, **extra}
        res = client.post("/api/auth/register", json=body)
        assert res.status_code == 201, res.text
        return res.json()["data"]
    return _register


@pytest.fixture
def customer(register):
    data = register()
    return {"user": data["user"], "headers": bearer(data["token"])}


@pytest.fixture
def admin(client, services):
    services.users.create_user("Store", "Admin", "admin@example.com", PASSWORD, role=UserRole.ADMIN)
    res = client.post("/api/auth/login", json={"email": "admin@example.com", "password": PASSWORD})
    assert res.status_code == 200, res.text
    return {"user": res.json()["data"]["user"], "headers": bearer(res.json()["data"]["token"])}


@pytest.fixture
def make_product(services):
    def _make(**overrides):
        doc = services.products.create_product(ProductCreateDTO(**product_payload(**overrides)))
        return str(doc["_id"])
    return _make


@pytest.fixture
def product_id(make_product):
    return make_product()
