import mongomock
import pytest
from fastapi.testclient import TestClient

import config
import database
from main import app
from payments import MercadoPagoClient, get_gateway

ADMIN_EMAIL = "admin@example.com"


class _Endpoint:
    def __init__(self, sdk, path):
        self.sdk = sdk
        self.path = path

    def create(self, data):
        return self.sdk.dispatch("POST", self.path, data)

    def get(self, resource_id):
        return self.sdk.dispatch("GET", f"{self.path}/{resource_id}", None)


class StubSDK:
    """Stands in for mercadopago.SDK; every call is recorded and answered by handler."""

    def __init__(self, handler):
        self.handler = handler
        self.calls = []

    def preference(self):
        return _Endpoint(self, "/checkout/preferences")

    def payment(self):
        return _Endpoint(self, "/v1/payments")

    def dispatch(self, method, path, data):
        self.calls.append((method, path, data))
        return self.handler(method, path, data)


class RecordingGateway(MercadoPagoClient):
    """MercadoPago client whose SDK answers from memory and records calls."""

    def __init__(self):
        super().__init__(access_token="TEST-token", public_key="TEST-public-key", sdk=StubSDK(self._answer))
        self.payments = {}
        self.fail_preferences = False

    def _answer(self, method, path, data):
        if path == "/checkout/preferences":
            if self.fail_preferences:
                return {"status": 500, "response": {"message": "Internal Server Error"}}
            n = len(self.preference_calls)
            return {"status": 201, "response": {
                "id": f"pref-{n}",
                "init_point": f"https://www.mercadopago.com.ar/checkout?pref_id=pref-{n}",
                "sandbox_init_point": f"https://sandbox.mercadopago.com.ar/checkout?pref_id=pref-{n}",
            }}
        payment_id = path.rsplit("/", 1)[-1]
        if payment_id not in self.payments:
            return {"status": 404, "response": {"message": "Payment not found"}}
        return {"status": 200, "response": self.payments[payment_id]}

    @property
    def calls(self):
        return self.sdk.calls

    @property
    def preference_calls(self):
        return [c for c in self.calls if c[1] == "/checkout/preferences"]

    @property
    def payment_lookups(self):
        return [c for c in self.calls if c[1].startswith("/v1/payments/")]


@pytest.fixture(autouse=True)
def mongo(monkeypatch):
    mock_db = mongomock.MongoClient()["store_test"]
    monkeypatch.setattr(database, "db", mock_db)
    monkeypatch.setattr(config, "ORDER_RETRY_DELAY", 0)
    monkeypatch.setattr(config, "ADMIN_EMAILS", {ADMIN_EMAIL})
    monkeypatch.setattr(config, "FRONTEND_URL", "https://shop.example.com")
    return mock_db


@pytest.fixture
def gateway():
    return RecordingGateway()


@pytest.fixture
def client(gateway):
    app.dependency_overrides[get_gateway] = lambda: gateway
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def register(client, email, name="Test User", password="secret123"):
    res = client.post("/api/auth/register", json={"email": email, "password": password, "display_name": name})
    assert res.status_code == 200, res.text
    data = res.json()
    return {"Authorization": f"Bearer {data['token']}"}, data["user"]


@pytest.fixture
def admin_headers(client):
    headers, _ = register(client, ADMIN_EMAIL, "Admin")
    return headers


@pytest.fixture
def customer(client):
    return register(client, "buyer@example.com", "Ana Buyer")


@pytest.fixture
def customer_headers(customer):
    return customer[0]


@pytest.fixture
def make_product(client, admin_headers):
    def _make(**overrides):
        body = {
            "name": "Whey Protein 1kg",
            "description": "Proteína de suero",
            "price": 25000.0,
            "stock": 10,
            "category": "Proteínas",
            "brand": "Star Nutrition",
            "flavors": ["Chocolate", "Vainilla"],
            "image": "https://img.example.com/whey.jpg",
        }
        body.update(overrides)
        res = client.post("/api/admin/products", json=body, headers=admin_headers)
        assert res.status_code == 200, res.text
        return res.json()["id"]
    return _make
