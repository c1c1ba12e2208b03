from decimal import Decimal
from typing import Any, Dict, List

import mongomock
import pytest
from fastapi.testclient import TestClient

from main import app
from payments import RazorpayGateway
from schemas import Coupon, Product
from services import build_services

ADDRESS = {
    "full_name": "Ava Laurent",
    "address_line1": "12 Rue de la Paix",
    "city": "Mumbai",
    "state": "MH",
    "postal_code": "400001",
    "country": "India",
    "phone": "+91 98200 00000",
}


class FakeResponse:
    def __init__(self, payload: Dict[str, Any], status_code: int = 200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        pass

    def json(self):
        return self.payload


class FakeSession:
    """Stands in for requests.Session; echoes the order Razorpay would create"""

    def __init__(self):
        self.auth = None
        self.calls: List[Dict[str, Any]] = []

    def post(self, url, json=None, timeout=None):
        self.calls.append({"url": url, "json": json})
        return FakeResponse({"id": f"order_test{len(self.calls)}", "amount": json["amount"],
                             "currency": json["currency"]})


class RecordingMailer:
    def __init__(self):
        self.sent: List[Dict[str, Any]] = []

    def send_order_confirmation(self, to, order):
        self.sent.append({"to": to, "order_id": str(order["_id"])})


@pytest.fixture
def database():
    return mongomock.MongoClient()["orephia_test"]


@pytest.fixture
def http_session():
    return FakeSession()


@pytest.fixture
def gateway(http_session):
    return RazorpayGateway("rzp_test_key", "test_secret", session=http_session)


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def services(database, gateway, mailer):
    return build_services(database, gateway=gateway, mailer=mailer, charge_currency="INR")


@pytest.fixture
def client(services):
    app.state.services = services
    with TestClient(app) as c:
        yield c
    del app.state.services


@pytest.fixture
def add_product(services):
    def _add(price, title="Silk Scarf", **extra):
        product = Product(title=title, price=float(price), category="accessories",
                          images=["https://img.example/scarf.jpg"], stock=10, **extra)
        return services.catalog.create(product)
    return _add


@pytest.fixture
def add_coupon(services):
    def _add(**fields):
        return services.coupons.create(Coupon(**fields))
    return _add


@pytest.fixture
def register(client, services):
    def _register(username="ava", admin=False):
        response = client.post("/api/auth/signup", json={
            "username": username,
            "email": f"{username}@example.com",
            "password": "secret123",
        })
        assert response.status_code == 201, response.text
        body = response.json()
        if admin:
            services.users.collection.update_one({"username": username}, {"$set": {"is_admin": True}})
        return {"Authorization": f"Bearer {body['token']}"}, body["user"]["id"]
    return _register


def d(value) -> Decimal:
    return Decimal(str(value))
