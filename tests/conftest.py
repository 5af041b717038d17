"""Pytest fixtures for storefront service tests."""

import os

os.environ["OTEL_ENABLED"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_storefront"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_storefront"
os.environ.pop("EMAIL_API_KEY", None)

from datetime import datetime, timedelta

import fakeredis
import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from auth import hash_password
from database import get_db
from errors import EmailDeliveryError
from main import app
from models import Base, Category, Coupon, Product, User
from services.email_service import EmailSender

PASSWORD = "secret-pass-123"
PASSWORD_HASH = hash_password(PASSWORD)


class RecordingEmailSender(EmailSender):
    """Keeps every message instead of delivering it."""

    def __init__(self):
        self.sent = []
        self.failing = set()
        self.fail_all = False

    async def send(self, to, subject, html_body, text_body=None):
        if self.fail_all or to in self.failing:
            raise EmailDeliveryError(f"rejected {to}")
        self.sent.append({"to": to, "subject": subject, "html": html_body})
        return f"msg_{len(self.sent)}"


class ProviderStub:
    """httpx MockTransport handler answering canned responses keyed by method and path."""

    def __init__(self):
        self.routes = {}
        self.requests = []

    def add(self, method, path, status=200, json=None, text=None):
        self.routes[(method, path)] = (status, json if json is not None else {}, text)

    def __call__(self, request):
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"error": "unexpected call"})
        status, body, text = route
        if text is not None:
            return httpx.Response(status, text=text)
        return httpx.Response(status, json=body)

    def paths(self):
        return [request.url.path for request in self.requests]


@pytest.fixture
def engine():
    """In-memory SQLite shared by the test and the app."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def email_sender():
    return RecordingEmailSender()


@pytest.fixture
def provider():
    return ProviderStub()


@pytest.fixture
def client(session_factory, redis_client, email_sender, provider):
    """Test client wired to SQLite, fakeredis, the recording sender and the provider stub."""

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.state.redis_client = redis_client
    app.state.http_client = httpx.AsyncClient(transport=httpx.MockTransport(provider))
    app.state.email_sender = email_sender

    yield TestClient(app)

    app.dependency_overrides.clear()


def _user(db, name, email, token, role="customer"):
    user = User(
        name=name,
        email=email,
        password_hash=PASSWORD_HASH,
        role=role,
        api_token=token,
        phone="+15550001111",
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def customer(db):
    return _user(db, "Jane Customer", "jane@example.com", "customer-token")


@pytest.fixture
def other_customer(db):
    return _user(db, "Omar Other", "omar@example.com", "other-token")


@pytest.fixture
def admin_user(db):
    return _user(db, "Ada Admin", "admin@example.com", "admin-token", role="admin")


@pytest.fixture
def customer_headers(customer):
    return {"Authorization": "Bearer customer-token"}


@pytest.fixture
def other_headers(other_customer):
    return {"Authorization": "Bearer other-token"}


@pytest.fixture
def admin_headers(admin_user):
    return {"Authorization": "Bearer admin-token"}


@pytest.fixture
def category(db):
    category = Category(name="Gadgets", slug="gadgets", description="Small devices")
    db.add(category)
    db.commit()
    db.refresh(category)
    return category


@pytest.fixture
def product(db, category):
    product = Product(
        name="Widget", slug="widget", sku="WID-1", description="A useful widget",
        price=20.0, stock=10, low_stock_threshold=3, category_id=category.id,
    )
    db.add(product)
    db.commit()
    db.refresh(product)
    return product


@pytest.fixture
def second_product(db, category):
    product = Product(
        name="Gadget", slug="gadget", sku="GAD-1", description="A shiny gadget",
        price=15.0, stock=3, low_stock_threshold=5, category_id=category.id,
    )
    db.add(product)
    db.commit()
    db.refresh(product)
    return product


@pytest.fixture
def coupon(db):
    now = datetime.utcnow()
    coupon = Coupon(
        code="SAVE10",
        discount_type="percentage",
        discount_value=10,
        valid_from=now - timedelta(days=1),
        valid_until=now + timedelta(days=30),
    )
    db.add(coupon)
    db.commit()
    db.refresh(coupon)
    return coupon


@pytest.fixture
def shipping_address():
    return {
        "full_name": "Jane Customer",
        "phone": "+15550001111",
        "address": "1 Main Street",
        "city": "Springfield",
        "state": "IL",
        "postal_code": "62701",
        "country": "US",
    }


@pytest.fixture
def place_order(client, customer_headers, shipping_address):
    """Post a checkout request; extra keyword arguments go into the payload."""

    def _place(items, headers=None, **extra):
        payload = {
            "items": items,
            "shipping_address": shipping_address,
            "payment_method": "cash_on_delivery",
            **extra,
        }
        return client.post("/api/orders", json=payload, headers=headers or customer_headers)

    return _place
