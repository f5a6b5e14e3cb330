"""Shared pytest fixtures for test suite"""
import hashlib
import hmac
import itertools
import json
import os
import sys
import time
from decimal import Decimal
from pathlib import Path
from typing import Generator
from unittest.mock import patch

import fakeredis
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

# The application engine must never point at a real database during tests
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("FRONTEND_URL", "https://shops.example.com")

from storefront.main import app
from storefront.db import redis as redis_module
from storefront.db.cache import MemoryCache
from storefront.db.session import get_db
from storefront.models import Base, Cart, Order, OrderStatus, PaymentStatus, Product, Tenant


# SQLite in-memory database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"

test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

WEBHOOK_SECRET = "whsec_test_shop_a"
OTHER_WEBHOOK_SECRET = "whsec_test_shop_b"


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh SQLite in-memory database session for each test"""
    Base.metadata.create_all(bind=test_engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function", autouse=True)
def mock_redis():
    """Mock Redis client using fakeredis"""
    fake_redis = fakeredis.FakeStrictRedis(decode_responses=True)
    with patch.object(redis_module, "_client", fake_redis):
        yield fake_redis


@pytest.fixture(scope="function")
def credential_cache():
    """Fresh credential cache per test"""
    return MemoryCache(maxsize=64, ttl=300)


@pytest.fixture(scope="function")
def mock_stripe():
    """Mock the Stripe SDK as seen by the gateway adapter.

    Prices and products get unique ids so single-use prices can be asserted.
    """
    with patch("storefront.services.gateway.stripe") as mock_stripe_module:
        price_ids = itertools.count(1)
        product_ids = itertools.count(1)

        mock_stripe_module.Price.create.side_effect = lambda **kwargs: {"id": f"price_{next(price_ids)}"}
        mock_stripe_module.Product.create.side_effect = lambda **kwargs: {"id": f"prod_{next(product_ids)}"}
        mock_stripe_module.Product.search.return_value = {"data": []}
        mock_stripe_module.checkout.Session.create.return_value = {
            "id": "cs_test_123",
            "url": "https://checkout.stripe.com/c/pay/cs_test_123",
        }
        mock_stripe_module.checkout.Session.list.return_value = {"data": [], "has_more": False}
        mock_stripe_module.Customer.list.return_value = {"data": []}
        mock_stripe_module.Invoice.list.return_value = {"data": []}
        yield mock_stripe_module


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """FastAPI test client with test database"""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close session here, handled by fixture

    app.dependency_overrides[get_db] = override_get_db
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


def make_tenant(db: Session, tenant_id: str = "shop-a", **overrides) -> Tenant:
    values = dict(
        tenant_id=tenant_id,
        name="Shop A",
        base_url="https://shop-a.example.com",
        is_configured=True,
        environment="test",
        test_secret_key="sk_test_shop_a",
        test_publishable_key="pk_test_shop_a",
        test_webhook_secret=WEBHOOK_SECRET,
        vat_rate=Decimal("0.20"),
        price_mode="HT",
        sender_email="hello@shop-a.example.com",
        sender_name="Shop A",
    )
    values.update(overrides)
    tenant = Tenant(**values)
    db.add(tenant)
    db.commit()
    db.refresh(tenant)
    return tenant


def make_product(db: Session, tenant_id: str = "shop-a", **overrides) -> Product:
    values = dict(
        tenant_id=tenant_id,
        title="Ceramic Mug",
        description="Hand-thrown mug",
        price=Decimal("10.00"),
        stock_quantity=5,
    )
    values.update(overrides)
    product = Product(**values)
    db.add(product)
    db.commit()
    db.refresh(product)
    return product


def make_order(db: Session, tenant_id: str = "shop-a", **overrides) -> Order:
    values = dict(
        tenant_id=tenant_id,
        email="buyer@example.com",
        items=[{"product_id": "p1", "variant_id": None, "title": "Ceramic Mug", "quantity": 2, "price": "10.00"}],
        subtotal=Decimal("20.00"),
        shipping_cost=Decimal("3.20"),
        tax=Decimal("4.64"),
        total=Decimal("27.84"),
        delivery_method="standard",
        shipping_address={"name": "Ada Buyer", "line1": "1 Rue Test", "postal_code": "75001",
                          "city": "Paris", "country": "FR"},
        status=OrderStatus.PENDING,
        payment_status=PaymentStatus.PENDING,
    )
    values.update(overrides)
    order = Order(**values)
    db.add(order)
    db.commit()
    db.refresh(order)
    return order


def make_cart(db: Session, tenant_id: str = "shop-a", items=None) -> Cart:
    cart = Cart(tenant_id=tenant_id, items=items or [])
    db.add(cart)
    db.commit()
    db.refresh(cart)
    return cart


def sign_payload(payload: bytes, secret: str, timestamp: int = None) -> str:
    """Build a stripe-signature header the way Stripe signs webhook deliveries"""
    timestamp = timestamp or int(time.time())
    signed_payload = f"{timestamp}.{payload.decode('utf-8')}"
    signature = hmac.new(secret.encode("utf-8"), signed_payload.encode("utf-8"), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def checkout_completed_payload(tenant_id: str = "shop-a", order_id: str = None,
                               session_id: str = "cs_test_123", event_id: str = "evt_1",
                               metadata: dict = None) -> bytes:
    if metadata is None:
        metadata = {"tenant_id": tenant_id, "order_id": order_id, "user_id": "", "shipping_cost": "3.20", "tax": "4.64"}
    event = {
        "id": event_id,
        "object": "event",
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": session_id,
                "object": "checkout.session",
                "payment_intent": "pi_test_1",
                "payment_status": "paid",
                "status": "complete",
                "metadata": metadata,
            }
        },
    }
    return json.dumps(event).encode("utf-8")
