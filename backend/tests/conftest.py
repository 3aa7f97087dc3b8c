import hashlib
import hmac
import json
import os
import time
import warnings
from uuid import uuid4

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import NullPool

# Set environment variables BEFORE importing app modules
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["POSTGRES_DSN"] = "sqlite+aiosqlite:///file:giftregistry_tests?mode=memory&cache=shared&uri=true"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-32-chars-minimum!!"
os.environ["PAYMENT_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["PAYMENT_SECRET_KEY"] = ""
os.environ["SMTP_HOST"] = ""

warnings.filterwarnings("ignore", category=DeprecationWarning)

from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from giftregistry.core.config import settings
from giftregistry.core.rate_limit import limiter
from giftregistry.db.session import Base, get_db
from giftregistry.main import app

PASSWORD = "SecurePass123!"
WEBHOOK_SECRET = "whsec_test_secret"


@pytest.fixture(scope="session", autouse=True)
def disable_rate_limiting():
    """Disable rate limiting for all tests."""
    original = settings.rate_limit_enabled
    settings.rate_limit_enabled = False
    yield
    settings.rate_limit_enabled = original


@pytest.fixture(autouse=True)
def reset_limiter():
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "sync-test.db"


@pytest.fixture(autouse=True)
def sync_db_override(db_path):
    from giftregistry.models import models as models_module
    _ = models_module
    sync_engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(sync_engine)
    sync_engine.dispose()

    # Each TestClient request may run on its own event loop; never reuse connections.
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    async_session = async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)

    async def override_get_db():
        async with async_session() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield
    app.dependency_overrides.clear()
    engine.sync_engine.dispose()


@pytest.fixture
def count_rows(db_path):
    """Count rows of a model straight from the test database file."""
    engine = create_engine(f"sqlite:///{db_path}")

    def _count(model, *criteria) -> int:
        with engine.connect() as conn:
            query = select(func.count()).select_from(model)
            if criteria:
                query = query.where(*criteria)
            return conn.execute(query).scalar_one()

    yield _count
    engine.dispose()


@pytest.fixture
def failing_notification_insert(monkeypatch):
    """Make every in-app notification insert raise a database error."""

    def _fail(**kwargs):
        raise SQLAlchemyError("notification insert failed")

    monkeypatch.setattr("giftregistry.core.notifications.Notification", _fail)


@pytest.fixture
def test_client():
    """Synchronous test client with rate limiting disabled."""
    with TestClient(app) as client:
        yield client


def register(client: TestClient, **fields) -> dict:
    """Register a fresh user on ``client``; the session cookie stays on the client."""
    payload = {"email": f"user-{uuid4().hex}@example.com", "password": PASSWORD}
    payload.update(fields)
    res = client.post("/auth/register", json=payload)
    assert res.status_code == 201, res.text
    return res.json()


def create_registry(client: TestClient, **fields) -> dict:
    payload = {"title": "Wedding Registry"}
    payload.update(fields)
    res = client.post("/api/registries", json=payload)
    assert res.status_code == 201, res.text
    return res.json()


def create_item(client: TestClient, registry_id: int, **fields) -> dict:
    payload = {"registry_id": registry_id, "name": "Espresso machine", "price": 250, "quantity": 2}
    payload.update(fields)
    res = client.post("/api/gift-items", json=payload)
    assert res.status_code == 201, res.text
    return res.json()


def signed_webhook_headers(body: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> dict:
    ts = int(time.time()) if timestamp is None else timestamp
    signature = hmac.new(secret.encode(), f"{ts}.".encode() + body, hashlib.sha256).hexdigest()
    return {"Stripe-Signature": f"t={ts},v1={signature}", "Content-Type": "application/json"}


def payment_succeeded_event(
    intent_id: str,
    registry_id: int,
    gift_item_id: int,
    amount_minor: int,
    currency: str = "inr",
    **metadata,
) -> bytes:
    meta = {"registry_id": str(registry_id), "gift_item_id": str(gift_item_id)}
    meta.update({key: str(value) for key, value in metadata.items()})
    event = {
        "id": f"evt_{uuid4().hex}",
        "type": "payment_intent.succeeded",
        "data": {
            "object": {
                "id": intent_id,
                "object": "payment_intent",
                "amount": amount_minor,
                "amount_received": amount_minor,
                "currency": currency,
                "metadata": meta,
            }
        },
    }
    return json.dumps(event).encode()
