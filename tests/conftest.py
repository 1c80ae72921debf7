"""Test configuration and fixtures for Retro Hall."""

import time
import uuid

import pytest
from authlib.jose import jwt
from fastapi.testclient import TestClient

from retrohall import config
from retrohall.infra import timings
from retrohall.infra.sql import GatedAsyncSession
from retrohall.model import admins
from retrohall.payments import MockPay
from retrohall.server import create_app

MOCK_SECRET = "test-mock-secret"


def make_token(user_id: str, email: str = "", **extra) -> str:
    claims = {
        "sub": user_id,
        "aud": config.JWT_AUDIENCE,
        "email": email or f"{user_id}@example.com",
        "exp": int(time.time()) + 3600,
    }
    claims.update(extra)
    return jwt.encode({"alg": "HS256"}, claims, config.JWT_SECRET).decode()


def auth(user_id: str) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id)}"}


def run_db(client: TestClient, fn, *args, **kwargs):
    """Run `fn(db, *args)` on the app's event loop with a fresh session."""
    database = client.app.state.db

    async def _go():
        async with database.SessionAsync() as session:
            db = GatedAsyncSession(session=session, gated=database.gated)
            return await fn(db, *args, **kwargs)

    return client.portal.call(_go)


@pytest.fixture
def mockpay():
    return MockPay(
        secret=MOCK_SECRET,
        webhook_url="http://testserver/payments/webhook",
    )


@pytest.fixture
def app(tmp_path, mockpay):
    timings.reset()
    return create_app(
        database_url=f"sqlite:///{tmp_path / 'retrohall-test.db'}",
        adapter=mockpay,
        notify_backend="memory",
    )


@pytest.fixture(name="client")
def client_fixture(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def user_id():
    return f"user-{uuid.uuid4().hex[:8]}"


@pytest.fixture
def owner(client):
    uid = "owner-1"
    run_db(client, admins.promote, uid, "owner")
    return uid


@pytest.fixture
def staff(client):
    uid = "staff-1"
    run_db(client, admins.promote, uid, "staff")
    return uid


@pytest.fixture
def make_product(client, staff):
    def _make(**fields):
        body = {
            "title": "Chrono Trigger",
            "system": "SNES",
            "category": "Games",
            "condition": "Good",
            "price": 59.99,
            "stock_qty": 2,
        }
        body.update(fields)
        r = client.post("/api/admin/products", json=body, headers=auth(staff))
        assert r.status_code == 200, r.text
        return r.json()
    return _make
