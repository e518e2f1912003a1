"""Shared fixtures: isolated data dir, app client, movable service clock."""

import os
import tempfile
import time
from datetime import datetime, timedelta, timezone

# Setup environment for testing, before devicelink reads its settings
_DATA_DIR = tempfile.mkdtemp()
os.environ["DEVICELINK_DATA_DIR"] = _DATA_DIR
os.environ["DEVICELINK_DB_PATH"] = os.path.join(_DATA_DIR, "test.db")
os.environ["DEVICELINK_IDENTITY_JWT_SECRET"] = "test-identity-secret"
os.environ["DEVICELINK_ALLOW_DEV_IDENTITY"] = "true"
os.environ["DEVICELINK_ADMIN_API_KEY"] = "test-admin-key"

import jwt
import pytest
from fastapi.testclient import TestClient

from devicelink.main import app
from devicelink.services.rate_limiter import rate_limiter

API = "/api/v1"


class FakeClock:
    def __init__(self):
        self.now = datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def client():
    rate_limiter.reset()
    with TestClient(app) as c:
        yield c


@pytest.fixture
def clock(monkeypatch):
    fake = FakeClock()
    monkeypatch.setattr("devicelink.utils.clock.utcnow", fake)
    return fake


@pytest.fixture
def identity_token():
    def make(user_id: str) -> str:
        payload = {"sub": user_id, "exp": int(time.time()) + 600}
        return jwt.encode(payload, "test-identity-secret", algorithm="HS256")
    return make


@pytest.fixture
def pair(client, identity_token):
    """Run register -> link -> exchange. Returns (device_id, token)."""
    def run(user_id: str = "user-x") -> tuple[str, str]:
        r = client.post(f"{API}/devices/register")
        assert r.status_code == 200, r.text
        reg = r.json()
        r = client.post(
            f"{API}/devices/link",
            json={"code": reg["code"]},
            headers={"Authorization": f"Bearer {identity_token(user_id)}"},
        )
        assert r.status_code == 200, r.text
        r = client.post(f"{API}/devices/exchange", json={"deviceId": reg["deviceId"], "code": reg["code"]})
        assert r.status_code == 200, r.text
        return reg["deviceId"], r.json()["token"]
    return run
