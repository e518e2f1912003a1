"""Device token validation, refresh, revocation and device management."""

import jwt
from sqlmodel import Session

from devicelink.database import engine
from devicelink.models.token import DeviceToken
from devicelink.services import token_service
from devicelink.services.errors import TokenExpired, TokenRevoked

API = "/api/v1"


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _ping(client, token: str | None = None):
    return client.get(f"{API}/protected/ping", headers=_auth(token) if token else {})


def _error(r) -> str:
    return r.json()["detail"]["error"]


# --- Validation ---

def test_missing_token(client):
    r = _ping(client)
    assert r.status_code == 401
    assert _error(r) == "missing_token"


def test_malformed_token(client):
    r = _ping(client, "definitely.not.a-jwt")
    assert r.status_code == 401
    assert _error(r) == "malformed"


def test_bad_signature(client, pair):
    _, token = pair()
    claims = jwt.decode(token, options={"verify_signature": False})
    forged = jwt.encode(claims, "some-other-secret", algorithm="HS256")
    r = _ping(client, forged)
    assert r.status_code == 401
    assert _error(r) == "bad_signature"


def test_valid_token_touches_last_used(client, pair):
    device_id, token = pair()
    assert _ping(client, token).status_code == 200
    claims = jwt.decode(token, options={"verify_signature": False})
    with Session(engine) as session:
        record = session.get(DeviceToken, claims["jti"])
        assert record.last_used is not None
        assert record.device_id == device_id
        assert record.token_hash != token


def test_scenario_d_expired_token_cannot_be_refreshed(client, clock, pair):
    _, token = pair()
    clock.advance(minutes=61)

    r = _ping(client, token)
    assert r.status_code == 401
    assert _error(r) == "expired"

    r = client.post(f"{API}/devices/refresh", headers=_auth(token))
    assert r.status_code == 401
    assert _error(r) == "expired"


def test_purged_expired_token_still_reports_expired(client, clock, pair):
    _, token = pair()
    clock.advance(hours=2, minutes=1)
    # Registering purges token records past the retention period
    assert client.post(f"{API}/devices/register").status_code == 200

    claims = jwt.decode(token, options={"verify_signature": False})
    with Session(engine) as session:
        assert session.get(DeviceToken, claims["jti"]) is None

    r = _ping(client, token)
    assert r.status_code == 401
    assert _error(r) == "expired"


def test_token_valid_until_just_before_expiry(client, clock, pair):
    _, token = pair()
    clock.advance(minutes=59)
    assert _ping(client, token).status_code == 200


# --- Refresh ---

def test_refresh_rotates_token(client, pair):
    device_id, token = pair("user-r")

    r = client.post(f"{API}/devices/refresh", headers=_auth(token))
    assert r.status_code == 200
    fresh = r.json()["token"]
    assert fresh != token

    ping = _ping(client, fresh)
    assert ping.json() == {"ok": True, "deviceId": device_id, "userId": "user-r"}

    r = _ping(client, token)
    assert r.status_code == 401
    assert _error(r) == "revoked"


def test_refresh_extends_expiry(client, clock, pair):
    _, token = pair()
    clock.advance(minutes=50)
    r = client.post(f"{API}/devices/refresh", headers=_auth(token))
    assert r.status_code == 200
    fresh = r.json()["token"]

    clock.advance(minutes=50)
    assert _ping(client, fresh).status_code == 200


def test_refresh_of_revoked_token_fails(client, pair):
    _, token = pair()
    assert client.post(f"{API}/devices/refresh", headers=_auth(token)).status_code == 200
    r = client.post(f"{API}/devices/refresh", headers=_auth(token))
    assert r.status_code == 401
    assert _error(r) == "revoked"


# --- Revocation ---

def test_logout_revokes_immediately(client, pair):
    _, token = pair()
    assert _ping(client, token).status_code == 200

    r = client.post(f"{API}/devices/logout", headers=_auth(token))
    assert r.status_code == 200
    assert r.json() == {"ok": True}

    r = _ping(client, token)
    assert r.status_code == 401
    assert _error(r) == "revoked"


def test_logout_accepts_expired_token(client, clock, pair):
    _, token = pair()
    clock.advance(hours=2)
    assert client.post(f"{API}/devices/logout", headers=_auth(token)).status_code == 200
    assert _error(_ping(client, token)) == "revoked"


def test_service_revoke_then_validate(client, pair):
    device_id, token = pair()
    with Session(engine) as session:
        assert token_service.validate_token(token, session).device_id == device_id
        assert token_service.revoke_device(device_id, session) == 1
        try:
            token_service.validate_token(token, session)
        except TokenRevoked:
            pass
        else:
            raise AssertionError("revoked token still validated")


def test_service_revoke_single_token(client, pair):
    device_id, token = pair()
    with Session(engine) as session:
        claims = token_service.revoke_token(token, session, reason="unlink")
        assert claims.device_id == device_id
        record = session.get(DeviceToken, claims.token_id)
        session.refresh(record)
        assert record.revoked is True
        assert record.revoked_reason == "unlink"
    assert _error(_ping(client, token)) == "revoked"


def test_service_issue_and_validate(client, clock):
    with Session(engine) as session:
        issued = token_service.issue_token("dev_service", "user-s", session)
        claims = token_service.validate_token(issued.token, session)
        assert claims.device_id == "dev_service"
        assert claims.user_id == "user-s"
        assert claims.expires_at == issued.expires_at

        clock.advance(hours=1)
        try:
            token_service.validate_token(issued.token, session)
        except TokenExpired:
            pass
        else:
            raise AssertionError("expired token still validated")


# --- Device management ---

def test_list_rename_and_unlink_devices(client, pair):
    first_device, first_token = pair("user-m")
    second_device, second_token = pair("user-m")

    r = client.get(f"{API}/devices", headers=_auth(first_token))
    assert r.status_code == 200
    data = r.json()
    ids = {d["deviceId"] for d in data["devices"]}
    assert {first_device, second_device} <= ids
    assert data["activeDevices"] == data["totalDevices"]

    r = client.patch(
        f"{API}/devices/{second_device}",
        json={"deviceName": "Work laptop"},
        headers=_auth(first_token),
    )
    assert r.status_code == 200
    assert r.json()["deviceName"] == "Work laptop"

    r = client.delete(f"{API}/devices/{second_device}", headers=_auth(first_token))
    assert r.status_code == 204
    assert _error(_ping(client, second_token)) == "revoked"
    assert _ping(client, first_token).status_code == 200

    devices = client.get(f"{API}/devices", headers=_auth(first_token)).json()["devices"]
    second = next(d for d in devices if d["deviceId"] == second_device)
    assert second["isActive"] is False


def test_cannot_manage_another_users_device(client, pair):
    _, token_a = pair("user-owner")
    device_b, token_b = pair("user-other")

    r = client.delete(f"{API}/devices/{device_b}", headers=_auth(token_a))
    assert r.status_code == 404
    assert _error(r) == "device_not_found"
    assert _ping(client, token_b).status_code == 200


# --- Maintenance ---

def test_cleanup_requires_admin_key(client):
    r = client.post(f"{API}/admin/cleanup")
    assert r.status_code == 403


def test_cleanup_purges_stale_rows(client, clock, pair):
    client.post(f"{API}/devices/register")
    pair()
    clock.advance(hours=3)

    r = client.post(f"{API}/admin/cleanup", headers={"X-Admin-Key": "test-admin-key"})
    assert r.status_code == 200
    data = r.json()
    assert data["registrations"] >= 2
    assert data["tokens"] >= 1
