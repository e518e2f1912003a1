"""Device token issuance, validation, refresh and revocation.

Tokens are HS256 JWTs verified locally. Every validation also reads the
token record, so a revocation is visible to the very next request.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

import jwt
from sqlalchemy import delete, update
from sqlmodel import Session, select

from devicelink.config import settings
from devicelink.models.token import DeviceToken
from devicelink.services.errors import (
    BadSignature,
    DeviceNotFound,
    MalformedToken,
    MissingToken,
    TokenExpired,
    TokenRevoked,
)
from devicelink.utils import clock
from devicelink.utils.security import (
    TOKEN_TYPE,
    decode_device_token,
    encode_device_token,
    hash_token,
)

logger = logging.getLogger(__name__)


@dataclass
class TokenClaims:
    token_id: str
    device_id: str
    user_id: str
    expires_at: datetime


@dataclass
class IssuedToken:
    token: str
    token_id: str
    device_id: str
    user_id: str
    expires_at: datetime


def to_issued(record: DeviceToken) -> IssuedToken:
    return IssuedToken(
        token=encode_record(record),
        token_id=record.id,
        device_id=record.device_id,
        user_id=record.user_id,
        expires_at=clock.as_utc(record.expires_at),
    )


def encode_record(record: DeviceToken) -> str:
    """Rebuild the exact token string for a stored record."""
    return encode_device_token(
        record.id,
        record.device_id,
        record.user_id,
        clock.to_timestamp(record.issued_at),
        clock.to_timestamp(record.expires_at),
    )


def _load(token_id: str, session: Session) -> DeviceToken | None:
    statement = (
        select(DeviceToken)
        .where(DeviceToken.id == token_id)
        .execution_options(populate_existing=True)
    )
    return session.exec(statement).first()


def new_token_record(device_id: str, user_id: str, device_name: str | None = None) -> DeviceToken:
    """Build (but do not persist) a token record expiring one TTL from now."""
    iat = clock.to_timestamp(clock.utcnow())
    exp = iat + settings.token_ttl_seconds
    record = DeviceToken(
        id=secrets.token_hex(16),
        token_hash="",
        device_id=device_id,
        user_id=user_id,
        device_name=device_name,
        issued_at=clock.from_timestamp(iat),
        expires_at=clock.from_timestamp(exp),
    )
    record.token_hash = hash_token(encode_record(record))
    return record


def issue_token(
    device_id: str,
    user_id: str,
    session: Session,
    device_name: str | None = None,
) -> IssuedToken:
    """Mint and store a new device token."""
    record = new_token_record(device_id, user_id, device_name)
    session.add(record)
    session.commit()
    logger.info("Issued token %s for device %s", record.id, device_id)
    return to_issued(record)


def issued_from_record(token_id: str, session: Session) -> IssuedToken | None:
    record = _load(token_id, session)
    return to_issued(record) if record else None


def validate_token(
    token: str | None,
    session: Session,
    touch: bool = True,
    allow_expired: bool = False,
) -> TokenClaims:
    """Validate a bearer token.

    Raises MissingToken, MalformedToken, BadSignature, TokenRevoked or
    TokenExpired, checked in that order. ``allow_expired`` skips the expiry
    check for callers that only need to identify the device (logout).
    """
    if not token:
        raise MissingToken()

    try:
        payload = decode_device_token(token)
    except jwt.InvalidSignatureError:
        raise BadSignature()
    except jwt.PyJWTError:
        raise MalformedToken()

    token_id = payload.get("jti")
    device_id = payload.get("dev")
    user_id = payload.get("sub")
    exp = payload.get("exp")
    if (
        payload.get("type") != TOKEN_TYPE
        or not token_id
        or not device_id
        or not user_id
        or not isinstance(exp, int)
    ):
        raise MalformedToken()

    now = clock.utcnow()
    expires_at = clock.from_timestamp(exp)

    record = _load(token_id, session)
    if record is None:
        # Expired records are purged after the retention period
        if now >= expires_at:
            raise TokenExpired()
        raise TokenRevoked()
    if record.token_hash != hash_token(token) or record.revoked:
        raise TokenRevoked()

    if now >= expires_at and not allow_expired:
        raise TokenExpired()

    if touch:
        record.last_used = now
        session.add(record)
        session.commit()

    return TokenClaims(
        token_id=token_id,
        device_id=device_id,
        user_id=user_id,
        expires_at=expires_at,
    )


def refresh_token(token: str | None, session: Session) -> IssuedToken:
    """Rotate a valid token: revoke it and issue a successor for the same device."""
    claims = validate_token(token, session, touch=False)
    now = clock.utcnow()

    result = session.connection().execute(
        update(DeviceToken)
        .where(DeviceToken.id == claims.token_id, DeviceToken.revoked == False)  # noqa: E712
        .values(revoked=True, revoked_at=now, revoked_reason="rotated")
    )
    if result.rowcount != 1:
        # A concurrent refresh already rotated this token
        session.rollback()
        raise TokenRevoked()

    previous = _load(claims.token_id, session)
    record = new_token_record(claims.device_id, claims.user_id, previous.device_name if previous else None)
    session.add(record)
    session.commit()

    logger.info("Rotated token %s -> %s for device %s", claims.token_id, record.id, claims.device_id)
    return to_issued(record)


def revoke_token(token: str | None, session: Session, reason: str = "logout") -> TokenClaims:
    """Revoke the presented token. Expired tokens may still be revoked."""
    claims = validate_token(token, session, touch=False, allow_expired=True)
    session.connection().execute(
        update(DeviceToken)
        .where(DeviceToken.id == claims.token_id, DeviceToken.revoked == False)  # noqa: E712
        .values(revoked=True, revoked_at=clock.utcnow(), revoked_reason=reason)
    )
    session.commit()
    logger.info("Revoked token %s for device %s (%s)", claims.token_id, claims.device_id, reason)
    return claims


def revoke_device(device_id: str, session: Session, reason: str = "unlink") -> int:
    """Revoke every live token of a device. Returns how many were revoked."""
    result = session.connection().execute(
        update(DeviceToken)
        .where(DeviceToken.device_id == device_id, DeviceToken.revoked == False)  # noqa: E712
        .values(revoked=True, revoked_at=clock.utcnow(), revoked_reason=reason)
    )
    session.commit()
    logger.info("Revoked %d token(s) for device %s (%s)", result.rowcount, device_id, reason)
    return result.rowcount


# --- Device management ---

def list_user_devices(user_id: str, session: Session) -> list[dict]:
    """One entry per device of a user, described by its live token when it has one."""
    records = session.exec(
        select(DeviceToken)
        .where(DeviceToken.user_id == user_id)
        .order_by(DeviceToken.revoked, DeviceToken.issued_at.desc())
        .execution_options(populate_existing=True)
    ).all()

    now = clock.utcnow()
    devices: dict[str, dict] = {}
    for r in records:
        if r.device_id in devices:
            continue
        expires_at = clock.as_utc(r.expires_at)
        devices[r.device_id] = {
            "device_id": r.device_id,
            "device_name": r.device_name or f"Extension ({r.device_id[-8:]})",
            "connected_at": clock.as_utc(r.issued_at),
            "last_used": clock.as_utc(r.last_used) if r.last_used else None,
            "expires_at": expires_at,
            "is_active": not r.revoked and now < expires_at,
        }
    return list(devices.values())


def _user_device_tokens(device_id: str, user_id: str, session: Session) -> list[DeviceToken]:
    records = session.exec(
        select(DeviceToken).where(
            DeviceToken.device_id == device_id,
            DeviceToken.user_id == user_id,
        )
    ).all()
    if not records:
        raise DeviceNotFound()
    return list(records)


def rename_device(device_id: str, user_id: str, device_name: str, session: Session) -> dict:
    for record in _user_device_tokens(device_id, user_id, session):
        record.device_name = device_name
        session.add(record)
    session.commit()
    return next(d for d in list_user_devices(user_id, session) if d["device_id"] == device_id)


def unlink_device(device_id: str, user_id: str, session: Session) -> int:
    _user_device_tokens(device_id, user_id, session)
    return revoke_device(device_id, session, reason="unlink")


def purge_expired_tokens(session: Session, retention: timedelta = timedelta(0)) -> int:
    """Delete token records that expired more than ``retention`` ago."""
    cutoff = clock.utcnow() - retention
    result = session.connection().execute(
        delete(DeviceToken).where(DeviceToken.expires_at < cutoff)
    )
    session.commit()
    return result.rowcount
