"""Device pairing business logic.

Flow: the extension registers and shows a code, a signed-in web session
links the code to its user, and the extension polls exchange until the
link lands and a device token comes back.

Codes are stored hashed. Link and exchange mutate a registration through
conditional UPDATEs, so concurrent requests against one code cannot both
win.
"""

import logging
from datetime import timedelta

from sqlalchemy import delete, or_, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from devicelink.config import settings
from devicelink.models.registration import PairingRegistration
from devicelink.schemas.identity import IdentitySession
from devicelink.services import token_service
from devicelink.services.errors import (
    CodeAlreadyLinked,
    CodeExpired,
    CodeNotFound,
    IdentityRequired,
    NotLinked,
    NotReady,
)
from devicelink.services.rate_limiter import EXCHANGE, REGISTER, rate_limiter
from devicelink.services.token_service import IssuedToken
from devicelink.utils import clock
from devicelink.utils.security import generate_code, hash_code, normalize_code

logger = logging.getLogger(__name__)

_CODE_ATTEMPTS = 5


def _load(session: Session, *conditions) -> PairingRegistration | None:
    statement = (
        select(PairingRegistration)
        .where(*conditions)
        .execution_options(populate_existing=True)
    )
    return session.exec(statement).first()


def _is_expired(registration: PairingRegistration) -> bool:
    return clock.utcnow() >= clock.as_utc(registration.code_expires_at)


def register_device(client_ip: str, session: Session) -> dict:
    """Create a pairing registration. Returns the device id, code and expiry."""
    rate_limiter.hit(REGISTER, client_ip)
    purge_stale(session)

    expires_at = clock.utcnow() + timedelta(seconds=settings.code_ttl_seconds)
    for _ in range(_CODE_ATTEMPTS):
        code = generate_code()
        registration = PairingRegistration(
            code_hash=hash_code(code),
            code_expires_at=expires_at,
            client_ip=client_ip,
        )
        session.add(registration)
        try:
            session.commit()
        except IntegrityError:
            # Code collided with a live registration
            session.rollback()
            continue
        logger.info("Registered device %s (code expires %s)", registration.device_id, expires_at.isoformat())
        return {
            "device_id": registration.device_id,
            "code": code,
            "expires_at": expires_at,
        }

    raise RuntimeError("Could not allocate a unique pairing code")


def link_code(code: str, identity: IdentitySession, session: Session) -> str:
    """Link a pairing code to the signed-in user. Returns the device id.

    Linking again with the same user is a no-op; a different user is rejected.
    """
    if not identity.is_signed_in:
        raise IdentityRequired()

    if not normalize_code(code):
        raise CodeNotFound()
    code_hash = hash_code(code)

    registration = _load(session, PairingRegistration.code_hash == code_hash)
    if registration is None:
        raise CodeNotFound()
    if _is_expired(registration):
        raise CodeExpired()

    result = session.connection().execute(
        update(PairingRegistration)
        .where(
            PairingRegistration.code_hash == code_hash,
            PairingRegistration.linked == False,  # noqa: E712
        )
        .values(linked=True, user_id=identity.resolved_user_id, linked_at=clock.utcnow())
    )
    session.commit()

    if result.rowcount == 1:
        logger.info("Linked device %s to user %s", registration.device_id, identity.resolved_user_id)
        return registration.device_id

    registration = _load(session, PairingRegistration.code_hash == code_hash)
    if registration is None:
        raise CodeNotFound()
    if registration.user_id != identity.resolved_user_id:
        logger.warning("Refused to relink device %s to a different user", registration.device_id)
        raise CodeAlreadyLinked()
    return registration.device_id


def exchange_code(device_id: str, code: str, client_ip: str, session: Session) -> IssuedToken:
    """Trade a linked code for a device token.

    Raises NotLinked, CodeExpired or NotReady. A repeat exchange inside the
    grace window returns the token minted by the first one.
    """
    rate_limiter.hit(EXCHANGE, client_ip)

    registration = None
    if device_id and normalize_code(code):
        registration = _load(
            session,
            PairingRegistration.device_id == device_id,
            PairingRegistration.code_hash == hash_code(code),
        )
    if registration is None:
        raise NotLinked()
    if _is_expired(registration):
        raise CodeExpired()
    if not registration.linked:
        raise NotReady()

    if registration.consumed_at is None:
        now = clock.utcnow()
        record = token_service.new_token_record(registration.device_id, registration.user_id)
        result = session.connection().execute(
            update(PairingRegistration)
            .where(
                PairingRegistration.device_id == registration.device_id,
                PairingRegistration.consumed_at == None,  # noqa: E711
            )
            .values(consumed_at=now, token_id=record.id)
        )
        if result.rowcount == 1:
            session.add(record)
            session.commit()
            logger.info("Exchanged code for device %s, issued token %s", registration.device_id, record.id)
            return token_service.to_issued(record)

        # Lost the race to a concurrent exchange; fall through to its result
        session.rollback()
        registration = _load(session, PairingRegistration.device_id == device_id)
        if registration is None or registration.consumed_at is None:
            raise NotLinked()

    consumed_at = clock.as_utc(registration.consumed_at)
    if clock.utcnow() - consumed_at > timedelta(seconds=settings.exchange_grace_seconds):
        raise NotLinked()

    issued = token_service.issued_from_record(registration.token_id, session)
    if issued is None:
        raise NotLinked()
    logger.info("Repeated exchange for device %s within grace window", registration.device_id)
    return issued


def purge_stale(session: Session) -> dict:
    """Delete registrations and tokens that can no longer be used."""
    now = clock.utcnow()
    retention = timedelta(seconds=settings.stale_retention_seconds)
    grace = timedelta(seconds=settings.exchange_grace_seconds)

    result = session.connection().execute(
        delete(PairingRegistration).where(
            or_(
                PairingRegistration.code_expires_at < now - retention,
                PairingRegistration.consumed_at < now - grace,
            )
        )
    )
    session.commit()
    registrations = result.rowcount
    tokens = token_service.purge_expired_tokens(session, retention)

    if registrations or tokens:
        logger.info("Purged %d registration(s) and %d token(s)", registrations, tokens)
    return {"registrations": registrations, "tokens": tokens}
