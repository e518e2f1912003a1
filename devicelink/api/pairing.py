"""Device pairing and token API endpoints."""

from fastapi import APIRouter, Depends
from sqlmodel import Session

from devicelink.api.deps import (
    get_bearer_token,
    get_client_ip,
    get_identity,
    http_error,
)
from devicelink.database import get_session
from devicelink.schemas.identity import IdentitySession
from devicelink.schemas.pairing import (
    ExchangeRequest,
    LinkRequest,
    LinkResponse,
    OkResponse,
    RegisterResponse,
    TokenResponse,
)
from devicelink.services.errors import PairingError
from devicelink.services.pairing_service import exchange_code, link_code, register_device
from devicelink.services.token_service import refresh_token, revoke_device, validate_token

router = APIRouter(prefix="/devices", tags=["pairing"])


@router.post("/register", response_model=RegisterResponse)
def register(
    client_ip: str = Depends(get_client_ip),
    session: Session = Depends(get_session),
):
    """Start pairing: issue a device id and a short-lived code to show the user."""
    try:
        result = register_device(client_ip, session)
    except PairingError as e:
        raise http_error(e)
    return RegisterResponse(**result)


@router.post("/link", response_model=LinkResponse)
def link(
    request: LinkRequest,
    identity: IdentitySession = Depends(get_identity),
    session: Session = Depends(get_session),
):
    """Link a code to the signed-in web user."""
    try:
        device_id = link_code(request.code, identity, session)
    except PairingError as e:
        raise http_error(e)
    return LinkResponse(device_id=device_id)


@router.post("/exchange", response_model=TokenResponse)
def exchange(
    request: ExchangeRequest,
    client_ip: str = Depends(get_client_ip),
    session: Session = Depends(get_session),
):
    """Polled by the device until the code is linked. Returns a device token."""
    try:
        issued = exchange_code(request.device_id, request.code, client_ip, session)
    except PairingError as e:
        raise http_error(e)
    return TokenResponse(token=issued.token, expires_at=issued.expires_at)


@router.post("/refresh", response_model=TokenResponse)
def refresh(
    token: str | None = Depends(get_bearer_token),
    session: Session = Depends(get_session),
):
    """Rotate a still-valid device token."""
    try:
        issued = refresh_token(token, session)
    except PairingError as e:
        raise http_error(e)
    return TokenResponse(token=issued.token, expires_at=issued.expires_at)


@router.post("/logout", response_model=OkResponse)
def logout(
    token: str | None = Depends(get_bearer_token),
    session: Session = Depends(get_session),
):
    """Unlink the calling device: every token it holds is revoked."""
    try:
        claims = validate_token(token, session, touch=False, allow_expired=True)
    except PairingError as e:
        raise http_error(e)
    revoke_device(claims.device_id, session, reason="logout")
    return OkResponse()
