"""Common API dependencies: client IP, device token and identity extraction."""

from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from devicelink.config import settings
from devicelink.database import get_session
from devicelink.schemas.identity import IdentitySession
from devicelink.services.errors import PairingError, RateLimited
from devicelink.services.identity_service import resolve_identity
from devicelink.services.token_service import TokenClaims, validate_token

bearer_scheme = HTTPBearer(auto_error=False)


def http_error(error: PairingError) -> HTTPException:
    """Translate a service error into the HTTP response the client switches on."""
    headers = None
    if isinstance(error, RateLimited):
        headers = {"Retry-After": str(error.retry_after)}
    elif error.status_code == status.HTTP_401_UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Bearer"}
    return HTTPException(
        status_code=error.status_code,
        detail=error.to_detail(),
        headers=headers,
    )


def get_client_ip(request: Request) -> str:
    """Address the rate limits key on.

    X-Forwarded-For is only read when the direct peer is a trusted proxy;
    the nearest hop that is not itself a trusted proxy is the client.
    """
    peer = request.client.host if request.client else ""
    trusted = {p.strip() for p in settings.trusted_proxies.split(",") if p.strip()}
    if peer not in trusted:
        return peer

    hops = [h.strip() for h in request.headers.get("x-forwarded-for", "").split(",") if h.strip()]
    for hop in reversed(hops):
        if hop not in trusted:
            return hop
    return peer


def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[str]:
    return credentials.credentials if credentials else None


def get_current_device(
    token: Optional[str] = Depends(get_bearer_token),
    session: Session = Depends(get_session),
) -> TokenClaims:
    """Validate the device token on a protected request."""
    try:
        return validate_token(token, session)
    except PairingError as e:
        raise http_error(e)


def get_identity(
    token: Optional[str] = Depends(get_bearer_token),
    x_dev_user_id: Optional[str] = Header(default=None),
) -> IdentitySession:
    """Resolve the identity-provider session of a web caller."""
    return resolve_identity(token, x_dev_user_id)


def require_admin_key(x_admin_key: Optional[str] = Header(default=None)) -> None:
    if not settings.admin_api_key or x_admin_key != settings.admin_api_key:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": "forbidden", "message": "Admin key required"},
        )
