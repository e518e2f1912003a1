"""System endpoints: health, protected ping, maintenance."""

from fastapi import APIRouter, Depends
from sqlmodel import Session

from devicelink.api.deps import get_current_device, require_admin_key
from devicelink.database import get_session
from devicelink.schemas.pairing import CleanupResponse, PingResponse
from devicelink.services.pairing_service import purge_stale
from devicelink.services.token_service import TokenClaims

router = APIRouter(tags=["system"])


@router.get("/health")
def health():
    """Lightweight health check (no auth required)."""
    return {"status": "ok"}


@router.get("/protected/ping", response_model=PingResponse)
def protected_ping(claims: TokenClaims = Depends(get_current_device)):
    """Echo the identity bound to a valid device token."""
    return PingResponse(device_id=claims.device_id, user_id=claims.user_id)


@router.post("/admin/cleanup", response_model=CleanupResponse, dependencies=[Depends(require_admin_key)])
def cleanup(session: Session = Depends(get_session)):
    """Purge expired registrations and tokens."""
    return CleanupResponse(**purge_stale(session))
