"""Device management API endpoints."""

from fastapi import APIRouter, Depends, status
from sqlmodel import Session

from devicelink.api.deps import get_current_device, http_error
from devicelink.database import get_session
from devicelink.schemas.pairing import DeviceListResponse, DeviceResponse, DeviceUpdateRequest
from devicelink.services.errors import PairingError
from devicelink.services.token_service import (
    TokenClaims,
    list_user_devices,
    rename_device,
    unlink_device,
)

router = APIRouter(tags=["devices"])


@router.get("/devices", response_model=DeviceListResponse)
def list_devices(
    claims: TokenClaims = Depends(get_current_device),
    session: Session = Depends(get_session),
):
    """List all devices paired to the current user."""
    devices = [DeviceResponse(**d) for d in list_user_devices(claims.user_id, session)]
    return DeviceListResponse(
        devices=devices,
        total_devices=len(devices),
        active_devices=sum(1 for d in devices if d.is_active),
    )


@router.patch("/devices/{device_id}", response_model=DeviceResponse)
def update_device(
    device_id: str,
    request: DeviceUpdateRequest,
    claims: TokenClaims = Depends(get_current_device),
    session: Session = Depends(get_session),
):
    """Rename a device."""
    try:
        device = rename_device(device_id, claims.user_id, request.device_name, session)
    except PairingError as e:
        raise http_error(e)
    return DeviceResponse(**device)


@router.delete("/devices/{device_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_device(
    device_id: str,
    claims: TokenClaims = Depends(get_current_device),
    session: Session = Depends(get_session),
):
    """Unlink a device: its tokens stop validating immediately."""
    try:
        unlink_device(device_id, claims.user_id, session)
    except PairingError as e:
        raise http_error(e)
