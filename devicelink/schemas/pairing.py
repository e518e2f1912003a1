"""Pairing and device token request/response schemas.

Wire keys are camelCase to match the extension; attributes are snake_case.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class WireModel(BaseModel):
    model_config = {"populate_by_name": True}


# --- Pairing ---

class RegisterResponse(WireModel):
    device_id: str = Field(alias="deviceId")
    code: str
    expires_at: datetime = Field(alias="expiresAt")


class LinkRequest(WireModel):
    code: str


class LinkResponse(WireModel):
    ok: bool = True
    device_id: str = Field(alias="deviceId")


class ExchangeRequest(WireModel):
    device_id: str = Field(alias="deviceId")
    code: str


# --- Tokens ---

class TokenResponse(WireModel):
    token: str
    expires_at: datetime = Field(alias="expiresAt")


class OkResponse(WireModel):
    ok: bool = True


class PingResponse(WireModel):
    ok: bool = True
    device_id: str = Field(alias="deviceId")
    user_id: str = Field(alias="userId")


# --- Devices ---

class DeviceResponse(WireModel):
    device_id: str = Field(alias="deviceId")
    device_name: str = Field(alias="deviceName")
    connected_at: datetime = Field(alias="connectedAt")
    last_used: Optional[datetime] = Field(default=None, alias="lastUsed")
    expires_at: datetime = Field(alias="expiresAt")
    is_active: bool = Field(alias="isActive")


class DeviceListResponse(WireModel):
    devices: list[DeviceResponse]
    total_devices: int = Field(alias="totalDevices")
    active_devices: int = Field(alias="activeDevices")


class DeviceUpdateRequest(WireModel):
    device_name: str = Field(alias="deviceName", min_length=1, max_length=100)


# --- Maintenance ---

class CleanupResponse(WireModel):
    registrations: int
    tokens: int
