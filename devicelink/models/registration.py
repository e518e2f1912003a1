"""Pairing registration model (the code store)."""

import secrets
from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel


class PairingRegistration(SQLModel, table=True):
    __tablename__ = "device_registrations"

    device_id: str = Field(default_factory=lambda: f"dev_{secrets.token_hex(8)}", primary_key=True)
    code_hash: str = Field(unique=True, index=True)  # sha256 of the normalized code
    code_expires_at: datetime
    linked: bool = Field(default=False)
    user_id: Optional[str] = Field(default=None, index=True)
    linked_at: Optional[datetime] = None
    consumed_at: Optional[datetime] = None  # first successful exchange
    token_id: Optional[str] = None  # jti of the token minted by that exchange
    client_ip: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
