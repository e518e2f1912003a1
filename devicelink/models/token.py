"""Device token model."""

from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel


class DeviceToken(SQLModel, table=True):
    __tablename__ = "device_tokens"

    id: str = Field(primary_key=True)  # jti claim
    token_hash: str = Field(unique=True, index=True)
    device_id: str = Field(index=True)
    user_id: str = Field(index=True)
    device_name: Optional[str] = None
    issued_at: datetime
    expires_at: datetime
    last_used: Optional[datetime] = None
    revoked: bool = Field(default=False)
    revoked_at: Optional[datetime] = None
    revoked_reason: Optional[str] = None  # 'logout' | 'unlink' | 'rotated'
