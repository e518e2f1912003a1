"""Identity provider boundary schema.

The identity provider (and its client SDK) is reduced to this shape before
anything in this package looks at it.
"""

from typing import Optional

from pydantic import BaseModel


class IdentitySession(BaseModel):
    model_config = {"frozen": True}

    resolved_user_id: Optional[str] = None
    is_session_loaded: bool = False

    @property
    def is_signed_in(self) -> bool:
        return self.is_session_loaded and bool(self.resolved_user_id)

    @classmethod
    def pending(cls) -> "IdentitySession":
        """The SDK has not finished restoring its session yet."""
        return cls(resolved_user_id=None, is_session_loaded=False)

    @classmethod
    def signed_out(cls) -> "IdentitySession":
        return cls(resolved_user_id=None, is_session_loaded=True)

    @classmethod
    def signed_in(cls, user_id: str) -> "IdentitySession":
        return cls(resolved_user_id=user_id, is_session_loaded=True)
