"""Resolve identity-provider sessions presented to the linking endpoint.

This service never authenticates anyone itself: it verifies the session
token the identity provider issued and keeps only the user id.
"""

import logging

import jwt

from devicelink.config import settings
from devicelink.schemas.identity import IdentitySession

logger = logging.getLogger(__name__)


def resolve_identity(session_token: str | None, dev_user_id: str | None = None) -> IdentitySession:
    """Turn request credentials into an IdentitySession.

    Returns a signed-out session when nothing verifiable was presented.
    """
    if session_token and settings.identity_jwt_secret:
        options = {"require": ["sub", "exp"]}
        kwargs = {}
        if settings.identity_audience:
            kwargs["audience"] = settings.identity_audience
        else:
            options["verify_aud"] = False
        try:
            payload = jwt.decode(
                session_token,
                settings.identity_jwt_secret,
                algorithms=[settings.identity_jwt_algorithm],
                options=options,
                **kwargs,
            )
        except jwt.PyJWTError as e:
            logger.info("Rejected identity session token: %s", e)
        else:
            return IdentitySession.signed_in(str(payload["sub"]))

    if dev_user_id and settings.allow_dev_identity:
        logger.warning("Using development identity header for user %s", dev_user_id)
        return IdentitySession.signed_in(dev_user_id)

    return IdentitySession.signed_out()
