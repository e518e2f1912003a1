"""Security utilities: device JWTs, pairing code generation, hashing."""

import hashlib
import secrets

import jwt

from devicelink.config import settings

# No 0/O, 1/I/L: codes are read off one screen and typed into another
CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"

TOKEN_TYPE = "device"


# --- Pairing codes ---

def generate_code(length: int | None = None) -> str:
    """Generate a random human-typeable pairing code."""
    length = length or settings.code_length
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def normalize_code(code: str) -> str:
    return code.strip().upper().replace("-", "").replace(" ", "")


def hash_code(code: str) -> str:
    return hashlib.sha256(normalize_code(code).encode()).hexdigest()


# --- Device JWTs ---

def encode_device_token(jti: str, device_id: str, user_id: str, iat: int, exp: int) -> str:
    """Sign a device token.

    The output depends only on the arguments, so a stored token record can
    be re-encoded into the exact string that was handed out.
    """
    payload = {
        "jti": jti,
        "dev": device_id,
        "sub": user_id,
        "iat": iat,
        "exp": exp,
        "type": TOKEN_TYPE,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_device_token(token: str) -> dict:
    """Verify the signature and return the claims.

    Expiry is not checked here; the token service compares
    ``exp`` against the service clock. Raises jwt.InvalidSignatureError or
    jwt.PyJWTError on failure.
    """
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
        options={"verify_exp": False, "verify_iat": False},
    )


# --- Token Hash ---

def hash_token(token: str) -> str:
    """Fingerprint a token for storage; raw tokens are never persisted."""
    return hashlib.sha256(token.encode()).hexdigest()
