"""Pairing and token error taxonomy.

Every error carries the wire code the client switches on and the HTTP
status the router answers with. Only not_ready and rate_limited are
retryable; the client keys its retry decisions on the code.
"""


class PairingError(Exception):
    code = "error"
    status_code = 400
    message = "Request failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)

    def to_detail(self) -> dict:
        return {"error": self.code, "message": str(self)}


# --- Rate limiting ---

class RateLimited(PairingError):
    code = "rate_limited"
    status_code = 429
    message = "Too many requests"

    def __init__(self, retry_after: int, message: str | None = None):
        super().__init__(message)
        self.retry_after = retry_after


# --- Pairing codes ---

class CodeNotFound(PairingError):
    code = "code_not_found"
    status_code = 404
    message = "No pairing matches this code"


class CodeExpired(PairingError):
    code = "code_expired"
    status_code = 410
    message = "Pairing code has expired"


class CodeAlreadyLinked(PairingError):
    code = "code_already_linked"
    status_code = 409
    message = "Pairing code is already linked to another account"


class NotLinked(PairingError):
    code = "not_linked"
    status_code = 404
    message = "No pending pairing for this device and code"


class NotReady(PairingError):
    code = "not_ready"
    status_code = 425
    message = "Device not linked yet"


class IdentityRequired(PairingError):
    code = "identity_required"
    status_code = 401
    message = "A signed-in account is required to link a device"


# --- Device tokens ---

class TokenError(PairingError):
    status_code = 401


class MissingToken(TokenError):
    code = "missing_token"
    message = "Bearer token required"


class MalformedToken(TokenError):
    code = "malformed"
    message = "Token is malformed"


class BadSignature(TokenError):
    code = "bad_signature"
    message = "Token signature does not verify"


class TokenRevoked(TokenError):
    code = "revoked"
    message = "Token has been revoked"


class TokenExpired(TokenError):
    code = "expired"
    message = "Token has expired"


# --- Device management ---

class DeviceNotFound(PairingError):
    code = "device_not_found"
    status_code = 404
    message = "Device not found"
