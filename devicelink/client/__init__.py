"""Extension-side pairing client."""

from devicelink.client.api import PairingAPI, PairingClientError, TransportError
from devicelink.client.config import ClientSettings
from devicelink.client.session import (
    NotAuthenticated,
    PollInProgress,
    PollOutcome,
    RestorationPending,
    SessionMachine,
    SessionState,
)
from devicelink.client.storage import (
    CredentialStore,
    DeviceInfo,
    FileCredentialStore,
    MemoryCredentialStore,
    StoredToken,
)

__all__ = [
    "PairingAPI",
    "PairingClientError",
    "TransportError",
    "ClientSettings",
    "NotAuthenticated",
    "PollInProgress",
    "PollOutcome",
    "RestorationPending",
    "SessionMachine",
    "SessionState",
    "CredentialStore",
    "DeviceInfo",
    "FileCredentialStore",
    "MemoryCredentialStore",
    "StoredToken",
]
