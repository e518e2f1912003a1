"""DeviceLink Database Models."""

from devicelink.models.registration import PairingRegistration
from devicelink.models.token import DeviceToken

__all__ = [
    "PairingRegistration",
    "DeviceToken",
]
