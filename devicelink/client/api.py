"""HTTP client for the pairing API."""

import logging
from typing import Optional

import httpx

from devicelink.client.config import ClientSettings
from devicelink.client.storage import DeviceInfo, StoredToken

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


class TransportError(Exception):
    """The server could not be reached. Never a verdict on the credential."""


class PairingClientError(Exception):
    """The server answered with an error code."""

    def __init__(self, code: str, status_code: int, message: str = "", retry_after: int = 0):
        super().__init__(message or code)
        self.code = code
        self.status_code = status_code
        self.retry_after = retry_after


class PairingAPI:
    """Thin wrapper over the pairing endpoints.

    Pass ``http`` to reuse an existing ``httpx.Client`` (its base_url is used).
    """

    def __init__(self, settings: Optional[ClientSettings] = None, http: Optional[httpx.Client] = None):
        settings = settings or ClientSettings()
        self._http = http or httpx.Client(
            base_url=settings.api_base_url,
            timeout=settings.request_timeout_seconds,
        )

    def close(self) -> None:
        self._http.close()

    def _request(
        self,
        method: str,
        path: str,
        token: Optional[str] = None,
        json: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> dict:
        headers = dict(headers or {})
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            response = self._http.request(method, f"{API_PREFIX}{path}", json=json, headers=headers)
        except httpx.HTTPError as e:
            raise TransportError(str(e)) from e

        if response.is_success:
            return response.json() if response.content else {}

        code, message = f"http_{response.status_code}", response.text
        try:
            body = response.json()
        except ValueError:
            body = None
        detail = body.get("detail") if isinstance(body, dict) else None
        if isinstance(detail, dict):
            code = detail.get("error", code)
            message = detail.get("message", message)

        retry_after = 0
        if response.status_code == 429:
            try:
                retry_after = int(response.headers.get("Retry-After", "0"))
            except ValueError:
                retry_after = 0
        raise PairingClientError(code, response.status_code, message, retry_after)

    def register(self) -> DeviceInfo:
        data = self._request("POST", "/devices/register")
        return DeviceInfo(device_id=data["deviceId"], code=data["code"], expires_at=data["expiresAt"])

    def exchange(self, device_id: str, code: str) -> StoredToken:
        data = self._request("POST", "/devices/exchange", json={"deviceId": device_id, "code": code})
        return StoredToken(token=data["token"], expires_at=data["expiresAt"])

    def link(self, code: str, identity_token: str) -> str:
        """Called from the web dashboard with the identity-provider session token."""
        data = self._request("POST", "/devices/link", token=identity_token, json={"code": code})
        return data["deviceId"]

    def refresh(self, token: str) -> StoredToken:
        data = self._request("POST", "/devices/refresh", token=token)
        return StoredToken(token=data["token"], expires_at=data["expiresAt"])

    def logout(self, token: str) -> None:
        self._request("POST", "/devices/logout", token=token)

    def ping(self, token: str) -> dict:
        return self._request("GET", "/protected/ping", token=token)
