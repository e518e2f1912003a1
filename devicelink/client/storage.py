"""Persisted client credentials: the pending pairing and the device token."""

import json
import logging
import os
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

DEVICE_INFO_KEY = "device_info_v1"
DEVICE_TOKEN_KEY = "device_token_v1"


class DeviceInfo(BaseModel):
    device_id: str
    code: str
    expires_at: datetime


class StoredToken(BaseModel):
    token: str
    expires_at: datetime


class CredentialStore:
    """Key/value credential storage. Subclasses provide _read and _write."""

    def __init__(self):
        self._lock = threading.Lock()

    def _read(self) -> dict:
        raise NotImplementedError

    def _write(self, data: dict) -> None:
        raise NotImplementedError

    def _get(self, key: str, model):
        with self._lock:
            raw = self._read().get(key)
        if raw is None:
            return None
        try:
            return model.model_validate(raw)
        except ValidationError:
            logger.warning("Discarding unreadable %s entry", key)
            return None

    def _put(self, key: str, value: Optional[BaseModel]) -> None:
        with self._lock:
            data = self._read()
            if value is None:
                data.pop(key, None)
            else:
                data[key] = value.model_dump(mode="json")
            self._write(data)

    def load_device_info(self) -> Optional[DeviceInfo]:
        return self._get(DEVICE_INFO_KEY, DeviceInfo)

    def save_device_info(self, info: DeviceInfo) -> None:
        self._put(DEVICE_INFO_KEY, info)

    def clear_device_info(self) -> None:
        self._put(DEVICE_INFO_KEY, None)

    def load_token(self) -> Optional[StoredToken]:
        return self._get(DEVICE_TOKEN_KEY, StoredToken)

    def save_token(self, token: StoredToken) -> None:
        self._put(DEVICE_TOKEN_KEY, token)

    def clear_token(self) -> None:
        self._put(DEVICE_TOKEN_KEY, None)


class MemoryCredentialStore(CredentialStore):
    def __init__(self, data: dict | None = None):
        super().__init__()
        self._data = dict(data or {})

    def _read(self) -> dict:
        return dict(self._data)

    def _write(self, data: dict) -> None:
        self._data = dict(data)


class FileCredentialStore(CredentialStore):
    """JSON file storage, replaced atomically on every write."""

    def __init__(self, path: Path):
        super().__init__()
        self.path = Path(path)

    def _read(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("Credential file %s is corrupt, ignoring it", self.path)
            return {}

    def _write(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data), encoding="utf-8")
        os.replace(tmp, self.path)
