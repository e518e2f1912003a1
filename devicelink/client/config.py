"""Extension-side client configuration."""

from pathlib import Path

from pydantic_settings import BaseSettings


class ClientSettings(BaseSettings):
    api_base_url: str = "http://localhost:8080"
    web_base_url: str = "http://localhost:3000"
    poll_interval_seconds: float = 2.5
    max_poll_attempts: int = 120
    refresh_margin_seconds: int = 300
    request_timeout_seconds: float = 10.0
    storage_path: Path = Path.home() / "devicelink" / "client" / "credentials.json"

    model_config = {"env_prefix": "DEVICELINK_CLIENT_"}
