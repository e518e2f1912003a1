"""DeviceLink Configuration."""

import secrets
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Server
    server_name: str = "DeviceLink"
    host: str = "0.0.0.0"
    port: int = 8080
    debug: bool = False
    cors_origins: str = "*"
    # Peers allowed to set X-Forwarded-For (comma-separated IPs)
    trusted_proxies: str = ""

    # Paths
    data_dir: Path = Path.home() / "devicelink" / "data"

    # Database
    db_path: Path = Path.home() / "devicelink" / "data" / "devicelink.db"

    # Device tokens
    jwt_secret: str = ""
    jwt_algorithm: str = "HS256"
    token_ttl_seconds: int = 3600  # 1 hour

    # Pairing
    code_length: int = 8
    code_ttl_seconds: int = 300  # 5 minutes
    exchange_grace_seconds: int = 3  # one polling interval
    stale_retention_seconds: int = 3600  # expired codes/tokens kept to report "expired"

    # Rate limits (requests per window, per client IP)
    register_rate_limit: int = 10
    register_rate_window_seconds: int = 60
    exchange_rate_limit: int = 60
    exchange_rate_window_seconds: int = 60

    # Identity provider session tokens
    identity_jwt_secret: str = ""
    identity_jwt_algorithm: str = "HS256"
    identity_audience: str = ""
    allow_dev_identity: bool = False

    # Maintenance
    admin_api_key: str = ""

    model_config = {"env_prefix": "DEVICELINK_"}

    def ensure_dirs(self) -> None:
        """Create all required directories."""
        for d in [self.data_dir, self.db_path.parent]:
            d.mkdir(parents=True, exist_ok=True)

    def ensure_secrets(self) -> None:
        """Generate the signing secret if not set, persisted so tokens survive restarts."""
        secrets_file = self.data_dir / ".secrets"
        saved = {}
        if secrets_file.exists():
            for line in secrets_file.read_text().strip().splitlines():
                if "=" in line:
                    k, v = line.split("=", 1)
                    saved[k.strip()] = v.strip()

        if not self.jwt_secret:
            self.jwt_secret = saved.get("jwt_secret", "") or secrets.token_urlsafe(32)

        secrets_file.write_text(f"jwt_secret={self.jwt_secret}\n")


settings = Settings()
settings.ensure_dirs()
settings.ensure_secrets()
