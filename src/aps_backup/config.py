"""Configuration management for APS Backup."""

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_BASE_URL = "https://developer.api.autodesk.com"

# Scopes requested by the ``auth`` command
DEFAULT_SCOPES: tuple[str, ...] = ("data:read", "data:create", "viewables:read")


def _load_env_file(path: Path | None = None) -> None:
    """Load environment variables from a .env file if present.

    This is a minimal loader that supports simple ``KEY=VALUE`` lines.
    Existing environment variables are not overridden.
    """

    try:
        env_path = path or (Path.cwd() / ".env")
        if not env_path.exists():
            return

        for raw_line in env_path.read_text(encoding="utf-8").splitlines():
            line = raw_line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue

            key, value = line.split("=", 1)
            key = key.strip()
            value = value.strip()

            if (value.startswith("\"") and value.endswith("\"")) or (
                value.startswith("'") and value.endswith("'")
            ):
                value = value[1:-1]

            if key and key not in os.environ:
                os.environ[key] = value
    except OSError:
        # An unreadable .env is the same as no .env
        return


@dataclass
class Config:
    """Application configuration."""

    # OAuth app settings
    client_id: str = ""
    client_secret: str = ""
    callback_url: str = ""

    # Credentials
    access_token: str = ""
    refresh_token: str = ""

    # Service
    base_url: str = DEFAULT_BASE_URL

    # Time limits (seconds)
    list_timeout: float = 15.0
    version_timeout: float = 15.0
    request_timeout: float = 60.0

    # Archive
    compression_level: int = 9
    chunk_size: int = 1024 * 1024  # 1MB

    # Performance tuning
    max_concurrent_fetches: int = 1
    max_retries: int = 3
    backoff_factor: float = 0.5

    @classmethod
    def from_env(cls, env_file: Path | None = None) -> "Config":
        """Create config from environment variables."""
        # Explicitly-set environment variables take precedence over .env
        _load_env_file(env_file)

        return cls(
            client_id=os.getenv("APS_CLIENT_ID", ""),
            client_secret=os.getenv("APS_CLIENT_SECRET", ""),
            callback_url=os.getenv("APS_CALLBACK_URL", ""),
            access_token=os.getenv("APS_ACCESS_TOKEN", ""),
            refresh_token=os.getenv("APS_REFRESH_TOKEN", ""),
            base_url=os.getenv("APS_BASE_URL", DEFAULT_BASE_URL).rstrip("/"),
            list_timeout=float(os.getenv("APS_LIST_TIMEOUT", "15")),
            version_timeout=float(os.getenv("APS_VERSION_TIMEOUT", "15")),
            request_timeout=float(os.getenv("APS_REQUEST_TIMEOUT", "60")),
            compression_level=int(os.getenv("APS_COMPRESSION_LEVEL", "9")),
            max_concurrent_fetches=int(os.getenv("APS_CONCURRENT_FETCHES", "1")),
            max_retries=int(os.getenv("APS_MAX_RETRIES", "3")),
        )

    def has_access_token(self) -> bool:
        return bool(self.access_token)

    def has_refresh_token_auth(self) -> bool:
        return bool(self.client_id and self.client_secret and self.refresh_token)

    def validate(self) -> list[str]:
        """Validate configuration. Returns list of errors."""
        errors = []

        if not self.has_access_token() and not self.has_refresh_token_auth():
            errors.append(
                "Authentication required: set APS_ACCESS_TOKEN, or "
                "APS_CLIENT_ID, APS_CLIENT_SECRET and APS_REFRESH_TOKEN"
            )
        elif "PASTE" in self.access_token:
            errors.append("APS_ACCESS_TOKEN contains placeholder text")

        if not 0 <= self.compression_level <= 9:
            errors.append("compression_level must be between 0 and 9")

        for name in ("list_timeout", "version_timeout", "request_timeout"):
            if getattr(self, name) <= 0:
                errors.append(f"{name} must be positive")

        if self.max_concurrent_fetches < 1:
            errors.append("max_concurrent_fetches must be at least 1")
        elif self.max_concurrent_fetches > 16:
            errors.append("max_concurrent_fetches should not exceed 16")

        if self.max_retries < 0:
            errors.append("max_retries cannot be negative")

        return errors
