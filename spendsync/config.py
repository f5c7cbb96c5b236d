"""Configuration settings for spendsync."""

import json
import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

ENV_PREFIX = "SPENDSYNC_"


def get_spendsync_home() -> Path:
    """Directory holding the database and credentials (SPENDSYNC_HOME or ~/.spendsync)."""
    override = os.environ.get(f"{ENV_PREFIX}HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".spendsync"


def validate_backend_url(url: Optional[str], *, allow_localhost_http: bool = True) -> Optional[str]:
    """Validate a backend URL for safe credential transmission.

    Only https is accepted for remote hosts; plain http is allowed for
    localhost and 127.0.0.1 unless ``allow_localhost_http`` is False.

    Returns:
        The URL unchanged if valid, or ``None`` if rejected (with a warning
        logged for the rejection reason).
    """
    if not url:
        return None
    parsed = urlparse(url)
    if parsed.scheme not in {"https", "http"}:
        logger.warning("Invalid backend_url scheme; only http/https allowed.")
        return None
    if not parsed.netloc:
        logger.warning("Invalid backend_url; missing host.")
        return None
    if parsed.scheme == "http":
        if not allow_localhost_http:
            logger.warning("HTTP not allowed in this context.")
            return None
        host = parsed.hostname or ""
        if host not in {"localhost", "127.0.0.1"}:
            logger.warning("Refusing non-local http backend_url for security.")
            return None
    return url


class SyncSettings(BaseSettings):
    """Sync settings loaded from environment (SPENDSYNC_*) and .env."""

    home: Path = Field(default_factory=get_spendsync_home)
    db_path: Optional[Path] = None  # defaults to <home>/spendsync.db

    # Remote document store
    backend_url: Optional[str] = None
    auth_token: Optional[str] = None
    user_id: Optional[str] = None
    request_timeout: float = 10.0
    health_timeout: float = 3.0

    # Triggers and network policy
    foreground_min_interval: float = 15 * 60  # seconds since last sync
    auto_sync_interval: float = 5 * 60  # seconds between background passes
    allow_expensive_sync: bool = True  # cellular / hotspot
    allow_constrained_sync: bool = False  # low data mode

    class Config:
        env_prefix = ENV_PREFIX
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @field_validator("backend_url")
    @classmethod
    def _check_backend_url(cls, value: Optional[str]) -> Optional[str]:
        value = validate_backend_url(value)
        return value.rstrip("/") if value else None

    @property
    def database_path(self) -> Path:
        return self.db_path or self.home / "spendsync.db"

    @property
    def has_cloud_credentials(self) -> bool:
        return bool(self.backend_url and self.auth_token)


def _read_credentials_file(home: Path) -> Dict[str, Any]:
    credentials_path = home / "credentials.json"
    if not credentials_path.exists():
        return {}
    try:
        with open(credentials_path) as f:
            creds = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"Ignoring unreadable {credentials_path}: {e}")
        return {}
    if not isinstance(creds, dict):
        return {}
    # Accept both "auth_token" (preferred) and "token" (legacy)
    if "auth_token" not in creds and "token" in creds:
        creds["auth_token"] = creds["token"]
    return creds


def load_settings(**overrides: Any) -> SyncSettings:
    """Build settings with the credential priority used across spendsync.

    Priority (highest first):
    1. Explicit keyword overrides
    2. Environment variables (SPENDSYNC_BACKEND_URL, SPENDSYNC_AUTH_TOKEN, ...)
    3. <home>/credentials.json
    4. .env file and field defaults
    """
    home = Path(overrides["home"]).expanduser() if overrides.get("home") else get_spendsync_home()
    values: Dict[str, Any] = {}
    creds = _read_credentials_file(home)
    for key in ("backend_url", "auth_token", "user_id"):
        if creds.get(key) and not os.environ.get(f"{ENV_PREFIX}{key.upper()}"):
            values[key] = creds[key]
    values.update({k: v for k, v in overrides.items() if v is not None})
    return SyncSettings(**values)


@lru_cache
def get_settings() -> SyncSettings:
    """Get cached settings instance."""
    return load_settings()
