"""ConnectHub chat configuration.

Loads settings from two YAML files:
  * connecthub.settings.yaml: non-secret configuration
  * connecthub.secrets.yaml: secrets (never committed)

Both files are optional; anything missing falls back to the defaults below.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, model_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("connecthub.settings.yaml")
SECRETS_FILE  = Path("connecthub.secrets.yaml")


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class JWTSecrets(BaseModel):
    access_secret:  str = "change-me-access-secret"
    refresh_secret: str = "change-me-refresh-secret"
    algorithm:      str = "HS256"


class RedisSecrets(BaseModel):
    password: Optional[str] = None


class Secrets(BaseModel):
    jwt:   JWTSecrets   = Field(default_factory=JWTSecrets)
    redis: RedisSecrets = Field(default_factory=RedisSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:             str   = "0.0.0.0"
    port:             int   = 8000
    # Transport heartbeat; uvicorn closes sockets that miss a pong.
    ws_ping_interval: float = 20.0
    ws_ping_timeout:  float = 60.0
    allowed_origins:  List[str] = Field(default_factory=lambda: ["*"])


class LoggingSettings(BaseModel):
    level: str = "info"


class AuthSettings(BaseModel):
    issuer:                str = "ConnectHub"
    audience:              str = "connecthub-users"
    access_expire_minutes: int = 15
    refresh_expire_days:   int = 7


class DatabaseSettings(BaseModel):
    path: str = "connecthub.duckdb"


class CacheSettings(BaseModel):
    enabled:      bool = True
    url:          str  = "redis://localhost:6379/0"
    max_messages: int  = Field(default=50, ge=1)
    ttl_seconds:  int  = Field(default=3600, ge=1)


class ChatSettings(BaseModel):
    max_content_length: int = Field(default=2000, ge=1)
    default_page_size:  int = Field(default=50, ge=1)
    max_page_size:      int = Field(default=100, ge=1)

    @model_validator(mode="after")
    def _check_page_sizes(self) -> "ChatSettings":
        if self.default_page_size > self.max_page_size:
            raise ValueError("default_page_size must not exceed max_page_size")
        return self


class AutoReplySettings(BaseModel):
    """Simulated replies from synthetic (demo) accounts."""
    enabled:           bool  = True
    synthetic_prefix:  str   = "sample-"
    min_delay_seconds: float = Field(default=2.0, ge=0)
    max_delay_seconds: float = Field(default=5.0, ge=0)

    @model_validator(mode="after")
    def _check_delays(self) -> "AutoReplySettings":
        if self.max_delay_seconds < self.min_delay_seconds:
            raise ValueError("max_delay_seconds must be >= min_delay_seconds")
        return self


class AppSettings(BaseModel):
    server:    ServerSettings    = Field(default_factory=ServerSettings)
    logging:   LoggingSettings   = Field(default_factory=LoggingSettings)
    auth:      AuthSettings      = Field(default_factory=AuthSettings)
    database:  DatabaseSettings  = Field(default_factory=DatabaseSettings)
    cache:     CacheSettings     = Field(default_factory=CacheSettings)
    chat:      ChatSettings      = Field(default_factory=ChatSettings)
    autoreply: AutoReplySettings = Field(default_factory=AutoReplySettings)
    secrets:   Secrets           = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_settings(
    settings_file: Path = SETTINGS_FILE,
    secrets_file: Path = SECRETS_FILE,
) -> AppSettings:
    """Load and merge settings + secrets into a single *AppSettings* object."""
    settings_data = _load_yaml(settings_file)
    secrets_data  = _load_yaml(secrets_file)

    # Merge: secrets live under the "secrets" key in AppSettings
    settings_data["secrets"] = secrets_data

    app_settings = AppSettings(**settings_data)
    logger.info(
        "Settings loaded (server=%s:%s, database=%s, cache.enabled=%s, autoreply.enabled=%s)",
        app_settings.server.host,
        app_settings.server.port,
        app_settings.database.path,
        app_settings.cache.enabled,
        app_settings.autoreply.enabled,
    )
    return app_settings


_config: Optional[AppSettings] = None


def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    global _config
    if _config is None:
        _config = load_settings()
    return _config


def set_config(settings: Optional[AppSettings]) -> None:
    """Replace (or clear) the process-wide settings."""
    global _config
    _config = settings
