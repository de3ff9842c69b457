"""Chat backend configuration.

Loads settings from two YAML files:
  * chat.settings.yaml  - non-secret configuration
  * chat.secrets.yaml   - secrets (never committed)

A couple of environment variables override the files so containers can be
configured without mounting YAML:
  * CHAT_JWT_SECRET  - token signing key
  * CHAT_DB_PATH     - DuckDB database path
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("chat.settings.yaml")
SECRETS_FILE  = Path("chat.secrets.yaml")


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class GoogleOAuthSecrets(BaseModel):
    client_id:     Optional[str] = None
    client_secret: Optional[str] = None


class JWTSecrets(BaseModel):
    secret_key: str = "please-change-this-jwt-secret"
    algorithm:  str = "HS256"


class Secrets(BaseModel):
    google: GoogleOAuthSecrets = Field(default_factory=GoogleOAuthSecrets)
    jwt:    JWTSecrets         = Field(default_factory=JWTSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str       = "0.0.0.0"
    port:            int       = 3000
    frontend_url:    str       = "http://localhost:3000"
    backend_url:     str       = "http://localhost:3000"
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class LoggingSettings(BaseModel):
    level: str = "info"


class AuthSettings(BaseModel):
    token_expire_minutes: int = 60 * 24


class GoogleOAuthSettings(BaseModel):
    enabled:      bool          = True
    callback_url: Optional[str] = None

    def resolve_callback_url(self, backend_url: str) -> str:
        """Absolute callback URL; defaults to ``{backend_url}/auth/google/callback``."""
        if self.callback_url:
            return self.callback_url
        return f"{backend_url.rstrip('/')}/auth/google/callback"


class StorageSettings(BaseModel):
    db_path: str = "chat.duckdb"


class PresenceSettings(BaseModel):
    reconcile_interval_seconds: int = 60


class UploadSettings(BaseModel):
    upload_dir:         str       = "uploads"
    max_file_size_mb:   int       = 10
    allowed_extensions: List[str] = Field(default_factory=lambda: [
        "jpeg", "jpg", "png", "gif", "pdf", "doc", "docx", "txt",
        "mp3", "wav", "ogg",
    ])

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024


class AppSettings(BaseModel):
    server:   ServerSettings      = Field(default_factory=ServerSettings)
    logging:  LoggingSettings     = Field(default_factory=LoggingSettings)
    auth:     AuthSettings        = Field(default_factory=AuthSettings)
    google:   GoogleOAuthSettings = Field(default_factory=GoogleOAuthSettings)
    storage:  StorageSettings     = Field(default_factory=StorageSettings)
    presence: PresenceSettings    = Field(default_factory=PresenceSettings)
    uploads:  UploadSettings      = Field(default_factory=UploadSettings)
    secrets:  Secrets             = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Environment overrides
# ---------------------------------------------------------------------------


def _apply_env_overrides(settings: AppSettings) -> None:
    jwt_secret = os.environ.get("CHAT_JWT_SECRET")
    if jwt_secret:
        settings.secrets.jwt.secret_key = jwt_secret
        logger.info("JWT secret taken from CHAT_JWT_SECRET.")

    db_path = os.environ.get("CHAT_DB_PATH")
    if db_path:
        settings.storage.db_path = db_path
        logger.info("Database path taken from CHAT_DB_PATH: %s", db_path)

    if settings.secrets.jwt.secret_key == JWTSecrets().secret_key:
        logger.warning(
            "Using the default JWT secret. Set secrets.jwt.secret_key "
            "or CHAT_JWT_SECRET for production."
        )


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_settings() -> AppSettings:
    """Load and merge settings + secrets into a single *AppSettings* object."""
    settings_data = _load_yaml(SETTINGS_FILE)
    secrets_data  = _load_yaml(SECRETS_FILE)

    # Merge: secrets live under the "secrets" key in AppSettings
    settings_data["secrets"] = secrets_data

    app_settings = AppSettings(**settings_data)
    _apply_env_overrides(app_settings)
    logger.info(
        "Settings loaded (server=%s:%s, db=%s, reconcile_interval=%ss)",
        app_settings.server.host,
        app_settings.server.port,
        app_settings.storage.db_path,
        app_settings.presence.reconcile_interval_seconds,
    )
    return app_settings


_config: Optional[AppSettings] = None


def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    global _config
    if _config is None:
        _config = load_settings()
    return _config


def set_config(settings: AppSettings) -> None:
    """Replace the process-wide settings (used by tests)."""
    global _config
    _config = settings


def reset_config() -> None:
    """Forget cached settings so the next ``get_config`` reloads them."""
    global _config
    _config = None
