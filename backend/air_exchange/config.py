"""Air Exchange application configuration.

Loads settings from a single YAML file:
  * air_exchange.settings.yaml: server, storage, room and logging settings

The path can be overridden with the ``AIR_EXCHANGE_SETTINGS`` environment
variable or by passing ``settings_path`` to :func:`load_config`.
Relative storage paths are resolved against the settings file directory.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from air_exchange.rooms.schemas import DEFAULT_EXPIRY_MS

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("air_exchange.settings.yaml")
SETTINGS_ENV_VAR = "AIR_EXCHANGE_SETTINGS"


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


def _resolve(base_dir: Path, value: str) -> str:
    path = Path(value)
    if path.is_absolute():
        return str(path)
    return str(base_dir / path)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str  = "0.0.0.0"
    port:            int  = 3000
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])
    # Prefix for File Record urls; request base url is used when empty.
    public_base_url: str  = ""


class StorageSettings(BaseModel):
    upload_dir: str = "uploads"
    public_dir: str = "public"


class RoomSettings(BaseModel):
    key_prefix:             str = "wifi-"
    default_expiry_ms:      int = DEFAULT_EXPIRY_MS
    saved_text_expiry_ms:   int = DEFAULT_EXPIRY_MS
    sweep_interval_seconds: float = 60.0

    @field_validator("default_expiry_ms", "saved_text_expiry_ms", "sweep_interval_seconds")
    @classmethod
    def _positive(cls, value):
        if value <= 0:
            raise ValueError("must be positive")
        return value


LOG_LEVELS = ("critical", "error", "warning", "info", "debug")


class LoggingSettings(BaseModel):
    # Also passed to uvicorn, so only levels both understand.
    level: str = "info"

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        if value.lower() not in LOG_LEVELS:
            raise ValueError(f"unknown logging level: {value}")
        return value.lower()


class AppConfig(BaseModel):
    server:  ServerSettings  = Field(default_factory=ServerSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    rooms:   RoomSettings    = Field(default_factory=RoomSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------

_config: Optional[AppConfig] = None


def load_config(settings_path: Optional[Path] = None) -> AppConfig:
    """Load settings into a single *AppConfig* object."""
    if settings_path is None:
        settings_path = Path(os.environ.get(SETTINGS_ENV_VAR, SETTINGS_FILE))
    settings_path = Path(settings_path)

    config = AppConfig(**_load_yaml(settings_path))

    base_dir = settings_path.resolve().parent
    config.storage.upload_dir = _resolve(base_dir, config.storage.upload_dir)
    config.storage.public_dir = _resolve(base_dir, config.storage.public_dir)

    logger.info(
        "Settings loaded (server=%s:%s, upload_dir=%s, sweep_interval=%ss)",
        config.server.host,
        config.server.port,
        config.storage.upload_dir,
        config.rooms.sweep_interval_seconds,
    )
    return config


def get_config() -> AppConfig:
    """Return the process-wide config, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: AppConfig) -> None:
    global _config
    _config = config


def reset_config() -> None:
    """Forget the cached config (for testing)."""
    global _config
    _config = None
