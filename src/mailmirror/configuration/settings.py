"""Typed settings for the mailmirror sync engine.

User configuration is wrapped in Pydantic models so the CLI and the engine can
rely on validated values. Settings come from an optional JSON file with
``MAILMIRROR_*`` environment variables layered on top. Account credentials are
not part of this file; they are resolved separately from ``IMAP<n>_*``
variables by :class:`mailmirror.ingestion.imap.descriptor.AccountRegistry`.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator


DEFAULT_CONFIG_PATH = Path.home() / ".mailmirror" / "config.json"
DEFAULT_INDEX_PATH = Path.home() / ".mailmirror" / "mirror.db"

MAX_BODY_CHARS = 50_000


class SyncSettings(BaseModel):
    """Knobs for backfill pacing and the live listener."""

    folder: str = Field("INBOX", description="Mailbox folder to mirror")
    backfill_days: int = Field(7, ge=1, le=365, description="Backfill window in days")
    backfill_max_messages: int = Field(200, ge=1, le=10_000)
    backfill_batch_size: int = Field(50, ge=1, le=1_000)
    pause_every: int = Field(10, ge=1, description="Pause after this many processed messages")
    pause_seconds: float = Field(0.1, ge=0.0, le=10.0)
    body_max_chars: int = Field(MAX_BODY_CHARS, ge=0, le=MAX_BODY_CHARS)
    idle_timeout_seconds: int = Field(
        300, ge=1, le=29 * 60, description="IDLE renewal interval (RFC 2177 caps at 29 min)"
    )
    connection_timeout_seconds: int = Field(30, ge=1, le=600)
    push_fetch_limit: int = Field(50, ge=1, le=1_000)

    @field_validator("folder")
    def _validate_folder(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("folder must not be empty")
        return value


class IndexSettings(BaseModel):
    """Where the local mirror lives."""

    backend: Literal["memory", "sqlite"] = Field("sqlite")
    path: Path = Field(default=DEFAULT_INDEX_PATH, description="SQLite database file")


class LoggingSettings(BaseModel):
    level: str = Field("INFO")

    @field_validator("level")
    def _validate_level(cls, value: str) -> str:
        value = value.upper()
        if value not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return value


class Settings(BaseModel):
    """Root configuration state."""

    sync: SyncSettings = Field(default_factory=SyncSettings)
    index: IndexSettings = Field(default_factory=IndexSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_settings(path: Optional[Path] = None) -> Settings:
    """Load settings from disk, then apply environment overrides.

    A missing file yields defaults. Invalid content raises ``ValueError``.
    """

    path = path or Path(os.getenv("MAILMIRROR_CONFIG", str(DEFAULT_CONFIG_PATH)))
    payload: Dict[str, Any] = {}
    if path.exists():
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid configuration file {path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise ValueError(f"Invalid configuration file {path}: expected an object")
    try:
        payload = _apply_env_overrides(payload)
        return Settings.model_validate(payload)
    except (ValidationError, TypeError) as exc:
        raise ValueError(f"Invalid configuration: {exc}") from exc
    except ValueError as exc:
        raise ValueError(f"Invalid configuration override: {exc}") from exc


def save_settings(settings: Settings, path: Path = DEFAULT_CONFIG_PATH) -> None:
    payload = settings.model_dump(mode="json")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def _apply_env_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    sync = data.setdefault("sync", {})
    _set_env_override(sync, "folder", "MAILMIRROR_FOLDER")
    _set_env_override(sync, "backfill_days", "MAILMIRROR_BACKFILL_DAYS", cast_int=True)
    _set_env_override(sync, "backfill_max_messages", "MAILMIRROR_BACKFILL_MAX", cast_int=True)
    _set_env_override(sync, "idle_timeout_seconds", "MAILMIRROR_IDLE_TIMEOUT", cast_int=True)
    _set_env_override(sync, "connection_timeout_seconds", "MAILMIRROR_CONNECT_TIMEOUT", cast_int=True)

    index = data.setdefault("index", {})
    _set_env_override(index, "backend", "MAILMIRROR_INDEX_BACKEND")
    _set_env_override(index, "path", "MAILMIRROR_INDEX_PATH")

    logging_section = data.setdefault("logging", {})
    _set_env_override(logging_section, "level", "MAILMIRROR_LOG_LEVEL")
    return data


def _set_env_override(
    mapping: Dict[str, Any],
    key: str,
    env_name: str,
    *,
    cast_int: bool = False,
) -> None:
    raw = os.getenv(env_name)
    if raw is None:
        return
    if cast_int:
        mapping[key] = int(raw)
    else:
        mapping[key] = raw


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "DEFAULT_INDEX_PATH",
    "IndexSettings",
    "LoggingSettings",
    "MAX_BODY_CHARS",
    "Settings",
    "SyncSettings",
    "load_settings",
    "save_settings",
]
