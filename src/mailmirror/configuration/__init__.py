"""Configuration utilities for mailmirror."""

from .logging_setup import configure_logging
from .settings import (
    DEFAULT_CONFIG_PATH,
    IndexSettings,
    LoggingSettings,
    Settings,
    SyncSettings,
    load_settings,
    save_settings,
)

__all__ = [
    "DEFAULT_CONFIG_PATH",
    "IndexSettings",
    "LoggingSettings",
    "Settings",
    "SyncSettings",
    "configure_logging",
    "load_settings",
    "save_settings",
]
