"""Configuration module for kbclient."""

from .settings import (
    ApiSettings,
    LoggingSettings,
    SessionSettings,
    Settings,
    StorageSettings,
    get_settings,
)

__all__ = [
    "ApiSettings",
    "LoggingSettings",
    "SessionSettings",
    "Settings",
    "StorageSettings",
    "get_settings",
]
