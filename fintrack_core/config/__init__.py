"""Configuration package."""

from fintrack_core.config.settings import (
    AlertSettings,
    AppSettings,
    CacheSettings,
    CalendarSettings,
    SessionSettings,
    Settings,
    SyncSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AlertSettings",
    "AppSettings",
    "CacheSettings",
    "CalendarSettings",
    "SessionSettings",
    "Settings",
    "SyncSettings",
    "get_settings",
    "validate_all_settings",
]
