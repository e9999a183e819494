"""Configuration package."""

from debt_mirror.config.settings import (
    AppSettings,
    GoogleSheetsSettings,
    GuestSessionSettings,
    LocalStorageSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "GoogleSheetsSettings",
    "GuestSessionSettings",
    "LocalStorageSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
