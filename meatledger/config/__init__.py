"""Configuration package."""

from meatledger.config.settings import (
    FirestoreSettings,
    LedgerSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "FirestoreSettings",
    "LedgerSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
