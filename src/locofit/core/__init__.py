"""Core configuration for locofit services."""

from locofit.core.config import (
    ConfigValidationError,
    DatabaseSettings,
    Environment,
    NotificationSettings,
    Settings,
)
from locofit.core.settings import clear_settings_cache, get_settings

__all__ = [
    "ConfigValidationError",
    "DatabaseSettings",
    "Environment",
    "NotificationSettings",
    "Settings",
    "clear_settings_cache",
    "get_settings",
]
