"""kmskeys core module.

Shared configuration used by the services and the command line.
"""

from kmskeys.core.config import (
    MAX_DELETION_WINDOW_DAYS,
    MIN_DELETION_WINDOW_DAYS,
    AWSSettings,
    ConfigValidationError,
    KeySettings,
    Settings,
    validate_settings,
)
from kmskeys.core.settings import (
    clear_settings_cache,
    get_settings,
    get_settings_safe,
)

__all__ = [
    "MAX_DELETION_WINDOW_DAYS",
    "MIN_DELETION_WINDOW_DAYS",
    "AWSSettings",
    "ConfigValidationError",
    "KeySettings",
    "Settings",
    "clear_settings_cache",
    "get_settings",
    "get_settings_safe",
    "validate_settings",
]
