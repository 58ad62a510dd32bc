"""Singleton settings accessor for kmskeys configuration.

Usage:
    from kmskeys.core.settings import get_settings

    settings = get_settings()
    generator = PolicyGenerator(settings.aws.role_arn)
    manager = KeyLifecycleManager(kms_client, generator, settings.keys)

The settings are loaded once and cached. To reload settings (e.g., in tests),
use clear_settings_cache().
"""

from __future__ import annotations

import logging
from functools import lru_cache

from pydantic import ValidationError

from kmskeys.core.config import (
    ConfigValidationError,
    Settings,
    validate_settings,
)

logger = logging.getLogger(__name__)


def _field_errors(error: ValidationError) -> list[str]:
    """One 'location: message' line per failed field."""
    return [
        f"  - {'.'.join(str(part) for part in item['loc']) or '<root>'}: {item['msg']}"
        for item in error.errors()
    ]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load, validate, and cache the KMSKEYS_* configuration.

    A missing role ARN or an out-of-range value is fatal: the process
    exits before any AWS call is made.

    Raises:
        SystemExit: If settings cannot be loaded.
    """
    try:
        settings = Settings()  # type: ignore[call-arg]
        validate_settings(settings)
    except ValidationError as e:
        logger.critical("Invalid KMSKEYS_ configuration:\n%s", "\n".join(_field_errors(e)))
        raise SystemExit(1) from e
    except ConfigValidationError as e:
        logger.critical("Invalid KMSKEYS_ configuration: %s (field: %s)", e.message, e.field)
        raise SystemExit(1) from e

    logger.info(
        "Configuration loaded: region=%s, role_arn=%s, key_spec=%s, "
        "default_ttl_days=%d, policy_hash=%s...",
        settings.aws.region,
        settings.aws.role_arn,
        settings.keys.key_spec,
        settings.keys.default_ttl_days,
        settings.get_policy_hash()[:16],
    )
    return settings


def clear_settings_cache() -> None:
    get_settings.cache_clear()


def get_settings_safe() -> Settings | None:
    """Like get_settings(), but returns None instead of exiting."""
    try:
        return get_settings()
    except SystemExit:
        return None
