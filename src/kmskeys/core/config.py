"""Configuration management for kmskeys.

This module provides centralized configuration using Pydantic Settings.
All configuration is loaded from environment variables with the KMSKEYS_
prefix. Nested settings use double underscore as delimiter
(e.g., KMSKEYS_AWS__ROLE_ARN).

Services never read these settings themselves: the AWS and key sections
are handed to each component at construction so tests can build them
directly without touching the process environment.

Example:
    export KMSKEYS_AWS__REGION=eu-west-1
    export KMSKEYS_AWS__ROLE_ARN=arn:aws:iam::123456789012:role/jwt-signer
    export KMSKEYS_KEYS__DEFAULT_TTL_DAYS=90
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from typing import Annotated, Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# KMS refuses pending windows outside this range
MIN_DELETION_WINDOW_DAYS = 7
MAX_DELETION_WINDOW_DAYS = 30

_ARN_PATTERN = re.compile(r"^arn:aws[a-zA-Z-]*:iam::\d{12}:[\w+=,.@/-]+$")

RSA_KEY_SPECS = frozenset({"RSA_2048", "RSA_3072", "RSA_4096"})


class AWSSettings(BaseSettings):
    """AWS connection and trust settings.

    The role ARN is both the role assumed for scoped credentials and the
    principal granted access in every key policy.
    """

    model_config = SettingsConfigDict(
        env_prefix="KMSKEYS_AWS__",
        extra="ignore",
    )

    region: str = Field(
        default="us-east-1",
        description="AWS region hosting the KMS keys",
    )
    role_arn: str = Field(
        description="IAM role assumed for KMS access and named in key policies",
    )
    session_name: str = Field(
        default="KmsKeysSession",
        description="Role session name reported in CloudTrail",
    )
    session_duration_seconds: Annotated[int, Field(ge=900, le=43200)] = Field(
        default=3600,
        description="Lifetime of assumed-role credentials in seconds",
    )
    endpoint_url: str | None = Field(
        default=None,
        description="Override endpoint for KMS/STS (LocalStack and similar)",
    )

    @field_validator("role_arn")
    @classmethod
    def validate_role_arn(cls, v: str) -> str:
        """Reject values that are not IAM ARNs."""
        if not _ARN_PATTERN.match(v):
            msg = f"role_arn must be an IAM ARN, got: {v!r}"
            raise ValueError(msg)
        return v


class KeySettings(BaseSettings):
    """Signing key provisioning settings."""

    model_config = SettingsConfigDict(
        env_prefix="KMSKEYS_KEYS__",
        extra="ignore",
    )

    default_ttl_days: Annotated[int, Field(ge=1)] = Field(
        default=90,
        description="Days until a new key's policy stops granting access",
    )
    key_spec: str = Field(
        default="RSA_2048",
        description="KMS KeySpec for new signing keys",
    )
    deletion_window_days: Annotated[
        int, Field(ge=MIN_DELETION_WINDOW_DAYS, le=MAX_DELETION_WINDOW_DAYS)
    ] = Field(
        default=MIN_DELETION_WINDOW_DAYS,
        description="Pending window before KMS destroys a key",
    )
    tag_key: str = Field(
        default="app",
        description="Tag key used for ownership attribution",
    )
    tag_value: str = Field(
        default="kmskeys",
        description="Tag value used for ownership attribution",
    )
    description: str = Field(
        default="JWT signing key",
        description="Key description prefix; creation instant is appended",
    )

    @field_validator("key_spec")
    @classmethod
    def validate_key_spec(cls, v: str) -> str:
        """Tokens are signed with RSASSA-PKCS1-v1_5, so only RSA specs apply."""
        if v not in RSA_KEY_SPECS:
            msg = f"key_spec must be one of: {', '.join(sorted(RSA_KEY_SPECS))}"
            raise ValueError(msg)
        return v


class Settings(BaseSettings):
    """Main kmskeys configuration container.

    Example environment variables:
        KMSKEYS_LOG_LEVEL=DEBUG
        KMSKEYS_AWS__ROLE_ARN=arn:aws:iam::123456789012:role/jwt-signer
        KMSKEYS_KEYS__KEY_SPEC=RSA_3072
    """

    model_config = SettingsConfigDict(
        env_prefix="KMSKEYS_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        validate_default=True,
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    aws: AWSSettings = Field(default_factory=AWSSettings)
    keys: KeySettings = Field(default_factory=KeySettings)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            msg = f"log_level must be one of: {', '.join(sorted(allowed))}"
            raise ValueError(msg)
        return v.upper()

    def get_policy_snapshot(self) -> dict[str, Any]:
        """Non-sensitive configuration snapshot for startup logging."""
        return {
            "aws": {
                "region": self.aws.region,
                "role_arn": self.aws.role_arn,
                "session_duration_seconds": self.aws.session_duration_seconds,
            },
            "keys": {
                "default_ttl_days": self.keys.default_ttl_days,
                "key_spec": self.keys.key_spec,
                "deletion_window_days": self.keys.deletion_window_days,
            },
        }

    def get_policy_hash(self) -> str:
        """SHA-256 of the snapshot, for spotting config drift between runs."""
        snapshot_json = json.dumps(self.get_policy_snapshot(), sort_keys=True)
        return hashlib.sha256(snapshot_json.encode()).hexdigest()


class ConfigValidationError(Exception):
    """Raised when configuration validation fails.

    This exception should cause fast failure at startup to prevent
    running with invalid configuration.
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        self.message = message
        self.field = field
        super().__init__(message)


def validate_settings(settings: Settings) -> None:
    """Cross-field checks that cannot be expressed on a single model.

    Args:
        settings: Settings instance to validate.

    Raises:
        ConfigValidationError: If validation fails.
    """
    if settings.aws.endpoint_url and not settings.aws.endpoint_url.startswith(
        ("http://", "https://")
    ):
        raise ConfigValidationError(
            "aws.endpoint_url must be an http(s) URL.",
            field="aws.endpoint_url",
        )

    logger.info(
        "Configuration validated. Policy hash: %s",
        settings.get_policy_hash(),
    )
