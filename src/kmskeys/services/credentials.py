"""Scoped credential brokering via STS role assumption.

The process's own AWS identity (the trust anchor) is only ever used to
call sts:AssumeRole. All KMS traffic goes through a client built from the
short-lived credentials that call returns.

Each assume_role() call is an independent round trip: credentials are not
cached between calls, so every session starts from freshly minted keys.

Example:
    role_client = RoleAssumptionClient.from_settings(settings.aws)
    result = await role_client.assume_role(
        settings.aws.role_arn, settings.aws.session_name
    )
    if result.ok:
        kms = build_kms_client(result.value, settings.aws.region)
"""

from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from kmskeys.services.errors import AuthError
from kmskeys.services.results import OperationResult

if TYPE_CHECKING:
    from mypy_boto3_kms import KMSClient
    from mypy_boto3_sts import STSClient

    from kmskeys.core.config import AWSSettings

logger = logging.getLogger(__name__)

DEFAULT_SESSION_DURATION_SECONDS = 3600


def client_config(
    *,
    connect_timeout: float = 5.0,
    read_timeout: float = 30.0,
) -> Config:
    """botocore config shared by STS and KMS clients.

    Retries are disabled: every failure surfaces to the caller on the
    first attempt, and retry policy belongs to the caller.
    """
    return Config(
        connect_timeout=connect_timeout,
        read_timeout=read_timeout,
        retries={"total_max_attempts": 1, "mode": "standard"},
    )


@dataclass(frozen=True, slots=True)
class ScopedCredentials:
    """Temporary credentials returned by sts:AssumeRole.

    Shared read-only by every client built from them and never refreshed
    in place; once expired, assume the role again.

    Attributes:
        access_key_id: Temporary access key id.
        secret_access_key: Temporary secret key.
        session_token: STS session token.
        expires_at: Instant the credentials stop working.
    """

    access_key_id: str
    secret_access_key: str = field(repr=False)
    session_token: str = field(repr=False)
    expires_at: datetime

    def is_expired(self, now: datetime | None = None) -> bool:
        """True once expires_at has been reached."""
        return (now or datetime.now(UTC)) >= self.expires_at


class RoleAssumptionClient:
    """Exchanges the trust anchor identity for scoped role credentials."""

    def __init__(
        self,
        sts_client: STSClient | None = None,
        *,
        region: str = "us-east-1",
        endpoint_url: str | None = None,
    ) -> None:
        """Initialize the role assumption client.

        Args:
            sts_client: Pre-built STS client (tests inject stubs here).
            region: AWS region for the default STS client.
            endpoint_url: Optional STS endpoint override.
        """
        self._sts: STSClient = sts_client or boto3.client(
            "sts",
            region_name=region,
            endpoint_url=endpoint_url,
            config=client_config(),
        )

    @classmethod
    def from_settings(cls, settings: AWSSettings) -> RoleAssumptionClient:
        return cls(region=settings.region, endpoint_url=settings.endpoint_url)

    async def assume_role(
        self,
        role_arn: str,
        session_name: str,
        duration_seconds: int = DEFAULT_SESSION_DURATION_SECONDS,
    ) -> OperationResult[ScopedCredentials]:
        """Assume role_arn and return its temporary credentials.

        No retry is attempted. On failure the result carries an AuthError
        and no credentials; callers must not build a KMS client from it.

        Args:
            role_arn: ARN of the role to assume.
            session_name: RoleSessionName recorded by STS.
            duration_seconds: Requested credential lifetime.

        Returns:
            OperationResult with ScopedCredentials or an AuthError.
        """
        loop = asyncio.get_running_loop()
        requested_at = datetime.now(UTC)
        try:
            response = await loop.run_in_executor(
                None,
                functools.partial(
                    self._sts.assume_role,
                    RoleArn=role_arn,
                    RoleSessionName=session_name,
                    DurationSeconds=duration_seconds,
                ),
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(
                "Role assumption failed: role_arn=%s, session=%s, error=%s",
                role_arn,
                session_name,
                e,
            )
            return OperationResult.failure(
                AuthError(
                    f"Failed to assume role: {e}",
                    operation="assume_role",
                    cause=e,
                )
            )

        raw = response.get("Credentials")
        if not raw or not raw.get("AccessKeyId"):
            logger.error("Role assumption returned no credentials: role_arn=%s", role_arn)
            return OperationResult.failure(
                AuthError("AssumeRole returned no credentials", operation="assume_role")
            )

        expires_at = raw.get("Expiration") or requested_at + timedelta(seconds=duration_seconds)
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)

        logger.debug(
            "Assumed role: role_arn=%s, session=%s, expires_at=%s",
            role_arn,
            session_name,
            expires_at.isoformat(),
        )
        return OperationResult.success(
            ScopedCredentials(
                access_key_id=raw["AccessKeyId"],
                secret_access_key=raw["SecretAccessKey"],
                session_token=raw["SessionToken"],
                expires_at=expires_at,
            )
        )


def build_kms_client(
    credentials: ScopedCredentials,
    region: str,
    *,
    endpoint_url: str | None = None,
    now: datetime | None = None,
) -> KMSClient:
    """Build a KMS client that signs requests with scoped credentials.

    Args:
        credentials: Unexpired credentials from assume_role().
        region: AWS region of the keys.
        endpoint_url: Optional KMS endpoint override.
        now: Clock override for expiry checks.

    Raises:
        AuthError: If the credentials have already expired.
    """
    if credentials.is_expired(now):
        raise AuthError(
            f"Scoped credentials expired at {credentials.expires_at.isoformat()}",
            operation="build_kms_client",
        )
    return boto3.client(
        "kms",
        region_name=region,
        endpoint_url=endpoint_url,
        aws_access_key_id=credentials.access_key_id,
        aws_secret_access_key=credentials.secret_access_key,
        aws_session_token=credentials.session_token,
        config=client_config(),
    )
