"""Wiring for one scoped KMS session.

Assumes the configured role, builds a KMS client from the resulting
credentials, and hands out a KeyLifecycleManager and JWTSigner that share
that client for the credentials' lifetime.

Example:
    result = await open_kms_session(settings)
    session = result.unwrap()
    key = (await session.lifecycle.create()).unwrap()
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from kmskeys.services.credentials import (
    RoleAssumptionClient,
    ScopedCredentials,
    build_kms_client,
)
from kmskeys.services.errors import AuthError
from kmskeys.services.jwt_signer import JWTSigner
from kmskeys.services.key_lifecycle import KeyLifecycleManager
from kmskeys.services.policy import PolicyGenerator
from kmskeys.services.results import OperationResult

if TYPE_CHECKING:
    from mypy_boto3_kms import KMSClient

    from kmskeys.core.config import Settings
    from kmskeys.services.jwks import JWKStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class KmsSession:
    """Scoped KMS access valid until credentials.expires_at."""

    credentials: ScopedCredentials
    kms_client: KMSClient
    lifecycle: KeyLifecycleManager

    def signer(self, jwk_store: JWKStore) -> JWTSigner:
        return JWTSigner(self.kms_client, jwk_store)

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.credentials.is_expired(now)


async def open_kms_session(
    settings: Settings,
    *,
    role_client: RoleAssumptionClient | None = None,
    clock: Callable[[], datetime] | None = None,
) -> OperationResult[KmsSession]:
    """Assume the configured role and build a session around it.

    Every call performs a fresh role assumption.

    Args:
        settings: Application settings.
        role_client: Pre-built role client (tests inject stubs here).
        clock: Clock passed to the lifecycle manager.

    Returns:
        OperationResult with the KmsSession or an AuthError.
    """
    loop = asyncio.get_running_loop()
    if role_client is None:
        role_client = await loop.run_in_executor(
            None, RoleAssumptionClient.from_settings, settings.aws
        )
    assumed = await role_client.assume_role(
        settings.aws.role_arn,
        settings.aws.session_name,
        settings.aws.session_duration_seconds,
    )
    if not assumed.ok:
        return OperationResult.failure(assumed.error)  # type: ignore[arg-type]

    credentials = assumed.unwrap()
    try:
        # Client construction reads botocore service models from disk
        kms_client = await loop.run_in_executor(
            None,
            functools.partial(
                build_kms_client,
                credentials,
                settings.aws.region,
                endpoint_url=settings.aws.endpoint_url,
            ),
        )
    except AuthError as e:
        logger.error("Cannot build KMS client: %s", e)
        return OperationResult.failure(e)

    lifecycle = KeyLifecycleManager(
        kms_client,
        PolicyGenerator(settings.aws.role_arn),
        settings.keys,
        clock=clock,
    )
    logger.info(
        "Opened KMS session: region=%s, expires_at=%s",
        settings.aws.region,
        credentials.expires_at.isoformat(),
    )
    return OperationResult.success(
        KmsSession(credentials=credentials, kms_client=kms_client, lifecycle=lifecycle)
    )
