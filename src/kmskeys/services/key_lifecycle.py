"""Signing key lifecycle in AWS KMS.

A key moves through these states:

    CREATED -> ACTIVE -> POLICY_EXPIRED -> PENDING_DELETION -> (destroyed)

Only the move into PENDING_DELETION is triggered from here. POLICY_EXPIRED
is not a KMS state: the key stays Enabled in KMS, but its policy condition
has lapsed and Sign/Verify calls by the trust principal are denied. A key
past its expires_at must be treated as unusable even if status() still
reports it enabled.

Known inconsistency window: if CreateKey succeeds and GetPublicKey then
fails, create() fails and returns no key, but the KMS key exists. Such a
key is referenced by nothing; callers reconcile by sweeping keys carrying
the ownership tag that have no record and scheduling them for deletion.
"""

from __future__ import annotations

import asyncio
import base64
import functools
import logging
import textwrap
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any

from botocore.exceptions import BotoCoreError, ClientError
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives.serialization import load_der_public_key

from kmskeys.core.config import (
    MAX_DELETION_WINDOW_DAYS,
    MIN_DELETION_WINDOW_DAYS,
    RSA_KEY_SPECS,
    KeySettings,
)
from kmskeys.services.errors import DeletionError, KeyCreationError, KeyDescribeError
from kmskeys.services.policy import PolicyGenerator, format_instant, truncate_to_millis
from kmskeys.services.results import OperationResult

if TYPE_CHECKING:
    from mypy_boto3_kms import KMSClient

logger = logging.getLogger(__name__)

KEY_USAGE = "SIGN_VERIFY"
PEM_HEADER = "-----BEGIN PUBLIC KEY-----"
PEM_FOOTER = "-----END PUBLIC KEY-----"


class KeyState(str, Enum):
    """Lifecycle state of a signing key."""

    CREATED = "created"
    ACTIVE = "active"
    DISABLED = "disabled"
    POLICY_EXPIRED = "policy_expired"
    PENDING_DELETION = "pending_deletion"
    UNAVAILABLE = "unavailable"

    @classmethod
    def from_kms(cls, kms_state: str | None) -> KeyState:
        """Map a KMS KeyState string onto the lifecycle state."""
        return _KMS_STATES.get(kms_state or "", cls.UNAVAILABLE)


_KMS_STATES = {
    "Creating": KeyState.CREATED,
    "Enabled": KeyState.ACTIVE,
    "Disabled": KeyState.DISABLED,
    "PendingDeletion": KeyState.PENDING_DELETION,
    "PendingReplicaDeletion": KeyState.PENDING_DELETION,
}


@dataclass(frozen=True, slots=True)
class SigningKey:
    """A freshly created KMS signing key.

    Attributes:
        key_id: KMS key id.
        key_spec: KMS KeySpec (e.g., RSA_2048).
        public_key_pem: SubjectPublicKeyInfo in PEM armor.
        created_at: Creation instant (millisecond precision, UTC).
        expires_at: Instant the key policy stops granting access; equal to
            the condition instant embedded in the policy.
        enabled: Enabled flag reported by CreateKey. Not kept current; use
            KeyLifecycleManager.status() for a live reading.
    """

    key_id: str
    key_spec: str
    public_key_pem: str
    created_at: datetime
    expires_at: datetime
    enabled: bool

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or datetime.now(UTC)) >= self.expires_at

    def lifecycle_state(self, now: datetime | None = None) -> KeyState:
        """State as far as this record can tell, without a remote call."""
        if self.is_expired(now):
            return KeyState.POLICY_EXPIRED
        return KeyState.ACTIVE if self.enabled else KeyState.DISABLED

    def to_dict(self) -> dict[str, Any]:
        return {
            "key_id": self.key_id,
            "key_spec": self.key_spec,
            "public_key_pem": self.public_key_pem,
            "created_at": format_instant(self.created_at),
            "expires_at": format_instant(self.expires_at),
            "enabled": self.enabled,
        }


@dataclass(frozen=True, slots=True)
class KeyStatus:
    """Live key status from DescribeKey."""

    key_id: str
    enabled: bool
    state: KeyState
    deletion_date: datetime | None = None


@dataclass(frozen=True, slots=True)
class DeletionReceipt:
    """Acknowledgement of a scheduled key deletion."""

    key_id: str
    pending_window_days: int
    deletion_date: datetime | None
    state: KeyState


def der_to_pem(der: bytes) -> str:
    """Wrap DER SubjectPublicKeyInfo bytes in PEM armor.

    Raises:
        ValueError: If der is empty or not a parseable public key.
    """
    if not der:
        msg = "Public key is empty"
        raise ValueError(msg)
    try:
        load_der_public_key(der)
    except UnsupportedAlgorithm as e:
        msg = f"Unsupported public key: {e}"
        raise ValueError(msg) from e
    body = "\n".join(textwrap.wrap(base64.b64encode(der).decode("ascii"), 64))
    return f"{PEM_HEADER}\n{body}\n{PEM_FOOTER}"


class KeyLifecycleManager:
    """Creates, inspects, and retires signing keys through a scoped KMS client.

    Operations are independent and safe to run concurrently; the manager
    holds no mutable state beyond its collaborators.
    """

    def __init__(
        self,
        kms_client: KMSClient,
        policy_generator: PolicyGenerator,
        key_settings: KeySettings | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            kms_client: KMS client built from scoped credentials.
            policy_generator: Produces the key policy for each new key.
            key_settings: Provisioning defaults (TTL, spec, tags).
            clock: Returns the current aware datetime; injectable for tests.
        """
        self._kms = kms_client
        self._policy_generator = policy_generator
        self._settings = key_settings or KeySettings()
        self._clock = clock or (lambda: datetime.now(UTC))

    async def _call(self, method: Callable[..., Any], **kwargs: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(method, **kwargs))

    async def create(
        self,
        key_spec: str | None = None,
        ttl_days: int | None = None,
    ) -> OperationResult[SigningKey]:
        """Create a signing key whose policy expires ttl_days from now.

        The key is tagged for ownership attribution, then its public key is
        fetched and armored. If either remote call fails, no key is
        returned; see the module docstring for the orphaned-key window.

        Args:
            key_spec: KMS KeySpec; defaults to the configured spec.
            ttl_days: Days until the policy lapses; defaults to configuration.

        Returns:
            OperationResult with the SigningKey or a KeyCreationError.
        """
        key_spec = key_spec or self._settings.key_spec
        ttl_days = self._settings.default_ttl_days if ttl_days is None else ttl_days

        if key_spec not in RSA_KEY_SPECS:
            return OperationResult.failure(
                KeyCreationError(
                    f"Unsupported key spec for RSASSA-PKCS1-v1_5 signing: {key_spec}",
                    operation="create_key",
                )
            )
        if ttl_days < 1:
            return OperationResult.failure(
                KeyCreationError(
                    f"ttl_days must be at least 1, got {ttl_days}",
                    operation="create_key",
                )
            )

        created_at = truncate_to_millis(self._clock().astimezone(UTC))
        expires_at = created_at + timedelta(days=ttl_days)
        policy = self._policy_generator.build_policy(expires_at)

        try:
            response = await self._call(
                self._kms.create_key,
                KeySpec=key_spec,
                KeyUsage=KEY_USAGE,
                Description=f"{self._settings.description}. Created: {format_instant(created_at)}",
                Policy=policy.to_json(),
                Tags=[{"TagKey": self._settings.tag_key, "TagValue": self._settings.tag_value}],
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("Key creation failed: key_spec=%s, error=%s", key_spec, e)
            return OperationResult.failure(
                KeyCreationError(f"CreateKey failed: {e}", operation="create_key", cause=e)
            )

        metadata = response.get("KeyMetadata") or {}
        key_id = metadata.get("KeyId")
        if not key_id:
            logger.error("Key creation returned no key id: key_spec=%s", key_spec)
            return OperationResult.failure(
                KeyCreationError("CreateKey returned no key id", operation="create_key")
            )

        try:
            public_key = await self._call(self._kms.get_public_key, KeyId=key_id)
            public_key_pem = der_to_pem(public_key.get("PublicKey", b""))
        except (ClientError, BotoCoreError, ValueError) as e:
            logger.error(
                "Public key fetch failed after key creation; KMS key is unreferenced: "
                "key_id=%s, error=%s",
                key_id,
                e,
            )
            return OperationResult.failure(
                KeyCreationError(
                    f"GetPublicKey failed: {e}",
                    operation="get_public_key",
                    cause=e,
                )
            )

        logger.info(
            "Created signing key: key_id=%s, key_spec=%s, expires_at=%s",
            key_id,
            key_spec,
            format_instant(expires_at),
        )
        return OperationResult.success(
            SigningKey(
                key_id=key_id,
                key_spec=key_spec,
                public_key_pem=public_key_pem,
                created_at=created_at,
                expires_at=policy.expires_at,
                enabled=bool(metadata.get("Enabled", True)),
            )
        )

    async def describe(self, key_id: str) -> OperationResult[KeyStatus]:
        """Read the key's live state from DescribeKey."""
        try:
            response = await self._call(self._kms.describe_key, KeyId=key_id)
        except (ClientError, BotoCoreError) as e:
            logger.error("Key describe failed: key_id=%s, error=%s", key_id, e)
            return OperationResult.failure(
                KeyDescribeError(
                    f"DescribeKey failed: {e}",
                    operation="describe_key",
                    key_id=key_id,
                    cause=e,
                )
            )

        metadata = response.get("KeyMetadata") or {}
        enabled = metadata.get("Enabled")
        if enabled is None:
            logger.error("Key describe returned no Enabled flag: key_id=%s", key_id)
            return OperationResult.failure(
                KeyDescribeError(
                    "DescribeKey returned no Enabled flag",
                    operation="describe_key",
                    key_id=key_id,
                )
            )

        status = KeyStatus(
            key_id=key_id,
            enabled=bool(enabled),
            state=KeyState.from_kms(metadata.get("KeyState")),
            deletion_date=metadata.get("DeletionDate"),
        )
        logger.debug("Described key: key_id=%s, state=%s", key_id, status.state.value)
        return OperationResult.success(status)

    async def status(self, key_id: str) -> OperationResult[bool]:
        """Whether KMS currently reports the key as enabled.

        A single idempotent read. Failure never defaults to True or False.
        """
        result = await self.describe(key_id)
        if not result.ok:
            return OperationResult.failure(result.error)  # type: ignore[arg-type]
        return OperationResult.success(result.unwrap().enabled)

    async def schedule_deletion(
        self,
        key_id: str,
        pending_window_days: int = MIN_DELETION_WINDOW_DAYS,
    ) -> OperationResult[DeletionReceipt]:
        """Schedule irreversible destruction of the key.

        Windows outside KMS's 7-30 day range are rejected before any remote
        call. No retry is attempted on failure.

        Args:
            key_id: KMS key id.
            pending_window_days: Days before KMS destroys the key.

        Returns:
            OperationResult with a DeletionReceipt or a DeletionError.
        """
        if not MIN_DELETION_WINDOW_DAYS <= pending_window_days <= MAX_DELETION_WINDOW_DAYS:
            logger.warning(
                "Rejected deletion window: key_id=%s, pending_window_days=%d",
                key_id,
                pending_window_days,
            )
            return OperationResult.failure(
                DeletionError(
                    f"pending_window_days must be between {MIN_DELETION_WINDOW_DAYS} and "
                    f"{MAX_DELETION_WINDOW_DAYS}, got {pending_window_days}",
                    operation="validate",
                    key_id=key_id,
                )
            )

        try:
            response = await self._call(
                self._kms.schedule_key_deletion,
                KeyId=key_id,
                PendingWindowInDays=pending_window_days,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("Key deletion scheduling failed: key_id=%s, error=%s", key_id, e)
            return OperationResult.failure(
                DeletionError(
                    f"ScheduleKeyDeletion failed: {e}",
                    operation="schedule_key_deletion",
                    key_id=key_id,
                    cause=e,
                )
            )

        receipt = DeletionReceipt(
            key_id=key_id,
            pending_window_days=response.get("PendingWindowInDays", pending_window_days),
            deletion_date=response.get("DeletionDate"),
            state=KeyState.from_kms(response.get("KeyState", "PendingDeletion")),
        )
        logger.info(
            "Scheduled key deletion: key_id=%s, pending_window_days=%d",
            key_id,
            receipt.pending_window_days,
        )
        return OperationResult.success(receipt)
