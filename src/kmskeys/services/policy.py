"""Time-bound KMS key policy generation.

Every signing key is created with a policy that grants a single principal
a fixed set of KMS actions, and only while aws:CurrentTime is before the
key's expiration instant. Once that instant passes, KMS itself refuses
Sign/Verify for the principal; nothing in this package enforces expiry.

The document is built as structured data and serialized canonically
(sorted keys, sorted actions, compact separators), so two documents for
the same instant are byte-identical and a parsed document compares equal
to the one it was serialized from.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

POLICY_VERSION = "2012-10-17"
POLICY_ID = "key-default-1"
STATEMENT_SID = "AllowAccessUntilExpirationDate"

# Actions granted to the trust principal on each key
ALLOWED_ACTIONS: frozenset[str] = frozenset(
    {
        "kms:CreateKey",
        "kms:TagResource",
        "kms:DescribeKey",
        "kms:PutKeyPolicy",
        "kms:GetPublicKey",
        "kms:Sign",
        "kms:Verify",
        "kms:ScheduleKeyDeletion",
    }
)

_INSTANT_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$")


def truncate_to_millis(moment: datetime) -> datetime:
    """Drop sub-millisecond precision so the instant survives ISO rendering."""
    return moment.replace(microsecond=(moment.microsecond // 1000) * 1000)


def format_instant(moment: datetime) -> str:
    """Render an aware datetime as ISO-8601 UTC with millisecond precision.

    Example: 2030-01-02T03:04:05.678Z

    Raises:
        ValueError: If the datetime is naive.
    """
    if moment.tzinfo is None or moment.utcoffset() is None:
        msg = "Policy instants must be timezone-aware"
        raise ValueError(msg)
    utc = moment.astimezone(UTC)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def parse_instant(text: str) -> datetime:
    """Inverse of format_instant.

    Raises:
        ValueError: If the text is not in the exact rendered form.
    """
    if not _INSTANT_PATTERN.match(text):
        msg = f"Not a millisecond UTC instant: {text!r}"
        raise ValueError(msg)
    return datetime.strptime(text, "%Y-%m-%dT%H:%M:%S.%fZ").replace(tzinfo=UTC)


@dataclass(frozen=True, slots=True)
class AccessPolicyDocument:
    """Single-statement KMS key policy gated on an expiration instant.

    Attributes:
        principal_arn: AWS principal granted access.
        expires_at: Instant after which the grant no longer applies.
        allowed_actions: KMS actions granted.
    """

    principal_arn: str
    expires_at: datetime
    allowed_actions: frozenset[str] = field(default=ALLOWED_ACTIONS)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the key policy structure KMS expects."""
        return {
            "Version": POLICY_VERSION,
            "Id": POLICY_ID,
            "Statement": [
                {
                    "Sid": STATEMENT_SID,
                    "Effect": "Allow",
                    "Principal": {"AWS": self.principal_arn},
                    "Action": sorted(self.allowed_actions),
                    "Resource": "*",
                    "Condition": {
                        "DateLessThan": {
                            "aws:CurrentTime": format_instant(self.expires_at),
                        }
                    },
                }
            ],
        }

    def to_json(self) -> str:
        """Canonical JSON form sent as the CreateKey Policy parameter."""
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AccessPolicyDocument:
        """Parse a document produced by to_dict().

        Raises:
            ValueError: If the structure is not a single time-bound statement.
        """
        statements = data.get("Statement")
        if not isinstance(statements, list) or len(statements) != 1:
            msg = "Expected exactly one policy statement"
            raise ValueError(msg)
        statement = statements[0]
        try:
            principal = statement["Principal"]["AWS"]
            actions = statement["Action"]
            instant = statement["Condition"]["DateLessThan"]["aws:CurrentTime"]
        except (KeyError, TypeError) as e:
            msg = f"Malformed policy statement: missing {e}"
            raise ValueError(msg) from e
        if isinstance(actions, str):
            actions = [actions]
        return cls(
            principal_arn=principal,
            allowed_actions=frozenset(actions),
            expires_at=parse_instant(instant),
        )

    @classmethod
    def from_json(cls, text: str) -> AccessPolicyDocument:
        return cls.from_dict(json.loads(text))


class PolicyGenerator:
    """Builds key policies for one configured trust principal."""

    def __init__(self, principal_arn: str) -> None:
        if not principal_arn:
            msg = "principal_arn is required"
            raise ValueError(msg)
        self._principal_arn = principal_arn

    @property
    def principal_arn(self) -> str:
        return self._principal_arn

    def build_policy(self, expires_at: datetime) -> AccessPolicyDocument:
        """Build the access policy for a key expiring at expires_at.

        Pure and deterministic: the same instant always yields an equal
        document with identical to_json() output. The condition carries
        millisecond precision, so expires_at must not be finer than that;
        callers holding a clock reading pass it through truncate_to_millis().

        Raises:
            ValueError: If expires_at is naive or has sub-millisecond precision.
        """
        return build_policy(expires_at, self._principal_arn)


def build_policy(expires_at: datetime, principal_arn: str) -> AccessPolicyDocument:
    """Build a time-bound access policy for principal_arn.

    The instant is normalized to UTC; the serialized condition renders it
    exactly.

    Raises:
        ValueError: If expires_at is naive or has sub-millisecond precision.
    """
    format_instant(expires_at)  # rejects naive datetimes
    if expires_at.microsecond % 1000:
        msg = f"Policy expiry must have millisecond precision, got {expires_at.isoformat()}"
        raise ValueError(msg)
    return AccessPolicyDocument(
        principal_arn=principal_arn,
        allowed_actions=ALLOWED_ACTIONS,
        expires_at=expires_at.astimezone(UTC),
    )
