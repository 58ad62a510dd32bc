"""JWK record lookup used to resolve a token's kid to its KMS key.

The authoritative store lives outside this package (typically a database
table of kid -> KMS key id plus an activation flag). JWTSigner depends
only on the JWKStore protocol; InMemoryJWKStore is a reference
implementation for tests and the command line.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class JWKRecord:
    """Stored mapping from a JWT kid to the KMS key that signs for it.

    Attributes:
        kid: Key identifier placed in JWT headers.
        kms_key_id: KMS key id (or ARN) used for Sign.
        active: Whether the key may currently sign. Checked by callers
            before signing, not by the signer.
    """

    kid: str
    kms_key_id: str
    active: bool = True


class JWKNotFoundError(LookupError):
    """Raised when no record exists for a kid."""

    def __init__(self, kid: str) -> None:
        self.kid = kid
        super().__init__(f"No JWK record for kid: {kid}")


@runtime_checkable
class JWKStore(Protocol):
    """Lookup interface of the external JWK store.

    Each lookup must be atomic: the returned record reflects a single
    consistent read. Implementations raise on unknown kids.
    """

    async def retrieve_jwk(self, kid: str) -> JWKRecord: ...


class InMemoryJWKStore:
    """Dictionary-backed JWKStore."""

    def __init__(self, records: list[JWKRecord] | None = None) -> None:
        self._records: dict[str, JWKRecord] = {}
        for record in records or []:
            self.put(record)

    def put(self, record: JWKRecord) -> None:
        self._records[record.kid] = record

    async def retrieve_jwk(self, kid: str) -> JWKRecord:
        try:
            return self._records[kid]
        except KeyError:
            raise JWKNotFoundError(kid) from None
