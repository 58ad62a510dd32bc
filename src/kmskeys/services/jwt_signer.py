"""Compact JWS (RS256) signing with keys held in AWS KMS.

The signing input is built locally from the JSON header and payload; only
its bytes go to KMS, which returns a raw RSASSA-PKCS1-v1_5 SHA-256
signature. The private key never leaves KMS.

Serialization is compact and order-preserving (json.dumps with no
whitespace and no key sorting), so the segments decode back to the exact
header and payload the caller passed in.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import functools
import json
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from botocore.exceptions import BotoCoreError, ClientError

from kmskeys.services.errors import SigningError
from kmskeys.services.results import OperationResult

if TYPE_CHECKING:
    from mypy_boto3_kms import KMSClient

    from kmskeys.services.jwks import JWKStore

logger = logging.getLogger(__name__)

JWS_ALGORITHM = "RS256"
KMS_SIGNING_ALGORITHM = "RSASSA_PKCS1_V1_5_SHA_256"
KMS_MESSAGE_TYPE = "RAW"

_SEGMENT_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def b64url_encode(data: bytes) -> str:
    """Base64url without padding (RFC 7515 Appendix C)."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(segment: str) -> bytes:
    """Decode an unpadded base64url segment.

    Raises:
        ValueError: If the segment uses characters outside the URL-safe
            alphabet, carries padding, or has an impossible length.
    """
    if not _SEGMENT_PATTERN.match(segment):
        msg = f"Not an unpadded base64url segment: {segment!r}"
        raise ValueError(msg)
    try:
        return base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))
    except binascii.Error as e:
        msg = f"Invalid base64url segment: {e}"
        raise ValueError(msg) from e


def encode_segment(obj: Mapping[str, Any]) -> str:
    """Serialize a JSON object compactly, in its own key order, then base64url it.

    Raises:
        ValueError: If obj holds NaN or infinite floats, which JSON cannot carry.
        TypeError: If obj holds values json cannot encode.
    """
    serialized = json.dumps(
        dict(obj), separators=(",", ":"), ensure_ascii=False, allow_nan=False
    )
    return b64url_encode(serialized.encode("utf-8"))


@dataclass(frozen=True, slots=True)
class JWSCompact:
    """A compact JWS split into its three segments."""

    header_b64: str
    payload_b64: str
    signature_b64: str

    @property
    def signing_input(self) -> str:
        return f"{self.header_b64}.{self.payload_b64}"

    @property
    def token(self) -> str:
        return f"{self.signing_input}.{self.signature_b64}"

    def __str__(self) -> str:
        return self.token

    def header(self) -> dict[str, Any]:
        return json.loads(b64url_decode(self.header_b64))

    def payload(self) -> dict[str, Any]:
        return json.loads(b64url_decode(self.payload_b64))

    def signature(self) -> bytes:
        return b64url_decode(self.signature_b64)

    @classmethod
    def parse(cls, token: str) -> JWSCompact:
        """Split a compact token, checking it has three non-empty URL-safe segments.

        Raises:
            ValueError: If the token is not a well-formed compact JWS.
        """
        parts = token.split(".")
        if len(parts) != 3:
            msg = f"Compact JWS needs 3 segments, got {len(parts)}"
            raise ValueError(msg)
        for part in parts:
            b64url_decode(part)
        return cls(header_b64=parts[0], payload_b64=parts[1], signature_b64=parts[2])


class JWTSigner:
    """Signs JWTs with the KMS key registered for the header's kid.

    The caller must have confirmed through the JWK store that the kid is
    active; the signer only resolves kid -> KMS key id.
    """

    def __init__(self, kms_client: KMSClient, jwk_store: JWKStore) -> None:
        self._kms = kms_client
        self._jwk_store = jwk_store

    async def sign(
        self,
        header: Mapping[str, Any],
        payload: Mapping[str, Any],
    ) -> OperationResult[JWSCompact]:
        """Produce a compact JWS over header and payload.

        Either a complete token is returned or a SigningError; a token with
        a missing or truncated signature segment is never produced. Sign
        failures against a key whose policy has lapsed are expected and
        surface as an ordinary SigningError.

        Args:
            header: JOSE header; must contain kid. If alg is set it must be RS256.
            payload: JWT claims.

        Returns:
            OperationResult with the JWSCompact or a SigningError.
        """
        kid = header.get("kid")
        if not kid:
            return OperationResult.failure(
                SigningError("JWT header has no kid", operation="validate")
            )
        alg = header.get("alg")
        if alg is not None and alg != JWS_ALGORITHM:
            return OperationResult.failure(
                SigningError(
                    f"Header alg {alg!r} does not match {JWS_ALGORITHM}",
                    operation="validate",
                    key_id=kid,
                )
            )

        try:
            header_b64 = encode_segment(header)
            payload_b64 = encode_segment(payload)
        except (TypeError, ValueError) as e:
            return OperationResult.failure(
                SigningError(
                    f"Header or payload is not JSON serializable: {e}",
                    operation="encode",
                    key_id=kid,
                    cause=e,
                )
            )
        signing_input = f"{header_b64}.{payload_b64}"

        try:
            record = await self._jwk_store.retrieve_jwk(kid)
        except Exception as e:
            logger.error("JWK resolution failed: kid=%s, error=%s", kid, e)
            return OperationResult.failure(
                SigningError(
                    f"Could not resolve kid {kid}: {e}",
                    operation="retrieve_jwk",
                    key_id=kid,
                    cause=e,
                )
            )

        loop = asyncio.get_running_loop()
        try:
            response = await loop.run_in_executor(
                None,
                functools.partial(
                    self._kms.sign,
                    KeyId=record.kms_key_id,
                    Message=signing_input.encode("utf-8"),
                    MessageType=KMS_MESSAGE_TYPE,
                    SigningAlgorithm=KMS_SIGNING_ALGORITHM,
                ),
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(
                "KMS sign failed: kid=%s, kms_key_id=%s, error=%s",
                kid,
                record.kms_key_id,
                e,
            )
            return OperationResult.failure(
                SigningError(
                    f"KMS Sign failed: {e}",
                    operation="sign",
                    key_id=kid,
                    cause=e,
                )
            )

        signature = response.get("Signature")
        if not signature:
            logger.error("KMS sign returned no signature: kid=%s", kid)
            return OperationResult.failure(
                SigningError("KMS Sign returned no signature", operation="sign", key_id=kid)
            )

        logger.debug("Signed JWT: kid=%s, kms_key_id=%s", kid, record.kms_key_id)
        return OperationResult.success(
            JWSCompact(
                header_b64=header_b64,
                payload_b64=payload_b64,
                signature_b64=b64url_encode(signature),
            )
        )
