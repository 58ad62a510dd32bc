"""Error taxonomy for KMS key lifecycle and signing operations.

Each remote boundary maps its failures onto exactly one of these types.
They are carried inside an OperationResult rather than raised past the
service boundary; callers that prefer exceptions use result.unwrap().
"""

from __future__ import annotations


class KmsError(Exception):
    """Base exception for kmskeys operations.

    Attributes:
        message: Human-readable error description.
        operation: The operation that failed (e.g., 'create_key', 'sign').
        key_id: KMS key id or JWT kid involved, if any.

    Errors built from a lower-level exception take it as cause, so it is
    chained as __cause__ even though the error is returned, not raised.
    """

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        key_id: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        self.message = message
        self.operation = operation
        self.key_id = key_id
        super().__init__(message)
        if cause is not None:
            self.__cause__ = cause


class AuthError(KmsError):
    """Raised when scoped credentials cannot be obtained or are unusable."""


class KeyCreationError(KmsError):
    """Raised when key creation or the follow-up public key fetch fails."""


class KeyDescribeError(KmsError):
    """Raised when a key's status cannot be read."""


class SigningError(KmsError):
    """Raised when kid resolution or the remote sign call fails."""


class DeletionError(KmsError):
    """Raised when deletion scheduling is rejected or fails."""
