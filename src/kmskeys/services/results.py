"""Tagged result type returned by every remote-facing operation.

A result is either a success carrying a value or a failure carrying a
KmsError, never both. This keeps "the call failed" distinct from "the
call succeeded and returned nothing".

Example:
    result = await manager.status(key_id)
    if not result.ok:
        logger.warning("Status unavailable: %s", result.error)
    elif result.value:
        ...
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

from kmskeys.services.errors import KmsError

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class OperationResult(Generic[T]):
    """Outcome of a single remote operation.

    Attributes:
        value: Operation output when successful.
        error: The failure when unsuccessful.
    """

    value: T | None = None
    error: KmsError | None = None

    def __post_init__(self) -> None:
        if self.error is not None and self.value is not None:
            msg = "OperationResult cannot carry both a value and an error"
            raise ValueError(msg)

    @classmethod
    def success(cls, value: T) -> OperationResult[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: KmsError) -> OperationResult[T]:
        return cls(error=error)

    @property
    def ok(self) -> bool:
        """True when the operation succeeded."""
        return self.error is None

    def unwrap(self) -> T:
        """Return the value, or raise the carried error.

        Raises:
            KmsError: The failure this result carries.
        """
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]
