"""
Error taxonomy and result envelopes.

Expected absence is a value (NotFound), not an exception. Store failures are
raised as StoreError/StoreConnectionError at the persistence boundary and turned
into a failed OperationResult by the service facade.
"""

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar, Union

T = TypeVar("T")


class BookingLedgerError(Exception):
    """Base class for all errors raised by this package."""


class StoreError(BookingLedgerError):
    """The store rejected an operation; the transaction was rolled back."""


class StoreConnectionError(StoreError):
    """The store could not be reached; nothing was written."""


class CodecError(BookingLedgerError):
    """A compressed payload could not be decoded."""


class InvalidTransitionError(BookingLedgerError):
    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move booking from '{current}' to '{requested}'")


class UnknownCounterCategoryError(BookingLedgerError, ValueError):
    pass


class SequenceFallbackWarning(UserWarning):
    """Sequence issuance left the atomic path."""


@dataclass(frozen=True)
class NotFound:
    reference: str
    message: str = "Booking not found"

    def __bool__(self) -> bool:
        return False


Maybe = Union[T, NotFound]


class ErrorCode:
    NOT_FOUND = "not_found"
    CONNECTION_ERROR = "connection_error"
    STORE_ERROR = "store_error"
    INVALID_TRANSITION = "invalid_transition"
    VALIDATION_ERROR = "validation_error"


@dataclass
class OperationResult(Generic[T]):
    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def ok(cls, data: T) -> "OperationResult[T]":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error_code: str, error: str) -> "OperationResult[T]":
        return cls(success=False, error=error, error_code=error_code)

    @classmethod
    def not_found(cls, missing: NotFound) -> "OperationResult[T]":
        return cls.fail(ErrorCode.NOT_FOUND, missing.message)
