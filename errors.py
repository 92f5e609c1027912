"""Exceptions raised by the ledger engine and its store."""


class ValidationError(ValueError):
    """Raised when a request cannot be applied as given. Maps to HTTP 400."""


class InvalidKind(ValidationError):
    """Raised for an unknown ledger field or transaction type."""


class OutOfRange(ValidationError):
    """Raised for amounts outside the accepted bounds or precision."""


class InvalidTimestamp(ValidationError):
    """Raised for a transaction time that cannot be placed on the calendar."""


class StorageFailure(RuntimeError):
    """Raised when the store cannot complete a read or write.

    The triggering write has been rolled back when this surfaces.
    """
