"""Exception types raised by the clinical submission and migration services.

Validation problems found in submitted data are never raised; they are
collected and returned to the caller. The exceptions below cover conditions
that stop an operation outright.
"""

from typing import Optional


class ClinicalError(Exception):
    """Base class for all service errors."""

    pass


class NotFoundError(ClinicalError):
    """Raised when a requested document does not exist."""

    pass


class StateConflictError(ClinicalError):
    """Raised when an operation conflicts with persisted state.

    Examples are a second migration submitted while one is open, or a
    staging submission written with a stale version token.
    """

    pass


class InvalidArgumentError(ClinicalError):
    """Raised when a caller passes an argument the service cannot act on."""

    pass


class SchemaFetchError(ClinicalError):
    """Raised when a dictionary version or diff cannot be obtained."""

    pass


class PersistenceError(ClinicalError):
    """Wraps a storage failure with the operation that was being attempted."""

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        message = f"Persistence failure during {operation}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
