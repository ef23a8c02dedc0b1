class LibraryError(Exception):
    """Base exception for library backend errors."""


class Unauthenticated(LibraryError):
    """No session credential, or one that failed verification."""

    def __init__(self, message: str = "unauthenticated", reason: str = "invalid") -> None:
        super().__init__(message)
        # "missing" when no credential was presented, "invalid" otherwise
        self.reason = reason


class Unauthorized(LibraryError):
    """Valid identity without the role the operation needs."""


class NotFound(LibraryError):
    """Referenced book, category or loan does not exist."""


class InvariantViolation(LibraryError):
    """Store rejected a write that would break an inventory invariant."""


class StoreUnavailable(LibraryError):
    """Underlying data store could not be reached or locked in time."""
