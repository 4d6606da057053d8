"""Shared exceptions for user state operations."""
from core.redis import CacheTierError
from db.user_store import DurableTierError
from schemas.results import ErrorCode

# Transport, timeout and auth failures from either tier
STORE_ERRORS = (CacheTierError, DurableTierError)


class UserStateError(Exception):
    """
    Base exception for user state failures that carry an error code.

    These never cross the public boundary: each public operation catches them,
    records them to the error capture, and returns a structured result.
    """

    code: ErrorCode = ErrorCode.VALIDATION_ERROR

    def __init__(self, message: str, code: ErrorCode | None = None) -> None:
        if code is not None:
            self.code = code
        super().__init__(message)


class UserStateValidationError(UserStateError, ValueError):
    """Raised when input is rejected before any store is touched."""


class UsernameTakenError(UserStateError):
    """Raised when a username is already owned by a different user."""

    code = ErrorCode.USERNAME_TAKEN

    def __init__(self, username: str) -> None:
        self.username = username
        super().__init__(f"Username already taken: {username}")


class UserNotFoundError(UserStateError):
    """Raised when the durable row for a user does not exist."""

    code = ErrorCode.NOT_FOUND

    def __init__(self, uid: str, table: str = "users") -> None:
        self.uid = uid
        self.table = table
        super().__init__(f"No {table} row for user: {uid}")


class PersistenceError(UserStateError):
    """
    Raised when a durable write affected no rows after the cache tier was updated.

    The cache tier change is not rolled back; it stays the runtime truth.
    """

    code = ErrorCode.PERSISTENCE_FAILED

    def __init__(self, uid: str, what: str) -> None:
        self.uid = uid
        self.what = what
        super().__init__(f"Failed to persist {what} for user: {uid}")
