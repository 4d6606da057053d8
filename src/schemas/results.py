"""Structured results returned by user state operations instead of raising."""
from dataclasses import dataclass
from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    """Failure codes reported to collaborators."""

    # Validation - rejected before any store is touched
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_USER_ID = "INVALID_USER_ID"
    INVALID_BATCH_SIZE = "INVALID_BATCH_SIZE"
    INVALID_PRESENCE_MODE = "INVALID_PRESENCE_MODE"
    INVALID_USERNAME_FORMAT = "INVALID_USERNAME_FORMAT"
    UNKNOWN_FIELD = "UNKNOWN_FIELD"
    READ_ONLY_FIELD = "READ_ONLY_FIELD"
    # Conflict
    USERNAME_TAKEN = "USERNAME_TAKEN"
    # Not found
    NOT_FOUND = "NOT_FOUND"
    # Store
    PERSISTENCE_FAILED = "PERSISTENCE_FAILED"
    STORE_ERROR = "STORE_ERROR"


@dataclass
class OperationResult:
    """Outcome of a mutating operation."""

    success: bool
    error: ErrorCode | None = None
    message: str | None = None

    @classmethod
    def ok(cls) -> "OperationResult":
        """Successful result."""
        return cls(success=True)

    @classmethod
    def failed(cls, error: ErrorCode, message: str | None = None) -> "OperationResult":
        """Failed result with an error code."""
        return cls(success=False, error=error, message=message)


@dataclass
class ClaimResult(OperationResult):
    """
    Outcome of a username claim.

    previous_username is the name the user held before this claim, if any. It
    is reported on failure too when the failure happened after the registry
    entries were already rewritten (durable lag).
    """

    previous_username: str | None = None


@dataclass
class FieldResult(OperationResult):
    """Outcome of a single durable field read."""

    value: Any = None
