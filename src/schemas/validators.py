"""
Input validation shared by the user state services.

All validators run before any store is touched and raise
UserStateValidationError with a specific ErrorCode.
"""
import re

from core.user_state_config import (
    MAX_USER_ID_LENGTH,
    USERNAME_POLICY,
    PresenceMode,
    normalize_username,
)
from schemas.results import ErrorCode
from services.exceptions import UserStateValidationError

_WHITESPACE = re.compile(r"\s+")


def validate_user_id(uid: object) -> str:
    """
    Validate and trim a user identifier.

    Raises:
        UserStateValidationError: If uid is not a string, is blank, or is too long.
    """
    if not isinstance(uid, str):
        raise UserStateValidationError(
            f"User id must be a string, got {type(uid).__name__}",
            ErrorCode.INVALID_USER_ID,
        )
    trimmed = uid.strip()
    if not trimmed:
        raise UserStateValidationError("User id is required", ErrorCode.INVALID_USER_ID)
    if len(trimmed) > MAX_USER_ID_LENGTH:
        raise UserStateValidationError(
            f"User id exceeds {MAX_USER_ID_LENGTH} characters",
            ErrorCode.INVALID_USER_ID,
        )
    return trimmed


def validate_user_ids(uids: object, max_size: int) -> list[str]:
    """
    Validate a batch of user identifiers.

    Duplicates are kept - each input position gets its own result downstream.

    Raises:
        UserStateValidationError: If the batch is not a list, is empty, exceeds
            max_size, or contains an invalid identifier.
    """
    if not isinstance(uids, list | tuple):
        raise UserStateValidationError(
            "User ids must be a list", ErrorCode.INVALID_BATCH_SIZE,
        )
    if not 1 <= len(uids) <= max_size:
        raise UserStateValidationError(
            f"Batch size must be between 1 and {max_size}, got {len(uids)}",
            ErrorCode.INVALID_BATCH_SIZE,
        )
    return [validate_user_id(uid) for uid in uids]


def is_username_format_valid(username: str | None) -> bool:
    """Check a username against the format policy after normalization."""
    normalized = normalize_username(username)
    if not USERNAME_POLICY.min_length <= len(normalized) <= USERNAME_POLICY.max_length:
        return False
    return USERNAME_POLICY.pattern.match(normalized) is not None


def validate_and_normalize_username(username: object) -> str:
    """
    Normalize and validate a username.

    Returns:
        The normalized username (trimmed, lowercase).

    Raises:
        UserStateValidationError: If username is not a string or fails the format policy.
    """
    if not isinstance(username, str):
        raise UserStateValidationError(
            "Username must be a string", ErrorCode.INVALID_USERNAME_FORMAT,
        )
    normalized = normalize_username(username)
    if not is_username_format_valid(normalized):
        raise UserStateValidationError(
            f"Invalid username format: '{normalized}'. Use {USERNAME_POLICY.min_length}-"
            f"{USERNAME_POLICY.max_length} letters, numbers, dots, underscores or hyphens.",
            ErrorCode.INVALID_USERNAME_FORMAT,
        )
    return normalized


def validate_presence_mode(mode: object) -> PresenceMode:
    """
    Validate a presence override mode. No coercion beyond trimming.

    Raises:
        UserStateValidationError: If mode is not one of real, away, offline.
    """
    value = mode.strip() if isinstance(mode, str) else mode
    try:
        return PresenceMode(value)
    except ValueError:
        raise UserStateValidationError(
            f"Invalid presence mode: {mode!r}. Expected one of: "
            f"{', '.join(m.value for m in PresenceMode)}",
            ErrorCode.INVALID_PRESENCE_MODE,
        ) from None


def validate_connection_id(connection_id: object) -> str:
    """Validate the socket connection id attached to a heartbeat."""
    if not isinstance(connection_id, str) or not connection_id.strip():
        raise UserStateValidationError("Connection id is required")
    return connection_id.strip()


def initials_from_display_name(display_name: str | None) -> str:
    """
    Initials from the first letter of up to the first two whitespace-delimited tokens.

    'alice doe smith' -> 'AD', '  bob ' -> 'B', '' -> ''.
    """
    tokens = _WHITESPACE.split((display_name or "").strip())
    return "".join(token[0].upper() for token in tokens[:2] if token)
