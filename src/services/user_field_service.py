"""
Service layer for single-column durable reads and writes.

Table and field names arrive as strings from collaborators, but they are only
ever used as keys into USER_FIELDS. The SQL is built from the Column objects
in that mapping, so no caller-supplied text is spliced into a query.

To expose a new column, add it to USER_FIELDS below. Mark it bundle_visible
if it feeds CriticalUserData, so writes invalidate cud:{uid}.
"""
import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import Column

from core.error_capture import ErrorCapture, get_error_capture
from db.user_store import UserStore
from models.user import User
from models.user_profile import UserProfile
from models.user_settings import UserSettings
from schemas.results import ErrorCode, FieldResult, OperationResult
from schemas.validators import validate_user_id
from services.critical_user_data_cache import CriticalUserDataCache
from services.exceptions import (
    STORE_ERRORS,
    UserNotFoundError,
    UserStateError,
    UserStateValidationError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserField:
    """An allow-listed durable column."""

    column: Column
    writable: bool = True
    bundle_visible: bool = False


def _fields(model: type, names: list[str], **options: bool) -> dict[tuple[str, str], UserField]:
    table = model.__table__
    return {(table.name, name): UserField(column=table.c[name], **options) for name in names}


USER_FIELDS: dict[tuple[str, str], UserField] = {
    # users - bundle-visible columns
    **_fields(User, ["display_name", "avatar_url"], bundle_visible=True),
    **_fields(User, ["role", "is_new_user", "last_activity_at"]),
    # users - owned by the username registry / generated
    **_fields(User, ["username_lower", "public_uid"], writable=False),
    **_fields(
        UserSettings,
        ["locale", "notifications", "call_video_message", "presence_preference"],
    ),
    **_fields(
        UserProfile,
        [
            "bio",
            "gender",
            "age",
            "body_type",
            "hair_color",
            "country",
            "cover_image",
            "background_images",
            "social_urls",
            "additional_urls",
        ],
    ),
}


def resolve_field(table: object, field: object, *, for_write: bool = False) -> UserField:
    """
    Look up an allow-listed field.

    Raises:
        UserStateValidationError: If the (table, field) pair is not allow-listed,
            or for_write is set and the field is read-only.
    """
    key = (
        table.strip().lower() if isinstance(table, str) else table,
        field.strip().lower() if isinstance(field, str) else field,
    )
    user_field = USER_FIELDS.get(key) if all(isinstance(k, str) for k in key) else None
    if user_field is None:
        raise UserStateValidationError(
            f"Unknown field: {table!r}.{field!r}", ErrorCode.UNKNOWN_FIELD,
        )
    if for_write and not user_field.writable:
        raise UserStateValidationError(
            f"Field is read-only: {key[0]}.{key[1]}", ErrorCode.READ_ONLY_FIELD,
        )
    return user_field


async def get_field(
    store: UserStore,
    uid: str,
    table: str,
    field: str,
    error_capture: ErrorCapture | None = None,
) -> FieldResult:
    """
    Read one durable column for a user.

    Args:
        store: Durable tier adapter.
        uid: User identifier.
        table: Table name, e.g. 'users', 'user_settings', 'user_profiles'.
        field: Column name within that table.
        error_capture: Where failures are recorded. Defaults to the process-wide capture.

    Returns:
        FieldResult with the value on success (which may be None for a NULL
        column), NOT_FOUND if the row does not exist.
    """
    errors = error_capture or get_error_capture()
    operation = "user_field.get_field"
    try:
        v_uid = validate_user_id(uid)
        user_field = resolve_field(table, field)
        row = await store.read_column(v_uid, user_field.column)
        if row is None:
            raise UserNotFoundError(v_uid, user_field.column.table.name)
    except UserStateError as e:
        errors.capture(
            e,
            operation=operation,
            expected=not isinstance(e, UserNotFoundError),
            uid=uid,
            table=table,
            field=field,
        )
        return FieldResult(success=False, error=e.code, message=str(e))
    except STORE_ERRORS as e:
        errors.capture(e, operation=operation, uid=uid, table=table, field=field)
        return FieldResult(success=False, error=ErrorCode.STORE_ERROR, message=str(e))
    return FieldResult(success=True, value=row["value"])


async def set_field(
    store: UserStore,
    bundle_cache: CriticalUserDataCache,
    uid: str,
    table: str,
    field: str,
    value: Any,
    error_capture: ErrorCapture | None = None,
) -> OperationResult:
    """
    Write one durable column for a user and refresh the row's updated_at.

    Bundle-visible fields (display name, avatar) invalidate cud:{uid} before
    success is returned. If that invalidation fails the result is a
    STORE_ERROR failure; the durable write is not rolled back and the stale
    bundle lives at most until its TTL expires.

    Returns:
        OperationResult. NOT_FOUND if the row does not exist.
    """
    errors = error_capture or get_error_capture()
    operation = "user_field.set_field"
    try:
        v_uid = validate_user_id(uid)
        user_field = resolve_field(table, field, for_write=True)
        updated = await store.write_column(v_uid, user_field.column, value)
        if not updated:
            raise UserNotFoundError(v_uid, user_field.column.table.name)
        if user_field.bundle_visible:
            await bundle_cache.invalidate(v_uid)
    except UserStateError as e:
        errors.capture(
            e,
            operation=operation,
            expected=not isinstance(e, UserNotFoundError),
            uid=uid,
            table=table,
            field=field,
        )
        return OperationResult.failed(e.code, str(e))
    except STORE_ERRORS as e:
        errors.capture(e, operation=operation, uid=uid, table=table, field=field)
        return OperationResult.failed(ErrorCode.STORE_ERROR, str(e))

    logger.info(
        "user_field_updated uid=%s table=%s field=%s",
        v_uid,
        user_field.column.table.name,
        user_field.column.key,
    )
    return OperationResult.ok()
