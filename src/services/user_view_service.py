"""
Service layer for composing UI-facing user documents.

All builders are read-only and tolerant of partial data: a missing durable
row yields default fields, and store failures are captured rather than raised.
"""
import logging

from core.error_capture import ErrorCapture, get_error_capture
from db.user_store import DurableTierError, UserStore
from schemas.user_views import UserProfileView, UserSettingsView, UserSummaryView
from schemas.validators import initials_from_display_name, validate_user_id
from services.critical_user_data_cache import CriticalUserDataCache
from services.exceptions import UserStateError

logger = logging.getLogger(__name__)


async def build_user_summary(
    store: UserStore,
    bundle_cache: CriticalUserDataCache,
    uid: str,
    error_capture: ErrorCapture | None = None,
) -> UserSummaryView | None:
    """
    Build minimal user data for the top bar / header.

    Returns:
        UserSummaryView, or None if the user has no bundle (unknown user).
    """
    errors = error_capture or get_error_capture()
    bundle = await bundle_cache.get(uid)
    if bundle is None:
        return None

    # bundle.get() already validated uid
    v_uid = uid.strip()
    row = None
    try:
        row = await store.fetch_identity_summary(v_uid)
    except DurableTierError as e:
        errors.capture(e, operation="user_view.build_user_summary", uid=v_uid)

    public_uid = row["public_uid"] if row else None
    return UserSummaryView(
        display_name=bundle.display_name,
        user_name=bundle.username,
        public_uid=str(public_uid) if public_uid else "",
        avatar=bundle.avatar,
        initials=initials_from_display_name(bundle.display_name),
        role=(row["role"] if row else None) or "user",
        is_new_user=bool(row["is_new_user"]) if row else False,
    )


async def build_user_settings(
    store: UserStore,
    uid: str,
    error_capture: ErrorCapture | None = None,
) -> UserSettingsView:
    """Build the settings document from the user_settings row only."""
    errors = error_capture or get_error_capture()
    try:
        v_uid = validate_user_id(uid)
        row = await store.fetch_settings(v_uid)
    except UserStateError as e:
        errors.capture(e, operation="user_view.build_user_settings", expected=True, uid=uid)
        return UserSettingsView()
    except DurableTierError as e:
        errors.capture(e, operation="user_view.build_user_settings", uid=uid)
        return UserSettingsView()

    if row is None:
        return UserSettingsView()
    return UserSettingsView(
        locale_config=row["locale"],
        notifications_config=row["notifications"],
        call_video_message=row["call_video_message"],
    )


async def build_user_profile(
    store: UserStore,
    bundle_cache: CriticalUserDataCache,
    uid: str,
    error_capture: ErrorCapture | None = None,
) -> UserProfileView | None:
    """
    Build the public profile document.

    Identity gates the document: if the bundle lookup returns None, so does
    this, even when a user_profiles row exists.

    Returns:
        UserProfileView, or None for unknown users.
    """
    errors = error_capture or get_error_capture()
    bundle = await bundle_cache.get(uid)
    if bundle is None:
        return None

    v_uid = uid.strip()
    identity = profile = None
    try:
        identity = await store.fetch_identity_summary(v_uid)
    except DurableTierError as e:
        errors.capture(e, operation="user_view.build_user_profile.identity", uid=v_uid)
    try:
        profile = await store.fetch_profile(v_uid)
    except DurableTierError as e:
        errors.capture(e, operation="user_view.build_user_profile.profile", uid=v_uid)

    public_uid = identity["public_uid"] if identity else None
    p = profile or {}
    return UserProfileView(
        uid=v_uid,
        public_uid=str(public_uid) if public_uid else "",
        display_name=bundle.display_name,
        user_name=bundle.username,
        avatar=bundle.avatar,
        bio=p.get("bio") or "",
        gender=p.get("gender") or "",
        age=p.get("age"),
        body_type=p.get("body_type") or "",
        hair_color=p.get("hair_color") or "",
        country=p.get("country") or "",
        cover_image=p.get("cover_image") or "",
        background_images=p.get("background_images") or [],
        social_urls=p.get("social_urls") or [],
        additional_urls=p.get("additional_urls") or [],
    )
