"""Pydantic schemas for the UI-facing user documents."""
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class UserViewBase(BaseModel):
    """Shared config: camelCase keys on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserSummaryView(UserViewBase):
    """Minimal user data for the top bar / header."""

    display_name: str = ""
    user_name: str = ""
    public_uid: str = ""
    avatar: str = ""
    initials: str = ""
    role: str = "user"
    is_new_user: bool = False


class UserSettingsView(UserViewBase):
    """User settings sourced purely from the user_settings row."""

    locale_config: str | None = None
    notifications_config: dict | None = None
    call_video_message: bool | None = None


class UserProfileView(UserViewBase):
    """Public profile: identity from the bundle plus extended profile attributes."""

    uid: str
    public_uid: str = ""
    display_name: str = ""
    user_name: str = ""
    avatar: str = ""
    bio: str = ""
    gender: str = ""
    age: int | None = None
    body_type: str = ""
    hair_color: str = ""
    country: str = ""
    cover_image: str = ""
    background_images: list[str] = []
    social_urls: list[str] = []
    additional_urls: list[str] = []
