"""UserSettings model for storing user preferences."""
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, ForeignKey, String, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from models.user import User


class UserSettings(Base, TimestampMixin):
    """
    User settings - one row per user.

    presence_preference mirrors the Redis presence override so the override can
    be rebuilt after a cache flush. It is never read when resolving presence.
    """

    __tablename__ = "user_settings"

    uid: Mapped[str] = mapped_column(
        ForeignKey("users.uid", ondelete="CASCADE"),
        primary_key=True,
    )
    locale: Mapped[str | None] = mapped_column(
        String(10), default="en", server_default="en", nullable=True,
    )
    notifications: Mapped[dict | None] = mapped_column(
        JSONB,
        default=dict,
        server_default=text("'{}'::jsonb"),
        nullable=True,
        comment="Notification channel configuration",
    )
    call_video_message: Mapped[bool | None] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=True,
    )
    presence_preference: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
        comment="Last presence override mode (real/away/offline), for rebuild only",
    )

    user: Mapped["User"] = relationship(back_populates="settings")
