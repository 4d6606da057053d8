"""User identity model - the durable record behind the critical user data bundle."""
import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from models.user_profile import UserProfile
    from models.user_settings import UserSettings


class User(Base, TimestampMixin):
    """
    User identity row.

    Rows are provisioned outside this service and are never created here.
    username_lower is a durable mirror of the Redis username registry; the
    registry (not this column) is the runtime authority for uniqueness.
    """

    __tablename__ = "users"

    uid: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        comment="Stable opaque user identifier shared with the cache tier keys",
    )
    username_lower: Mapped[str | None] = mapped_column(
        String(50),
        unique=True,
        nullable=True,
        comment="Normalized username, mirror of uid:to:username:{uid}",
    )
    display_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    public_uid: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
        unique=True,
        comment="Identifier safe to expose on public profile pages",
    )
    role: Mapped[str] = mapped_column(String(50), default="user", server_default="user")
    is_new_user: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=text("true"),
    )
    last_activity_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Throttled heartbeat timestamp, for analytics only",
    )

    settings: Mapped["UserSettings"] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
        uselist=False,
    )
    profile: Mapped["UserProfile"] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
        uselist=False,
    )
