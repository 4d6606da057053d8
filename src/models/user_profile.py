"""UserProfile model for public profile attributes."""
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.orm import Mapped, mapped_column, relationship

from models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from models.user import User


class UserProfile(Base, TimestampMixin):
    """Extended public profile attributes - one row per user."""

    __tablename__ = "user_profiles"

    uid: Mapped[str] = mapped_column(
        ForeignKey("users.uid", ondelete="CASCADE"),
        primary_key=True,
    )
    bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    gender: Mapped[str | None] = mapped_column(String(20), nullable=True)
    age: Mapped[int | None] = mapped_column(Integer, nullable=True)
    body_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    hair_color: Mapped[str | None] = mapped_column(String(50), nullable=True)
    country: Mapped[str | None] = mapped_column(String(50), nullable=True)
    cover_image: Mapped[str | None] = mapped_column(Text, nullable=True)
    background_images: Mapped[list[str] | None] = mapped_column(ARRAY(Text), nullable=True)
    social_urls: Mapped[list[str] | None] = mapped_column(ARRAY(Text), nullable=True)
    additional_urls: Mapped[list[str] | None] = mapped_column(ARRAY(Text), nullable=True)

    user: Mapped["User"] = relationship(back_populates="profile")
