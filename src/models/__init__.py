"""SQLAlchemy models."""
from models.base import Base, TimestampMixin
from models.user import User
from models.user_profile import UserProfile
from models.user_settings import UserSettings

__all__ = [
    "Base",
    "TimestampMixin",
    "User",
    "UserProfile",
    "UserSettings",
]
