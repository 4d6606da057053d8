"""SQLAlchemy declarative base and the timestamp mixin shared by the user tables."""
from datetime import datetime

from sqlalchemy import DateTime, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative base for users, user_settings and user_profiles."""


class TimestampMixin:
    """
    created_at / updated_at columns, timezone-aware.

    Defaults use clock_timestamp() so a row written twice inside one
    transaction still gets distinct wall-clock values. Field writes set
    updated_at explicitly (see UserStore.write_column).
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.clock_timestamp(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.clock_timestamp(),
        nullable=False,
    )
