"""
Durable tier adapter for the users, user_settings and user_profiles tables.

Each operation is its own unit of work: it opens a session, runs one
parameterized statement, commits if it wrote, and returns plain row mappings
or affected-row counts. Callers never see ORM objects or SQLAlchemy errors.
"""
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import Column, RowMapping, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from models.user import User
from models.user_profile import UserProfile
from models.user_settings import UserSettings

logger = logging.getLogger(__name__)


class DurableTierError(Exception):
    """Raised when the durable tier cannot complete an operation."""

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        super().__init__(f"Database {operation} failed: {message}")


class UserStore:
    """Parameterized row operations keyed by user identifier."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Initialize store with a session factory."""
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str, *, write: bool) -> AsyncGenerator[AsyncSession]:
        """Yield a session, committing writes and translating driver errors."""
        try:
            async with self._session_factory() as session:
                yield session
                if write:
                    await session.commit()
        except (SQLAlchemyError, OSError) as e:
            logger.warning("Database %s failed: %s", operation, e)
            raise DurableTierError(operation, str(e)) from e

    async def _fetch_one(self, operation: str, stmt: Any) -> RowMapping | None:
        async with self._session(operation, write=False) as session:
            result = await session.execute(stmt)
            return result.mappings().first()

    async def _execute(self, operation: str, stmt: Any) -> int:
        async with self._session(operation, write=True) as session:
            result = await session.execute(stmt)
            return result.rowcount

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def fetch_critical_fields(self, uid: str) -> RowMapping | None:
        """
        Minimal projection used to hydrate the critical user data bundle.

        Returns:
            Mapping with username, display_name, avatar; None if no identity row.
        """
        stmt = (
            select(
                User.username_lower.label("username"),
                User.display_name.label("display_name"),
                User.avatar_url.label("avatar"),
            )
            .where(User.uid == uid)
            .limit(1)
        )
        return await self._fetch_one("fetch_critical_fields", stmt)

    async def fetch_identity_summary(self, uid: str) -> RowMapping | None:
        """Non-bundle identity columns: public_uid, role, is_new_user."""
        stmt = (
            select(User.public_uid, User.role, User.is_new_user)
            .where(User.uid == uid)
            .limit(1)
        )
        return await self._fetch_one("fetch_identity_summary", stmt)

    async def fetch_settings(self, uid: str) -> RowMapping | None:
        """Settings columns used by the settings view."""
        stmt = (
            select(
                UserSettings.locale,
                UserSettings.notifications,
                UserSettings.call_video_message,
            )
            .where(UserSettings.uid == uid)
            .limit(1)
        )
        return await self._fetch_one("fetch_settings", stmt)

    async def fetch_profile(self, uid: str) -> RowMapping | None:
        """Extended public profile attributes."""
        stmt = (
            select(
                UserProfile.bio,
                UserProfile.gender,
                UserProfile.age,
                UserProfile.body_type,
                UserProfile.hair_color,
                UserProfile.country,
                UserProfile.cover_image,
                UserProfile.background_images,
                UserProfile.social_urls,
                UserProfile.additional_urls,
            )
            .where(UserProfile.uid == uid)
            .limit(1)
        )
        return await self._fetch_one("fetch_profile", stmt)

    async def read_column(self, uid: str, column: Column) -> RowMapping | None:
        """
        Read one allow-listed column.

        Args:
            uid: User identifier.
            column: Column object from the field allow-list. Never built from
                caller-supplied strings.

        Returns:
            Mapping with a single 'value' key; None if the row does not exist.
        """
        table = column.table
        stmt = select(column.label("value")).where(table.c.uid == uid).limit(1)
        return await self._fetch_one("read_column", stmt)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def write_column(self, uid: str, column: Column, value: Any) -> int:
        """
        Write one allow-listed column and refresh the row's updated_at.

        Returns:
            Number of rows updated (0 if the row does not exist).
        """
        table = column.table
        stmt = (
            update(table)
            .where(table.c.uid == uid)
            .values({column.key: value, "updated_at": func.clock_timestamp()})
        )
        return await self._execute("write_column", stmt)

    async def touch_last_activity(self, uid: str, throttle_seconds: int) -> int:
        """
        Bump users.last_activity_at unless it was bumped within the throttle window.

        Returns:
            1 if the timestamp was written, 0 if throttled or the user does not exist.
        """
        now = datetime.now(UTC)
        cutoff = now - timedelta(seconds=throttle_seconds)
        stmt = (
            update(User)
            .where(
                User.uid == uid,
                or_(User.last_activity_at.is_(None), User.last_activity_at < cutoff),
            )
            .values(last_activity_at=now)
            .execution_options(synchronize_session=False)
        )
        return await self._execute("touch_last_activity", stmt)

    async def set_presence_preference(self, uid: str, mode: str) -> int:
        """Persist the presence override mode into user_settings."""
        stmt = (
            update(UserSettings)
            .where(UserSettings.uid == uid)
            .values(presence_preference=mode, updated_at=func.clock_timestamp())
            .execution_options(synchronize_session=False)
        )
        return await self._execute("set_presence_preference", stmt)

    async def set_username(self, uid: str, username_lower: str) -> int:
        """Persist the normalized username into the identity row."""
        stmt = (
            update(User)
            .where(User.uid == uid)
            .values(username_lower=username_lower, updated_at=func.clock_timestamp())
            .execution_options(synchronize_session=False)
        )
        return await self._execute("set_username", stmt)
