"""Collaborator-facing entry point for user runtime state."""
import logging
from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager
from typing import Any

from core.config import Settings, get_settings
from core.error_capture import ErrorCapture, get_error_capture
from core.redis import RedisClient, set_redis_client
from core.user_state_config import DEFAULT_USER_STATE_CONFIG, UserStateConfig
from db.session import create_engine, create_session_factory
from db.user_store import UserStore
from schemas.critical_user_data import CriticalUserData, PresenceState
from schemas.results import ClaimResult, FieldResult, OperationResult
from schemas.user_views import UserProfileView, UserSettingsView, UserSummaryView
from services import user_field_service, user_view_service
from services.critical_user_data_cache import CriticalUserDataCache
from services.presence_service import PresenceResolver
from services.username_service import UsernameRegistry

logger = logging.getLogger(__name__)


class UserState:
    """
    Wires the presence resolver, bundle cache, username registry, field
    accessor and view composers around one cache tier client and one durable
    tier store.

    Transport collaborators (HTTP routes, socket handlers) call these methods
    and never talk to Redis or the database directly.
    """

    def __init__(
        self,
        redis_client: RedisClient,
        store: UserStore,
        config: UserStateConfig = DEFAULT_USER_STATE_CONFIG,
        error_capture: ErrorCapture | None = None,
    ) -> None:
        self.config = config
        self.errors = error_capture or get_error_capture()
        self.store = store
        self.presence = PresenceResolver(redis_client, store, config, self.errors)
        self.bundles = CriticalUserDataCache(
            redis_client, store, self.presence, config, self.errors,
        )
        self.usernames = UsernameRegistry(redis_client, store, self.bundles, self.errors)

    # Bundle
    async def get_bundle(self, uid: str) -> CriticalUserData | None:
        """Critical user data for one user, None if unknown."""
        return await self.bundles.get(uid)

    async def get_bundles(self, uids: Sequence[str]) -> list[CriticalUserData]:
        """Critical user data for many users, aligned with uids."""
        return await self.bundles.get_batch(uids)

    # Presence
    async def get_presence(self, uid: str) -> PresenceState:
        """Resolved presence for one user."""
        return await self.presence.resolve(uid)

    async def get_presence_batch(self, uids: Sequence[str]) -> list[PresenceState]:
        """Resolved presence for many users, aligned with uids."""
        return await self.presence.resolve_batch(uids)

    async def record_heartbeat(self, uid: str, connection_id: str) -> OperationResult:
        """Process a socket heartbeat."""
        return await self.presence.record_heartbeat(uid, connection_id)

    async def set_presence_override(self, uid: str, mode: str) -> OperationResult:
        """Set the presence override mode (real, away, offline)."""
        return await self.presence.set_override(uid, mode)

    # Username
    async def is_username_taken(self, username: str) -> bool:
        """True if the username is unavailable."""
        return await self.usernames.is_taken(username)

    async def claim_username(self, uid: str, username: str) -> ClaimResult:
        """Claim or change a user's username."""
        return await self.usernames.claim(uid, username)

    # Durable fields
    async def get_field(self, uid: str, table: str, field: str) -> FieldResult:
        """Read one allow-listed durable column."""
        return await user_field_service.get_field(self.store, uid, table, field, self.errors)

    async def set_field(self, uid: str, table: str, field: str, value: Any) -> OperationResult:
        """Write one allow-listed durable column."""
        return await user_field_service.set_field(
            self.store, self.bundles, uid, table, field, value, self.errors,
        )

    # Views
    async def build_user_summary(self, uid: str) -> UserSummaryView | None:
        """Header/top bar document."""
        return await user_view_service.build_user_summary(
            self.store, self.bundles, uid, self.errors,
        )

    async def build_user_settings(self, uid: str) -> UserSettingsView:
        """Settings document."""
        return await user_view_service.build_user_settings(self.store, uid, self.errors)

    async def build_user_profile(self, uid: str) -> UserProfileView | None:
        """Public profile document."""
        return await user_view_service.build_user_profile(
            self.store, self.bundles, uid, self.errors,
        )


# Global user state instance (set by user_state_lifespan)
class _UserStateHolder:
    """Container for the process-wide user state."""

    instance: UserState | None = None


_state = _UserStateHolder()


def get_user_state() -> UserState | None:
    """Get the process-wide user state instance."""
    return _state.instance


def set_user_state(user_state: UserState | None) -> None:
    """Set the process-wide user state instance."""
    _state.instance = user_state


@asynccontextmanager
async def user_state_lifespan(settings: Settings | None = None) -> AsyncGenerator[UserState]:
    """
    Connect both tiers, register the process-wide instances, and tear down on exit.

    Intended for the lifespan hook of whatever transport hosts this layer.
    """
    app_settings = settings or get_settings()

    # Startup: Connect to Redis
    redis_client = RedisClient(
        url=app_settings.redis_url,
        enabled=app_settings.redis_enabled,
        pool_size=app_settings.redis_pool_size,
    )
    await redis_client.connect()
    set_redis_client(redis_client)

    # Startup: Database engine
    engine = create_engine(app_settings)
    store = UserStore(create_session_factory(engine))

    user_state = UserState(redis_client, store, app_settings.user_state_config)
    set_user_state(user_state)
    logger.info("user_state_started redis_connected=%s", redis_client.is_connected)

    try:
        yield user_state
    finally:
        # Shutdown: Clean up in reverse order
        set_user_state(None)
        await engine.dispose()
        await redis_client.close()
        set_redis_client(None)
        logger.info("user_state_stopped")
