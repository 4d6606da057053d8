"""Read-through cache for the critical user data bundle (cud:{uid})."""
import logging
from collections.abc import Sequence

from pydantic import ValidationError

from core.error_capture import ErrorCapture, get_error_capture
from core.redis import CacheTierError, RedisClient
from core.user_state_config import (
    DEFAULT_USER_STATE_CONFIG,
    UserStateConfig,
    critical_user_data_key,
)
from db.user_store import DurableTierError, UserStore
from schemas.critical_user_data import CriticalUserData
from schemas.validators import validate_user_id, validate_user_ids
from services.exceptions import UserStateError
from services.presence_service import PresenceResolver

logger = logging.getLogger(__name__)


class CriticalUserDataCache:
    """
    Cache-aside reads of the critical user data bundle.

    The durable fields (username, display name, avatar) are cached for the
    bundle TTL. Presence is merged from the PresenceResolver on every read,
    so a cached bundle can only ever be stale in its durable fields, and only
    until invalidate() runs or the TTL expires.

    A cache tier outage degrades to reading the users table directly (the
    same fallback the auth cache uses); a durable tier outage yields None.
    """

    def __init__(
        self,
        redis_client: RedisClient,
        store: UserStore,
        presence: PresenceResolver,
        config: UserStateConfig = DEFAULT_USER_STATE_CONFIG,
        error_capture: ErrorCapture | None = None,
    ) -> None:
        """Initialize the bundle cache with its collaborators."""
        self._redis = redis_client
        self._store = store
        self._presence = presence
        self._config = config
        self._errors = error_capture or get_error_capture()

    async def get(self, uid: str) -> CriticalUserData | None:
        """
        Get the bundle for one user.

        1. Read cud:{uid}; on a hit, return it with fresh presence merged in.
        2. On a miss, read username/display name/avatar from the users row.
           No row means the user does not exist: return None.
        3. Compose with fresh presence, write back with the bundle TTL, return.

        Args:
            uid: User identifier.

        Returns:
            CriticalUserData, or None if the user does not exist, the identifier
            is invalid, or the durable tier is unavailable on a miss.
        """
        try:
            v_uid = validate_user_id(uid)
        except UserStateError as e:
            self._errors.capture(e, operation="CriticalUserDataCache.get", expected=True, uid=uid)
            return None

        cached = await self._read_cached(v_uid)
        if cached is not None:
            logger.debug("critical_user_data_hit uid=%s", v_uid)
            presence = await self._presence.resolve(v_uid)
            return cached.with_presence(presence)

        logger.debug("critical_user_data_miss uid=%s", v_uid)
        return await self._hydrate(v_uid)

    async def get_batch(self, uids: Sequence[str]) -> list[CriticalUserData]:
        """
        Get bundles for many users in input order.

        One MGET covers every bundle key. Hits get presence from a single
        batch resolve; misses go through get() one by one, which hydrates and
        merges presence itself. Unknown users get an empty placeholder, so the
        result always has one entry per input (duplicates included).

        Returns:
            Bundles aligned with uids, or an empty list if the batch is invalid.
        """
        try:
            v_uids = validate_user_ids(uids, self._config.max_bundle_batch)
        except UserStateError as e:
            self._errors.capture(
                e,
                operation="CriticalUserDataCache.get_batch",
                expected=True,
                uid_count=len(uids) if isinstance(uids, Sequence) else None,
            )
            return []

        keys = [critical_user_data_key(u) for u in v_uids]
        try:
            raw_values = await self._redis.mget(keys)
        except CacheTierError as e:
            self._errors.capture(e, operation="CriticalUserDataCache.get_batch", uids=v_uids)
            raw_values = [None] * len(v_uids)

        results: list[CriticalUserData | None] = [None] * len(v_uids)
        hit_positions: list[int] = []
        miss_positions: list[int] = []
        for position, raw in enumerate(raw_values):
            bundle = self._deserialize(v_uids[position], raw) if raw else None
            if bundle is None:
                miss_positions.append(position)
            else:
                results[position] = bundle
                hit_positions.append(position)

        if hit_positions:
            presences = await self._presence.resolve_batch([v_uids[p] for p in hit_positions])
            for position, presence in zip(hit_positions, presences, strict=True):
                results[position] = results[position].with_presence(presence)

        for position in miss_positions:
            results[position] = await self.get(v_uids[position]) or CriticalUserData.placeholder()

        logger.debug(
            "critical_user_data_batch size=%s hits=%s misses=%s",
            len(v_uids),
            len(hit_positions),
            len(miss_positions),
        )
        return results

    async def invalidate(self, uid: str) -> None:
        """
        Delete the cached bundle for a user.

        Raises:
            CacheTierError: If the cache tier is unavailable. Callers that must
                invalidate before reporting success rely on this.
        """
        await self._redis.delete(critical_user_data_key(uid))
        logger.debug("critical_user_data_invalidate uid=%s", uid)

    async def patch_username(self, uid: str, username: str) -> bool:
        """
        Rewrite the username of a cached bundle in place, with a fresh TTL.

        Used after a username claim, where the other bundle fields stay valid.

        Returns:
            True if a cached bundle existed and was patched, False if there was none.

        Raises:
            CacheTierError: If the cache tier is unavailable.
        """
        key = critical_user_data_key(uid)
        raw = await self._redis.get(key)
        cached = self._deserialize(uid, raw) if raw else None
        if cached is None:
            return False
        patched = cached.model_copy(update={"username": username})
        await self._redis.set(key, patched.to_cache(), expiry_seconds=self._config.bundle_ttl_seconds)
        logger.debug("critical_user_data_patch uid=%s", uid)
        return True

    async def _read_cached(self, uid: str) -> CriticalUserData | None:
        """Read and parse cud:{uid}. Cache failures and corrupt entries read as a miss."""
        try:
            raw = await self._redis.get(critical_user_data_key(uid))
        except CacheTierError as e:
            self._errors.capture(e, operation="CriticalUserDataCache.get.cache_read", uid=uid)
            return None
        if not raw:
            return None
        return self._deserialize(uid, raw)

    async def _hydrate(self, uid: str) -> CriticalUserData | None:
        """Build the bundle from the users row and warm the cache."""
        try:
            row = await self._store.fetch_critical_fields(uid)
        except DurableTierError as e:
            self._errors.capture(e, operation="CriticalUserDataCache.get", uid=uid)
            return None
        if row is None:
            return None

        presence = await self._presence.resolve(uid)
        hydrated = CriticalUserData(
            username=row["username"] or "",
            display_name=row["display_name"] or "",
            avatar=row["avatar"] or "",
            online=presence.online,
            status=presence.status,
        )

        try:
            await self._redis.set(
                critical_user_data_key(uid),
                hydrated.to_cache(),
                expiry_seconds=self._config.bundle_ttl_seconds,
            )
        except CacheTierError as e:
            self._errors.capture(e, operation="CriticalUserDataCache.get.cache_write", uid=uid)

        logger.info("critical_user_data_hydrated uid=%s", uid)
        return hydrated

    def _deserialize(self, uid: str, raw: str) -> CriticalUserData | None:
        """Parse a cached bundle. Corrupt entries are logged and treated as a miss."""
        try:
            return CriticalUserData.model_validate_json(raw)
        except ValidationError:
            logger.warning("critical_user_data_corrupt", extra={"uid": uid})
            return None
