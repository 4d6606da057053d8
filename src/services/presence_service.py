"""
Presence resolution and presence mutations.

Presence is derived from two cache tier signals:

- override (presence:override:user:{uid}): explicit mode, no expiry
- heartbeat summary (presence:summary:user:{uid}): short TTL marker refreshed by heartbeats

Resolution order:
    override 'offline'          -> offline
    override 'away'             -> online + away
    override 'real' or missing  -> online if the summary marker exists, else offline

Reads never touch the durable tier and never raise: any cache tier failure is
captured and degrades to offline. Presence is best-effort.
"""
import logging
from collections.abc import Sequence

from core.error_capture import ErrorCapture, get_error_capture
from core.redis import CacheTierError, RedisClient
from core.user_state_config import (
    DEFAULT_USER_STATE_CONFIG,
    PRESENCE_SUMMARY_MARKER,
    PresenceMode,
    PresenceStatus,
    UserStateConfig,
    critical_user_data_key,
    presence_override_key,
    presence_summary_key,
)
from db.user_store import DurableTierError, UserStore
from schemas.critical_user_data import PresenceState
from schemas.results import ErrorCode, OperationResult
from schemas.validators import (
    validate_connection_id,
    validate_presence_mode,
    validate_user_id,
    validate_user_ids,
)
from services.exceptions import STORE_ERRORS, PersistenceError, UserStateError

logger = logging.getLogger(__name__)


def presence_from_signals(override: str | None, summary: str | None) -> PresenceState:
    """Apply the resolution order to raw override and summary values."""
    if override == PresenceMode.OFFLINE:
        return PresenceState(online=False, status=PresenceStatus.OFFLINE)
    if override == PresenceMode.AWAY:
        return PresenceState(online=True, status=PresenceStatus.AWAY)
    # 'real', missing, or an unrecognized value: fall through to heartbeats
    if summary:
        return PresenceState(online=True, status=PresenceStatus.ONLINE)
    return PresenceState.offline()


class PresenceResolver:
    """Resolves and mutates presence for one or many users."""

    def __init__(
        self,
        redis_client: RedisClient,
        store: UserStore,
        config: UserStateConfig = DEFAULT_USER_STATE_CONFIG,
        error_capture: ErrorCapture | None = None,
    ) -> None:
        self._redis = redis_client
        self._store = store
        self._config = config
        self._errors = error_capture or get_error_capture()

    async def resolve(self, uid: str) -> PresenceState:
        """
        Resolve presence for one user.

        Override and summary are read in one MGET round trip. Unknown users,
        invalid identifiers and cache tier failures all resolve to offline.
        """
        try:
            v_uid = validate_user_id(uid)
            override, summary = await self._redis.mget(
                [presence_override_key(v_uid), presence_summary_key(v_uid)],
            )
        except UserStateError as e:
            self._errors.capture(e, operation="PresenceResolver.resolve", expected=True, uid=uid)
            return PresenceState.offline()
        except CacheTierError as e:
            self._errors.capture(e, operation="PresenceResolver.resolve", uid=uid)
            return PresenceState.offline()
        return presence_from_signals(override, summary)

    async def resolve_batch(self, uids: Sequence[str]) -> list[PresenceState]:
        """
        Resolve presence for many users, preserving input order and cardinality.

        Uses exactly one MGET for overrides and one MGET for summaries,
        regardless of batch size. Duplicates each get a result.

        Returns:
            One PresenceState per input identifier. An invalid batch (empty,
            too large, or containing an invalid identifier) returns an empty
            list. A cache tier failure returns offline for every input.
        """
        try:
            v_uids = validate_user_ids(uids, self._config.max_presence_batch)
        except UserStateError as e:
            self._errors.capture(
                e,
                operation="PresenceResolver.resolve_batch",
                expected=True,
                uid_count=len(uids) if isinstance(uids, Sequence) else None,
            )
            return []

        try:
            overrides = await self._redis.mget([presence_override_key(u) for u in v_uids])
            summaries = await self._redis.mget([presence_summary_key(u) for u in v_uids])
        except CacheTierError as e:
            self._errors.capture(e, operation="PresenceResolver.resolve_batch", uids=v_uids)
            return [PresenceState.offline() for _ in v_uids]

        return [
            presence_from_signals(override, summary)
            for override, summary in zip(overrides, summaries, strict=True)
        ]

    async def record_heartbeat(self, uid: str, connection_id: str) -> OperationResult:
        """
        Process a liveness heartbeat from a socket connection.

        1. Refresh the heartbeat summary marker with the presence TTL.
        2. Bump users.last_activity_at, throttled to once per throttle window.
           Failures here are captured and swallowed.
        3. Invalidate the bundle so the next read merges fresh presence.
           Failures here are captured and swallowed; bundle reads always
           recompute presence anyway.

        Only a failure in step 1 fails the heartbeat: without the marker the
        user silently drops to offline when the TTL runs out.
        """
        operation = "PresenceResolver.record_heartbeat"
        try:
            v_uid = validate_user_id(uid)
            v_conn = validate_connection_id(connection_id)
        except UserStateError as e:
            self._errors.capture(
                e, operation=operation, expected=True, uid=uid, connection_id=connection_id,
            )
            return OperationResult.failed(e.code, str(e))

        try:
            await self._redis.set(
                presence_summary_key(v_uid),
                PRESENCE_SUMMARY_MARKER,
                expiry_seconds=self._config.presence_ttl_seconds,
            )
        except CacheTierError as e:
            self._errors.capture(e, operation=operation, uid=v_uid, connection_id=v_conn)
            return OperationResult.failed(ErrorCode.STORE_ERROR, str(e))

        try:
            touched = await self._store.touch_last_activity(
                v_uid, self._config.activity_throttle_seconds,
            )
            logger.debug("last_activity_touch uid=%s written=%s", v_uid, bool(touched))
        except DurableTierError as e:
            self._errors.capture(e, operation=f"{operation}.last_activity", uid=v_uid)

        try:
            await self._redis.delete(critical_user_data_key(v_uid))
        except CacheTierError as e:
            self._errors.capture(e, operation=f"{operation}.invalidate", uid=v_uid)

        logger.debug("presence_heartbeat uid=%s connection_id=%s", v_uid, v_conn)
        return OperationResult.ok()

    async def set_override(self, uid: str, mode: str) -> OperationResult:
        """
        Set an explicit presence mode (real, away, offline).

        Writes the override (no expiry) and invalidates the bundle, then
        persists the mode to user_settings.presence_preference for rebuild.

        If the durable write fails the override is NOT rolled back: it is
        already the runtime truth. The call still reports failure so the
        caller knows the durable copy lags.
        """
        operation = "PresenceResolver.set_override"
        try:
            v_uid = validate_user_id(uid)
            v_mode = validate_presence_mode(mode)
        except UserStateError as e:
            self._errors.capture(e, operation=operation, expected=True, uid=uid, mode=mode)
            return OperationResult.failed(e.code, str(e))

        try:
            await self._redis.set(presence_override_key(v_uid), v_mode.value)
            await self._redis.delete(critical_user_data_key(v_uid))
        except CacheTierError as e:
            self._errors.capture(e, operation=operation, uid=v_uid, mode=v_mode.value)
            return OperationResult.failed(ErrorCode.STORE_ERROR, str(e))

        try:
            updated = await self._store.set_presence_preference(v_uid, v_mode.value)
            if not updated:
                raise PersistenceError(v_uid, "presence preference")
        except PersistenceError as e:
            self._errors.capture(e, operation=operation, uid=v_uid, mode=v_mode.value)
            return OperationResult.failed(e.code, str(e))
        except STORE_ERRORS as e:
            self._errors.capture(e, operation=operation, uid=v_uid, mode=v_mode.value)
            return OperationResult.failed(ErrorCode.PERSISTENCE_FAILED, str(e))

        logger.info("presence_override_set uid=%s mode=%s", v_uid, v_mode.value)
        return OperationResult.ok()
