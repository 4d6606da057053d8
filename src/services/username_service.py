"""
Username registry: global uniqueness of normalized usernames.

Two cache tier entries per claimed name, both without expiry:

    username:to:uid:{name} -> uid    forward map, the uniqueness gate
    uid:to:username:{uid}  -> name   reverse mirror, used to free the old name on rename

users.username_lower is the durable mirror of the reverse entry. The cache
tier is the runtime authority; when the durable write fails after the
registry entries were written, the registry is not rolled back and the
durable column lags until the next successful claim.
"""
import logging

from core.error_capture import ErrorCapture, get_error_capture
from core.redis import CacheTierError, RedisClient
from core.user_state_config import uid_to_username_key, username_to_uid_key
from db.user_store import UserStore
from schemas.results import ClaimResult, ErrorCode
from schemas.validators import (
    is_username_format_valid,
    validate_and_normalize_username,
    validate_user_id,
)
from services.critical_user_data_cache import CriticalUserDataCache
from services.exceptions import STORE_ERRORS, PersistenceError, UsernameTakenError, UserStateError

logger = logging.getLogger(__name__)


class UsernameRegistry:
    """Checks availability of and claims normalized usernames."""

    def __init__(
        self,
        redis_client: RedisClient,
        store: UserStore,
        bundle_cache: CriticalUserDataCache,
        error_capture: ErrorCapture | None = None,
    ) -> None:
        self._redis = redis_client
        self._store = store
        self._bundles = bundle_cache
        self._errors = error_capture or get_error_capture()

    async def is_taken(self, username: str) -> bool:
        """
        Check whether a username is unavailable.

        A name that fails the format policy can never be claimed, so it is
        reported as taken. A cache tier failure is also reported as taken.
        Never touches the durable tier.
        """
        if not isinstance(username, str) or not is_username_format_valid(username):
            return True
        try:
            owner = await self._redis.get(username_to_uid_key(username))
        except CacheTierError as e:
            self._errors.capture(e, operation="UsernameRegistry.is_taken", username=username)
            return True
        return owner is not None

    async def claim(self, uid: str, username: str) -> ClaimResult:
        """
        Claim (or rename to) a username for a user.

        Steps:
            1. Validate the user id; normalize and format-check the username.
            2. Read the reverse mirror for the previous username.
            3. Atomically create the forward entry (SET NX). If it already
               exists and points to another user, fail with USERNAME_TAKEN
               without touching any entry.
            4. Write the forward and reverse entries.
            5. Persist the normalized name to users.username_lower.
            6. Patch the username of a cached bundle, if there is one.
            7. Free the previous forward entry, only if it still points to uid.

        A cache failure in step 4 releases the forward entry created in step 3,
        so the user never holds two forward entries. A durable failure in
        step 5 is reported, but steps 6 and 7 still run so the registry stays
        internally consistent (one forward entry per user).

        Returns:
            ClaimResult with previous_username set when the user had another name.
        """
        operation = "UsernameRegistry.claim"
        try:
            v_uid = validate_user_id(uid)
            name = validate_and_normalize_username(username)
        except UserStateError as e:
            self._errors.capture(e, operation=operation, expected=True, uid=uid, username=username)
            return ClaimResult(success=False, error=e.code, message=str(e))

        forward_key = username_to_uid_key(name)
        reverse_key = uid_to_username_key(v_uid)

        created = False
        try:
            previous = await self._redis.get(reverse_key)
            created = await self._redis.set_if_absent(forward_key, v_uid)
            if not created:
                owner = await self._redis.get(forward_key)
                # owner is None when the entry vanished between the two calls;
                # treat that as a conflict too rather than racing for it
                if owner != v_uid:
                    raise UsernameTakenError(name)

            await self._redis.set(forward_key, v_uid)
            await self._redis.set(reverse_key, name)
        except UsernameTakenError as e:
            self._errors.capture(e, operation=operation, expected=True, uid=v_uid, username=name)
            return ClaimResult(success=False, error=e.code, message=str(e))
        except CacheTierError as e:
            self._errors.capture(e, operation=operation, uid=v_uid, username=name)
            if created:
                await self._release_created(forward_key, v_uid, name)
            return ClaimResult(success=False, error=ErrorCode.STORE_ERROR, message=str(e))

        failure: ClaimResult | None = None
        try:
            updated = await self._store.set_username(v_uid, name)
            if not updated:
                raise PersistenceError(v_uid, "username")
        except PersistenceError as e:
            self._errors.capture(e, operation=operation, uid=v_uid, username=name)
            failure = ClaimResult(success=False, error=e.code, message=str(e))
        except STORE_ERRORS as e:
            self._errors.capture(e, operation=operation, uid=v_uid, username=name)
            failure = ClaimResult(
                success=False, error=ErrorCode.PERSISTENCE_FAILED, message=str(e),
            )

        try:
            await self._bundles.patch_username(v_uid, name)
            if previous and previous != name:
                released = await self._redis.delete_if_value(username_to_uid_key(previous), v_uid)
                logger.debug(
                    "username_release uid=%s previous=%s released=%s", v_uid, previous, released,
                )
        except CacheTierError as e:
            self._errors.capture(
                e, operation=f"{operation}.cleanup", uid=v_uid, username=name, previous=previous,
            )
            failure = failure or ClaimResult(
                success=False, error=ErrorCode.STORE_ERROR, message=str(e),
            )

        if failure is not None:
            failure.previous_username = previous
            return failure

        logger.info("username_claimed uid=%s username=%s previous=%s", v_uid, name, previous)
        return ClaimResult(success=True, previous_username=previous)

    async def _release_created(self, forward_key: str, uid: str, name: str) -> None:
        """Free a forward entry this claim created but could not finish registering."""
        try:
            released = await self._redis.delete_if_value(forward_key, uid)
            logger.debug(
                "username_claim_released uid=%s username=%s released=%s", uid, name, released,
            )
        except CacheTierError as e:
            self._errors.capture(
                e, operation="UsernameRegistry.claim.release", uid=uid, username=name,
            )
