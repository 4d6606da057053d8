"""Tests for the username registry."""
import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from core.error_capture import ErrorCapture
from core.redis import CacheTierError, RedisClient
from core.user_state_config import (
    critical_user_data_key,
    uid_to_username_key,
    username_to_uid_key,
)
from db.user_store import DurableTierError, UserStore
from models.user import User
from schemas.results import ErrorCode
from services.critical_user_data_cache import CriticalUserDataCache
from services.username_service import UsernameRegistry


async def username_lower(store: UserStore, uid: str) -> str | None:
    """Durable mirror of the registry for a user."""
    row = await store.read_column(uid, User.__table__.c.username_lower)
    return row["value"] if row else None


async def forward_entries(redis_client: RedisClient, uid: str) -> list[str]:
    """Forward registry keys currently pointing to uid."""
    keys = await redis_client._client.keys(username_to_uid_key("*"))
    return sorted([key for key in keys if await redis_client.get(key) == uid])


class TestIsTaken:
    """Tests for availability checks."""

    async def test__is_taken__after_claim(
        self, username_registry: UsernameRegistry, alice: User,
    ) -> None:
        """A claimed name is taken in any casing."""
        assert await username_registry.is_taken("alice2") is False

        result = await username_registry.claim("u1", "Alice2")

        assert result.success is True
        assert await username_registry.is_taken("alice2") is True
        assert await username_registry.is_taken("  ALICE2 ") is True

    @pytest.mark.parametrize("username", ["ab", "bad name", "", None])
    async def test__is_taken__invalid_format_is_taken(
        self, username_registry: UsernameRegistry, username: str | None,
    ) -> None:
        """Names that can never be claimed are reported as unavailable."""
        assert await username_registry.is_taken(username) is True

    async def test__is_taken__cache_failure_is_taken(
        self, user_store: UserStore, bundle_cache: CriticalUserDataCache,
    ) -> None:
        """When availability cannot be checked, the name is not offered."""
        redis = AsyncMock(spec=RedisClient)
        redis.get.side_effect = CacheTierError("GET", "down")
        registry = UsernameRegistry(redis, user_store, bundle_cache, ErrorCapture())

        assert await registry.is_taken("available") is True

    async def test__is_taken__ignores_durable_column(
        self, username_registry: UsernameRegistry, alice: User,
    ) -> None:
        """The registry, not users.username_lower, decides availability."""
        # alice's row has username_lower='alice' but nothing was claimed in Redis
        assert await username_registry.is_taken("alice") is False


class TestClaim:
    """Tests for claiming and renaming."""

    async def test__claim__writes_registry_and_durable_mirror(
        self,
        username_registry: UsernameRegistry,
        redis_client: RedisClient,
        user_store: UserStore,
        bob: User,
    ) -> None:
        """Forward, reverse and users.username_lower all hold the normalized name."""
        result = await username_registry.claim("u2", "  Bobby.B ")

        assert result.success is True
        assert result.previous_username is None
        assert await redis_client.get(username_to_uid_key("bobby.b")) == "u2"
        assert await redis_client.get(uid_to_username_key("u2")) == "bobby.b"
        assert await redis_client._client.ttl(username_to_uid_key("bobby.b")) == -1
        assert await username_lower(user_store, "u2") == "bobby.b"

    async def test__claim__same_name_again_is_idempotent(
        self, username_registry: UsernameRegistry, redis_client: RedisClient, alice: User,
    ) -> None:
        """Re-claiming your own name succeeds and keeps the forward entry."""
        await username_registry.claim("u1", "alice2")

        result = await username_registry.claim("u1", "ALICE2")

        assert result.success is True
        assert result.previous_username == "alice2"
        assert await redis_client.get(username_to_uid_key("alice2")) == "u1"

    async def test__claim__conflict_leaves_registry_unchanged(
        self,
        username_registry: UsernameRegistry,
        redis_client: RedisClient,
        user_store: UserStore,
        alice: User,
        bob: User,
    ) -> None:
        """Claiming another user's name fails without touching any entry."""
        await username_registry.claim("u1", "shared")
        await username_registry.claim("u2", "bobby")

        result = await username_registry.claim("u2", "Shared")

        assert result.success is False
        assert result.error == ErrorCode.USERNAME_TAKEN
        assert await redis_client.get(username_to_uid_key("shared")) == "u1"
        assert await redis_client.get(uid_to_username_key("u2")) == "bobby"
        assert await redis_client.get(username_to_uid_key("bobby")) == "u2"
        assert await username_lower(user_store, "u2") == "bobby"

    async def test__claim__rename_releases_previous_name(
        self,
        username_registry: UsernameRegistry,
        redis_client: RedisClient,
        alice: User,
    ) -> None:
        """The old forward entry is freed and becomes available."""
        await username_registry.claim("u1", "first")

        result = await username_registry.claim("u1", "second")

        assert result.success is True
        assert result.previous_username == "first"
        assert await redis_client.get(username_to_uid_key("first")) is None
        assert await username_registry.is_taken("first") is False
        assert await redis_client.get(uid_to_username_key("u1")) == "second"

    async def test__claim__rename_keeps_previous_name_owned_by_someone_else(
        self,
        username_registry: UsernameRegistry,
        redis_client: RedisClient,
        alice: User,
    ) -> None:
        """The old name is only freed if it still points to this user."""
        await username_registry.claim("u1", "first")
        await redis_client.set(username_to_uid_key("first"), "u9")

        result = await username_registry.claim("u1", "second")

        assert result.success is True
        assert await redis_client.get(username_to_uid_key("first")) == "u9"

    async def test__claim__patches_cached_bundle(
        self,
        username_registry: UsernameRegistry,
        bundle_cache: CriticalUserDataCache,
        alice: User,
    ) -> None:
        """A cached bundle shows the new name without a rebuild."""
        await bundle_cache.get("u1")

        await username_registry.claim("u1", "alice.new")

        bundle = await bundle_cache.get("u1")
        assert bundle.username == "alice.new"
        assert bundle.display_name == "Alice Doe"

    async def test__claim__invalid_format_writes_nothing(
        self,
        username_registry: UsernameRegistry,
        redis_client: RedisClient,
        error_capture: ErrorCapture,
        alice: User,
    ) -> None:
        """Format failures are rejected before the registry is touched."""
        result = await username_registry.claim("u1", "ab")

        assert result.success is False
        assert result.error == ErrorCode.INVALID_USERNAME_FORMAT
        assert await redis_client.get(username_to_uid_key("ab")) is None
        assert await redis_client.get(uid_to_username_key("u1")) is None
        assert error_capture.recent("UsernameRegistry.claim")

    async def test__claim__missing_identity_row_reports_persistence_failure(
        self, username_registry: UsernameRegistry, redis_client: RedisClient,
    ) -> None:
        """No users row: registry entries stay (runtime authority), durable lag reported."""
        result = await username_registry.claim("ghost", "phantom")

        assert result.success is False
        assert result.error == ErrorCode.PERSISTENCE_FAILED
        assert await redis_client.get(username_to_uid_key("phantom")) == "ghost"
        assert await redis_client.get(uid_to_username_key("ghost")) == "phantom"

    async def test__claim__durable_outage_still_releases_previous(
        self,
        redis_client: RedisClient,
        bundle_cache: CriticalUserDataCache,
        error_capture: ErrorCapture,
    ) -> None:
        """Cache-side cleanup runs even when the database write fails."""
        store = AsyncMock(spec=UserStore)
        store.set_username.side_effect = [1, DurableTierError("set_username", "down")]
        registry = UsernameRegistry(redis_client, store, bundle_cache, error_capture)
        await registry.claim("u1", "first")

        result = await registry.claim("u1", "second")

        assert result.success is False
        assert result.error == ErrorCode.PERSISTENCE_FAILED
        assert result.previous_username == "first"
        assert await redis_client.get(username_to_uid_key("first")) is None
        assert await redis_client.get(username_to_uid_key("second")) == "u1"

    async def test__claim__cache_failure_is_store_error(
        self, user_store: UserStore, bundle_cache: CriticalUserDataCache,
    ) -> None:
        """Nothing durable is written when the registry cannot be reached."""
        redis = AsyncMock(spec=RedisClient)
        redis.set_if_absent.side_effect = CacheTierError("SETNX", "down")
        store = AsyncMock(spec=UserStore)
        registry = UsernameRegistry(redis, store, bundle_cache, ErrorCapture())

        result = await registry.claim("u1", "alice2")

        assert result.error == ErrorCode.STORE_ERROR
        store.set_username.assert_not_awaited()

    async def test__claim__vanished_owner_is_conflict(
        self, user_store: UserStore, bundle_cache: CriticalUserDataCache,
    ) -> None:
        """SET NX lost but the owner is gone by the time it is read: no retry race."""
        redis = AsyncMock(spec=RedisClient)
        redis.set_if_absent.return_value = False
        redis.get.return_value = None
        registry = UsernameRegistry(redis, user_store, bundle_cache, ErrorCapture())

        result = await registry.claim("u1", "contested")

        assert result.error == ErrorCode.USERNAME_TAKEN
        redis.set.assert_not_awaited()

    async def test__claim__bundle_invalidated_users_see_new_name(
        self,
        username_registry: UsernameRegistry,
        bundle_cache: CriticalUserDataCache,
        redis_client: RedisClient,
        alice: User,
    ) -> None:
        """With no cached bundle, the next read hydrates the persisted name."""
        await username_registry.claim("u1", "fresh.name")

        assert await redis_client.get(critical_user_data_key("u1")) is None
        bundle = await bundle_cache.get("u1")
        assert bundle.username == "fresh.name"

    async def test__claim__reverse_write_failure_releases_new_name(
        self,
        username_registry: UsernameRegistry,
        redis_client: RedisClient,
        error_capture: ErrorCapture,
        alice: User,
    ) -> None:
        """A half-registered name is freed so the user keeps a single forward entry."""
        await username_registry.claim("u1", "first")
        original_set = redis_client.set

        async def set_failing_on_reverse(
            key: str, value: str, expiry_seconds: int | None = None,
        ) -> None:
            if key == uid_to_username_key("u1"):
                raise CacheTierError("SET", "connection reset")
            await original_set(key, value, expiry_seconds=expiry_seconds)

        with patch.object(redis_client, "set", side_effect=set_failing_on_reverse):
            result = await username_registry.claim("u1", "second")

        assert result.success is False
        assert result.error == ErrorCode.STORE_ERROR
        assert await forward_entries(redis_client, "u1") == [username_to_uid_key("first")]
        assert await redis_client.get(uid_to_username_key("u1")) == "first"
        assert await username_registry.is_taken("second") is False
        assert not error_capture.recent("UsernameRegistry.claim.release")

    async def test__claim__existing_name_not_released_on_cache_failure(
        self,
        username_registry: UsernameRegistry,
        redis_client: RedisClient,
        alice: User,
    ) -> None:
        """Re-claiming a name the user already owns never frees it on failure."""
        await username_registry.claim("u1", "mine")

        with patch.object(
            redis_client, "set", side_effect=CacheTierError("SET", "connection reset"),
        ):
            result = await username_registry.claim("u1", "mine")

        assert result.error == ErrorCode.STORE_ERROR
        assert await redis_client.get(username_to_uid_key("mine")) == "u1"

    async def test__claim__concurrent_claims_single_winner(
        self, redis_client: RedisClient,
    ) -> None:
        """SET NX is the gate: of many simultaneous claims exactly one wins."""
        store = AsyncMock(spec=UserStore)
        store.set_username.return_value = 1
        bundles = AsyncMock(spec=CriticalUserDataCache)
        bundles.patch_username.return_value = False
        registry = UsernameRegistry(redis_client, store, bundles, ErrorCapture())
        uids = [f"u{i}" for i in range(10)]

        results = await asyncio.gather(*(registry.claim(uid, "hot") for uid in uids))

        winners = [uid for uid, result in zip(uids, results, strict=True) if result.success]
        assert len(winners) == 1
        losers = [result for result in results if not result.success]
        assert {result.error for result in losers} == {ErrorCode.USERNAME_TAKEN}
        assert await redis_client.get(username_to_uid_key("hot")) == winners[0]
        assert await redis_client.get(uid_to_username_key(winners[0])) == "hot"
        for uid in uids:
            if uid != winners[0]:
                assert await redis_client.get(uid_to_username_key(uid)) is None
