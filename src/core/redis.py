"""Redis client with connection pooling, used as the cache tier."""
import logging

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import NoScriptError, RedisError

logger = logging.getLogger(__name__)

# Lua script for compare-and-delete
# Atomic: deletes the key only if it still holds the expected value, so a
# username forward entry reassigned by another process is never removed.
COMPARE_AND_DELETE_SCRIPT = """
local key = KEYS[1]
local expected = ARGV[1]

if redis.call('GET', key) == expected then
    return redis.call('DEL', key)
end
return 0
"""


class CacheTierError(Exception):
    """Raised when the cache tier cannot serve a request (down, disabled, or erroring)."""

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        super().__init__(f"Redis {operation} failed: {message}")


class RedisClient:
    """
    Async Redis client with connection pooling.

    Connecting is graceful: an unreachable or disabled Redis leaves the client
    disconnected instead of failing startup. Operations are not graceful - every
    failure raises CacheTierError so that callers can decide per operation
    whether to degrade (reads) or report (writes).
    """

    def __init__(self, url: str, enabled: bool = True, pool_size: int = 20) -> None:
        self._url = url
        self._enabled = enabled
        self._pool_size = pool_size
        self._pool: ConnectionPool | None = None
        self._client: Redis | None = None
        self._compare_and_delete_sha: str | None = None

    async def connect(self) -> None:
        """Open the pool, verify with PING, and load the compare-and-delete script."""
        if not self._enabled:
            logger.info("Redis disabled by configuration")
            return
        try:
            self._pool = ConnectionPool.from_url(
                self._url, max_connections=self._pool_size, decode_responses=True,
            )
            self._client = Redis(connection_pool=self._pool)
            # Verify connection
            await self._client.ping()
            await self._load_scripts()
            logger.info("Redis connected successfully")
        except RedisError as e:
            logger.warning("Redis connection failed: %s", e)
            self._client = None
            self._pool = None

    async def _load_scripts(self) -> None:
        """Load the compare-and-delete script and keep its SHA for EVALSHA."""
        if not self._client:
            return
        try:
            self._compare_and_delete_sha = await self._client.script_load(
                COMPARE_AND_DELETE_SCRIPT,
            )
            logger.info("Redis Lua scripts loaded")
        except RedisError as e:
            logger.warning("Failed to load Lua scripts: %s", e)
            self._compare_and_delete_sha = None

    async def close(self) -> None:
        """Close connection pool."""
        if self._client:
            await self._client.aclose()
            self._client = None
            self._pool = None
            logger.info("Redis connection closed")

    @property
    def is_connected(self) -> bool:
        """True once connect() succeeded and until close()."""
        return self._client is not None

    @property
    def compare_and_delete_sha(self) -> str | None:
        """Get SHA for compare-and-delete script."""
        return self._compare_and_delete_sha

    def _require_client(self, operation: str) -> Redis:
        if self._client is None:
            raise CacheTierError(operation, "not connected")
        return self._client

    async def ping(self) -> bool:
        """Check Redis connectivity."""
        if not self._client:
            return False
        try:
            return await self._client.ping()
        except RedisError:
            return False

    async def get(self, key: str) -> str | None:
        """Get value, None if the key does not exist."""
        client = self._require_client("GET")
        try:
            return await client.get(key)
        except RedisError as e:
            logger.warning("Redis GET failed: %s", e)
            raise CacheTierError("GET", str(e)) from e

    async def set(self, key: str, value: str, expiry_seconds: int | None = None) -> None:
        """Set value, with an expiry when expiry_seconds is given."""
        client = self._require_client("SET")
        try:
            await client.set(key, value, ex=expiry_seconds)
        except RedisError as e:
            logger.warning("Redis SET failed: %s", e)
            raise CacheTierError("SET", str(e)) from e

    async def set_if_absent(self, key: str, value: str) -> bool:
        """
        Atomically create key with value (SET NX).

        Returns:
            True if the key was created, False if it already existed.
        """
        client = self._require_client("SETNX")
        try:
            return bool(await client.set(key, value, nx=True))
        except RedisError as e:
            logger.warning("Redis SET NX failed: %s", e)
            raise CacheTierError("SETNX", str(e)) from e

    async def mget(self, keys: list[str]) -> list[str | None]:
        """Get many values in one round trip. Result is aligned with keys."""
        if not keys:
            return []
        client = self._require_client("MGET")
        try:
            return await client.mget(keys)
        except RedisError as e:
            logger.warning("Redis MGET failed: %s", e)
            raise CacheTierError("MGET", str(e)) from e

    async def delete(self, *keys: str) -> int:
        """Delete key(s), returns the number of keys removed."""
        if not keys:
            return 0
        client = self._require_client("DELETE")
        try:
            return await client.delete(*keys)
        except RedisError as e:
            logger.warning("Redis DELETE failed: %s", e)
            raise CacheTierError("DELETE", str(e)) from e

    async def delete_if_value(self, key: str, expected: str) -> bool:
        """
        Delete key only if it currently holds expected.

        A NOSCRIPT reply (script cache flushed or server restarted) reloads the
        script and retries once.

        Returns:
            True if the key was deleted, False if it held another value or was absent.
        """
        client = self._require_client("EVALSHA")
        if self._compare_and_delete_sha is None:
            await self._load_scripts()
            if self._compare_and_delete_sha is None:
                raise CacheTierError("EVALSHA", "compare-and-delete script not loaded")

        try:
            deleted = await client.evalsha(self._compare_and_delete_sha, 1, key, expected)
        except NoScriptError:
            # script cache was flushed
            logger.warning("redis_script_reload", extra={"script": "compare_and_delete"})
            await self._load_scripts()
            if self._compare_and_delete_sha is None:
                raise CacheTierError("EVALSHA", "compare-and-delete script not loaded") from None
            # Retry once with fresh SHA
            try:
                deleted = await client.evalsha(self._compare_and_delete_sha, 1, key, expected)
            except RedisError as e:
                logger.warning("Redis compare-and-delete retry failed: %s", e)
                raise CacheTierError("EVALSHA", str(e)) from e
        except RedisError as e:
            logger.warning("Redis compare-and-delete failed: %s", e)
            raise CacheTierError("EVALSHA", str(e)) from e
        return bool(deleted)

    async def flushdb(self) -> None:
        """Flush current database (for testing)."""
        client = self._require_client("FLUSHDB")
        try:
            await client.flushdb()
        except RedisError as e:
            logger.warning("Redis FLUSHDB failed: %s", e)
            raise CacheTierError("FLUSHDB", str(e)) from e


# Process-wide cache tier client, registered by user_state_lifespan
class _RedisState:
    """Holds the process-wide RedisClient."""

    client: RedisClient | None = None


_state = _RedisState()


def get_redis_client() -> RedisClient | None:
    """Get the process-wide Redis client, None before startup."""
    return _state.client


def set_redis_client(client: RedisClient | None) -> None:
    """Register (or clear) the process-wide Redis client."""
    _state.client = client
