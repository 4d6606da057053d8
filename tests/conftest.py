"""Shared fixtures: PostgreSQL and Redis containers, adapters, components and seed users."""
import os
from collections.abc import AsyncGenerator, Generator

import pytest
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from testcontainers.postgres import PostgresContainer
from testcontainers.redis import RedisContainer

from core.error_capture import ErrorCapture
from core.redis import RedisClient
from core.user_state_config import UserStateConfig
from db.user_store import UserStore
from models.base import Base
from models.user import User
from models.user_profile import UserProfile
from models.user_settings import UserSettings
from services.critical_user_data_cache import CriticalUserDataCache
from services.presence_service import PresenceResolver
from services.user_state import UserState
from services.username_service import UsernameRegistry


@pytest.fixture(scope="session")
def postgres_container() -> Generator[PostgresContainer]:
    """Start a PostgreSQL container for the test session."""
    with PostgresContainer("postgres:16", driver="asyncpg") as postgres:
        yield postgres


@pytest.fixture(scope="session")
def database_url(postgres_container: PostgresContainer) -> str:
    """
    asyncpg URL of the session container, exported as DATABASE_URL.

    Exported so any code path that falls back to get_settings() finds it.
    """
    url = postgres_container.get_connection_url()
    os.environ["DATABASE_URL"] = url
    return url


@pytest.fixture(scope="session")
def redis_container() -> Generator[RedisContainer]:
    """Start a Redis container for the test session."""
    with RedisContainer("redis:7") as redis:
        yield redis


@pytest.fixture(scope="session")
def redis_url(redis_container: RedisContainer) -> str:
    """Redis connection URL."""
    host = redis_container.get_container_host_ip()
    port = redis_container.get_exposed_port(6379)
    url = f"redis://{host}:{port}/0"
    return url


@pytest.fixture
async def async_engine(database_url: str) -> AsyncGenerator[AsyncEngine]:
    """Engine on the test database with the three user tables created."""
    engine = create_async_engine(database_url, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
async def db_connection(async_engine: AsyncEngine) -> AsyncGenerator[AsyncConnection]:
    """
    Connection holding an outer transaction that is rolled back after each test.

    Every row written through the store lives only inside this
    transaction, so seed users never leak between tests.
    """
    async with async_engine.connect() as connection:
        transaction = await connection.begin()
        try:
            yield connection
        finally:
            await transaction.rollback()


@pytest.fixture
def session_factory(db_connection: AsyncConnection) -> async_sessionmaker[AsyncSession]:
    """
    Session factory bound to the test transaction.

    Uses savepoints, so the store's per-operation commits only release a
    savepoint inside our outer test transaction.
    """
    return async_sessionmaker(
        bind=db_connection,
        class_=AsyncSession,
        expire_on_commit=False,
        join_transaction_mode="create_savepoint",
    )


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Session for seeding and inspecting rows directly."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def user_store(session_factory: async_sessionmaker[AsyncSession]) -> UserStore:
    """Durable tier adapter bound to the test transaction."""
    return UserStore(session_factory)


@pytest.fixture
async def redis_client(redis_url: str) -> AsyncGenerator[RedisClient]:
    """Connected cache tier client; database flushed after each test."""
    client = RedisClient(redis_url)
    await client.connect()
    yield client
    await client.flushdb()
    await client.close()


@pytest.fixture
def error_capture() -> ErrorCapture:
    """Fresh error capture per test so captured records can be asserted."""
    return ErrorCapture()


@pytest.fixture
def user_state_config() -> UserStateConfig:
    """Default timing configuration."""
    return UserStateConfig()


@pytest.fixture
def presence_resolver(
    redis_client: RedisClient,
    user_store: UserStore,
    user_state_config: UserStateConfig,
    error_capture: ErrorCapture,
) -> PresenceResolver:
    """Presence resolver over real Redis and PostgreSQL."""
    return PresenceResolver(redis_client, user_store, user_state_config, error_capture)


@pytest.fixture
def bundle_cache(
    redis_client: RedisClient,
    user_store: UserStore,
    presence_resolver: PresenceResolver,
    user_state_config: UserStateConfig,
    error_capture: ErrorCapture,
) -> CriticalUserDataCache:
    """Critical user data cache over real Redis and PostgreSQL."""
    return CriticalUserDataCache(
        redis_client, user_store, presence_resolver, user_state_config, error_capture,
    )


@pytest.fixture
def username_registry(
    redis_client: RedisClient,
    user_store: UserStore,
    bundle_cache: CriticalUserDataCache,
    error_capture: ErrorCapture,
) -> UsernameRegistry:
    """Username registry over real Redis and PostgreSQL."""
    return UsernameRegistry(redis_client, user_store, bundle_cache, error_capture)


@pytest.fixture
def user_state(
    redis_client: RedisClient,
    user_store: UserStore,
    user_state_config: UserStateConfig,
    error_capture: ErrorCapture,
) -> UserState:
    """Fully wired user state facade."""
    return UserState(redis_client, user_store, user_state_config, error_capture)


@pytest.fixture
async def alice(db_session: AsyncSession) -> User:
    """User u1 (alice) with settings and profile rows."""
    user = User(
        uid="u1",
        username_lower="alice",
        display_name="Alice Doe",
        avatar_url="/a.png",
        role="admin",
        is_new_user=False,
    )
    db_session.add(user)
    await db_session.flush()
    db_session.add(
        UserSettings(
            uid="u1",
            locale="fr",
            notifications={"email": True, "push": False},
            call_video_message=True,
        ),
    )
    db_session.add(
        UserProfile(
            uid="u1",
            bio="Hello there",
            gender="female",
            age=31,
            country="FR",
            social_urls=["https://social.example/alice"],
        ),
    )
    await db_session.commit()
    return user


@pytest.fixture
async def bob(db_session: AsyncSession) -> User:
    """User u2 (bob) with an identity row only."""
    user = User(uid="u2", username_lower="bob", display_name="Bob Smith", avatar_url="/b.png")
    db_session.add(user)
    await db_session.commit()
    return user
