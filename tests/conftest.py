"""
Pytest configuration and fixtures for testing
"""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
from services.dual_store import DualStore
from utils.local_cache import LocalCache

# In-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Monday afternoon, UTC
FIXED_NOW = datetime(2025, 3, 10, 14, 30, tzinfo=timezone.utc)


class FrozenClock:
    """Injectable clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def _make_engine():
    return create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )


def _make_sessionmaker(engine):
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest.fixture
async def test_engine():
    """Fresh in-memory database with the trials and subscriptions tables."""
    engine = _make_engine()
    async with engine.begin() as conn:
        # Import models to ensure they're registered with Base
        from database_models import Trial, Subscription  # noqa: F401
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def test_db(test_engine):
    """
    Fixture that provides an isolated, in-memory SQLite session for each test.
    Tables are created before the test and dropped with the engine after it.
    """
    async with _make_sessionmaker(test_engine)() as session:
        try:
            yield session
        finally:
            await session.close()


@pytest.fixture
async def unprovisioned_db():
    """Session on a database where the tables were never created."""
    engine = _make_engine()
    async with _make_sessionmaker(engine)() as session:
        yield session
    await engine.dispose()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def cache():
    """Per-test in-memory cache (no Redis)."""
    return LocalCache()


@pytest.fixture
def store(test_db, cache):
    return DualStore(test_db, cache)


@pytest.fixture
def offline_store(unprovisioned_db, cache):
    """DualStore whose remote reads and writes all fail with DataUnavailable."""
    return DualStore(unprovisioned_db, cache)
