"""
Test Suite Configuration
"""
from datetime import datetime, timezone
from typing import AsyncGenerator, Callable
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from nanoassist.config import Settings
from nanoassist.database.models import Base

from tests.fakes import TZ, FakeCache, FakeChangeFeed, FakeRecordStore


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Create test settings"""
    return Settings(APP_ENV="testing", DEBUG=True)


@pytest.fixture
def tz() -> ZoneInfo:
    return TZ


@pytest.fixture
def now() -> datetime:
    """Wednesday 2025-06-18 12:00 local time"""
    return datetime(2025, 6, 18, 12, 0, tzinfo=TZ)


@pytest.fixture
def clock(now) -> Callable[[], datetime]:
    return lambda: now.astimezone(timezone.utc)


@pytest.fixture
def record_store() -> FakeRecordStore:
    return FakeRecordStore()


@pytest.fixture
def change_feed() -> FakeChangeFeed:
    return FakeChangeFeed()


@pytest.fixture
def cache() -> FakeCache:
    return FakeCache()


@pytest.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory database shared by every session of one test"""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
    )
    
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    
    yield engine
    
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=test_engine, class_=AsyncSession, expire_on_commit=False)
