"""Pytest configuration and shared fixtures.

Usage Guide:
- For schema tests: build records with the factories in tests.factories
- For persistence tests: use db_session (in-memory SQLite, rolled back)
- For scanner tests: use session_factory (shared in-memory engine)
- For HTTP platform tests: see tests.fixtures for payloads and mock transports
"""

from datetime import UTC, datetime

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from scm_scanner.config import get_settings
from scm_scanner.db.models import Base

# -----------------------------------------------------------------------------
# Test Timeline Constants
#
# Define a consistent "test epoch" for deterministic date matching across tests.
# All hardcoded dates should reference these constants for consistency.
# -----------------------------------------------------------------------------

# Base dates (datetime objects for Pydantic/ORM)
JAN_10 = datetime(2024, 1, 10, 9, 0, 0, tzinfo=UTC)   # First commit, MR opened
JAN_12 = datetime(2024, 1, 12, 16, 0, 0, tzinfo=UTC)  # MR merged
JAN_15 = datetime(2024, 1, 15, 10, 0, 0, tzinfo=UTC)  # Scan window start
JAN_16 = datetime(2024, 1, 16, 14, 0, 0, tzinfo=UTC)  # Open MR updated
JAN_20 = datetime(2024, 1, 20, 16, 0, 0, tzinfo=UTC)  # Scan window end
NOW = datetime(2024, 3, 1, 12, 0, 0, tzinfo=UTC)      # Reference "now"

# ISO 8601 strings (for platform API mocks)
JAN_10_ISO = "2024-01-10T09:00:00Z"
JAN_12_ISO = "2024-01-12T16:00:00Z"
JAN_15_ISO = "2024-01-15T10:00:00Z"
JAN_16_ISO = "2024-01-16T14:00:00Z"
JAN_20_ISO = "2024-01-20T16:00:00Z"

# Epoch millis of JAN_15 (last_scan_from cursors)
JAN_15_MILLIS = int(JAN_15.timestamp() * 1000)


# -----------------------------------------------------------------------------
# Settings
# -----------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _clear_settings_cache():
    """Drop cached settings so env changes in one test don't leak."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# -----------------------------------------------------------------------------
# Database Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture
async def test_engine():
    """Create an in-memory SQLite engine for tests.

    Each test gets a fresh database with all tables created.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the in-memory engine."""
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
async def db_session(session_factory):
    """Create an async session with auto-rollback.

    Changes are rolled back after each test to ensure isolation.
    """
    async with session_factory() as session:
        yield session
        await session.rollback()
