"""
Pytest configuration and shared fixtures.
"""

from collections.abc import AsyncGenerator
from datetime import timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from jobqueue.config import Settings
from jobqueue.db.connection import create_schema, create_session_factory, get_test_engine
from jobqueue.db.repository import JobStore
from sample_jobs import BrokenHooksJob, CallbackJob, SimpleJob, Story


@pytest.fixture
def database_url(tmp_path) -> str:
    """File-backed SQLite database, fresh for every test."""
    return f"sqlite+aiosqlite:///{tmp_path / 'jobqueue_test.db'}"


@pytest_asyncio.fixture
async def async_engine(database_url: str) -> AsyncGenerator[AsyncEngine]:
    """Create an async database engine with the jobs table."""
    engine = get_test_engine(database_url)
    await create_schema(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory shared by the test session and workers."""
    return create_session_factory(async_engine)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Create a database session for tests."""
    async with session_factory() as session:
        yield session

        # Rollback any uncommitted changes
        await session.rollback()


@pytest.fixture
def test_settings(database_url: str) -> Settings:
    """Create test settings."""
    return Settings(
        database_url=database_url,
        log_level="DEBUG",
        log_format="console",
        default_priority=99,
        max_attempts=25,
        max_run_time=timedelta(hours=4),
        destroy_failed_jobs=True,
        worker_sleep_delay_seconds=0.01,
    )


@pytest.fixture
def store(db_session: AsyncSession, test_settings: Settings) -> JobStore:
    """Create a job store on the test session."""
    return JobStore(db_session, test_settings)


@pytest.fixture(autouse=True)
def reset_sample_jobs():
    """Reset class-level state recorded by sample performables."""
    SimpleJob.runs = 0
    BrokenHooksJob.runs = 0
    CallbackJob.messages = []
    Story.saved = []
    yield
