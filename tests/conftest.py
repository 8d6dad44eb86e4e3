"""Shared pytest fixtures for async database testing.

This module provides reusable fixtures for testing SQLAlchemy models and the
orchestration services against a SQLite database (aiosqlite driver).

The database lives in a temporary file rather than in memory: services open
several short sessions concurrently, and each of them needs its own
connection to the same database.
"""

import pytest
import pytest_asyncio
from cryptography.fernet import Fernet
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.models import Base
from app.utils.alerts import reset_alert_throttle
from app.utils.encryption import EncryptionService


@pytest.fixture
def valid_fernet_key() -> str:
    """Generate a valid Fernet key for testing.

    Returns a fresh, valid Fernet key string suitable for
    use with EncryptionService tests.
    """
    return Fernet.generate_key().decode()


@pytest.fixture(autouse=True)
def encryption_env(valid_fernet_key: str, monkeypatch: pytest.MonkeyPatch):
    """Set up encryption environment for every test.

    Sets FERNET_KEY and resets the EncryptionService singleton before and
    after the test, so credential secrets can always be stored.
    """
    EncryptionService.reset_instance()
    monkeypatch.setenv("FERNET_KEY", valid_fernet_key)
    yield valid_fernet_key
    EncryptionService.reset_instance()


@pytest.fixture(autouse=True)
def isolated_alerts(monkeypatch: pytest.MonkeyPatch):
    """Never send Discord alerts from tests and start with a clean throttle."""
    monkeypatch.delenv("DISCORD_WEBHOOK_URL", raising=False)
    reset_alert_throttle()
    yield
    reset_alert_throttle()


@pytest_asyncio.fixture
async def async_engine(tmp_path):
    """Create an async SQLite engine for testing.

    Creates all tables before yielding, disposes after.

    Yields:
        AsyncEngine: Configured test database engine.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine, configured like production."""
    return async_sessionmaker(
        bind=async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def async_session(session_factory):
    """Create an async session for testing.

    Yields:
        AsyncSession: Database session for test setup and assertions.
    """
    async with session_factory() as session:
        yield session


# Import additional fixtures from fixtures/ package
from tests.fixtures.database import (  # noqa: F401, E402
    credential_pool,
    make_item,
    make_subscription,
    status_store,
)
