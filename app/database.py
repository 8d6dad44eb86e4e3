"""Async database engine and session factory.

This module provides the async SQLAlchemy 2.0 engine configuration and the
session factory handed to the orchestration services.

Services never hold a session across a network call: they open a short
session from the factory, read or write, and close it before awaiting
any upstream API.

Usage:
    from app.database import async_session_factory

    async with async_session_factory() as session:
        result = await session.execute(select(JobStatus))
"""

import os

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.config import get_database_url

# Check if DATABASE_URL is available (may not be during import in tests)
_database_url = os.getenv("DATABASE_URL")

if _database_url:
    # Production: Create engine with configured pool
    engine = create_async_engine(
        get_database_url(),
        pool_size=10,
        max_overflow=5,
        pool_pre_ping=True,  # Railway connection recycling
        echo=os.getenv("DATABASE_ECHO", "").lower() == "true",
    )
else:
    # Development/Testing: Defer engine creation
    engine = None  # type: ignore[assignment]


async_session_factory: async_sessionmaker[AsyncSession] | None = (
    async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,  # CRITICAL: prevents attribute expiration after commit
    )
    if engine
    else None
)
