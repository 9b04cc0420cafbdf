"""Shared test fixtures for mailvec."""
from __future__ import annotations

import os

# Must be set before mailvec.config is imported anywhere
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("GMAIL_ACCESS_TOKEN", "test-token")
os.environ.setdefault("OPENAI_API_KEY", "test-key")

from typing import AsyncIterator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from mailvec.database import Base
from mailvec.services.rate_limiter import RateLimiter
from tests.fakes import InMemoryRepository, VirtualClock


@pytest.fixture
def repository() -> InMemoryRepository:
    """Empty in-memory repository."""
    return InMemoryRepository()


@pytest.fixture
def clock() -> VirtualClock:
    return VirtualClock()


@pytest.fixture
def mail_limiter(clock: VirtualClock) -> RateLimiter:
    """Gmail pacing at 10 requests/second on the virtual clock."""
    return RateLimiter(requests_per_second=10, clock=clock, sleep=clock.sleep)


@pytest.fixture
def embedding_limiter(clock: VirtualClock) -> RateLimiter:
    """Embedding pacing at 5 requests/second on the virtual clock."""
    return RateLimiter(requests_per_second=5, clock=clock, sleep=clock.sleep)


@pytest_asyncio.fixture
async def session_factory() -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    """Fresh in-memory SQLite database with all tables created."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session
