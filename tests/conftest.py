from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from aigateway.core.config import settings

# Override settings for tests: no real credentials, no shared store
settings.app_env = "test"
settings.openai_api_key = ""
settings.anthropic_api_key = ""
settings.google_gemini_api_key = ""
settings.groq_api_key = ""
settings.ollama_base_url = ""
settings.redis_url = ""
settings.default_provider = "test"
settings.default_models = {}
settings.video_poll_interval = 0.01

from aigateway.db.base import Base  # noqa: E402
from aigateway.gateway.store import InMemoryStore  # noqa: E402
from aigateway.models import UsageLog  # noqa: E402, F401

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


class FakeClock:
    """Monotonic-style clock the tests move by hand."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDateClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def date_clock() -> FakeDateClock:
    return FakeDateClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryStore:
    return InMemoryStore(clock=clock)


@pytest.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """In-memory SQLite ledger database, created per test."""
    engine = create_async_engine(TEST_DB_URL, echo=False, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()
