from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from aigateway.core.config import settings


def create_session_factory(database_url: str | None = None) -> async_sessionmaker[AsyncSession]:
    """Build a session factory for the usage ledger database."""
    engine = create_async_engine(database_url or settings.database_url, echo=False, pool_pre_ping=True)
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_schema(session_factory: async_sessionmaker[AsyncSession]) -> None:
    """Create ledger tables if they don't exist."""
    from aigateway.db.base import Base
    from aigateway.models import UsageLog  # noqa: F401

    engine = session_factory.kw["bind"]
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
