"""Usage ledgers: append-only stores of UsageRecord rows.

The quota enforcer counts rows per (caller, action, window) on every check,
so the SQL implementation leans on the (caller_id, action, timestamp) index.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from aigateway.gateway.types import QuotaAction, UsageRecord
from aigateway.models.usage_log import UsageLog

logger = logging.getLogger(__name__)


class UsageLedger(ABC):
    @abstractmethod
    async def append(self, record: UsageRecord) -> None: ...

    @abstractmethod
    async def count(self, caller_id: str, action: QuotaAction, since: datetime | None = None) -> int:
        """Rows for caller+action with timestamp >= since (all rows when since is None)."""


class InMemoryUsageLedger(UsageLedger):
    def __init__(self):
        self._rows: list[UsageRecord] = []

    async def append(self, record: UsageRecord) -> None:
        self._rows.append(record)

    async def count(self, caller_id: str, action: QuotaAction, since: datetime | None = None) -> int:
        return sum(
            1
            for r in self._rows
            if r.caller_id == caller_id and r.action == action and (since is None or r.timestamp >= since)
        )

    @property
    def records(self) -> list[UsageRecord]:
        return list(self._rows)


class SqlUsageLedger(UsageLedger):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def append(self, record: UsageRecord) -> None:
        async with self.session_factory() as session:
            session.add(
                UsageLog(
                    caller_id=record.caller_id,
                    timestamp=_as_utc(record.timestamp),
                    action=record.action.value,
                    provider=record.provider,
                    model=record.model,
                    tokens=record.tokens,
                    cost=record.cost,
                    latency_ms=record.latency_ms,
                    status=record.status,
                    error=record.error,
                    metadata_json=record.metadata or None,
                )
            )
            await session.commit()

    async def count(self, caller_id: str, action: QuotaAction, since: datetime | None = None) -> int:
        stmt = (
            select(func.count())
            .select_from(UsageLog)
            .where(UsageLog.caller_id == caller_id, UsageLog.action == action.value)
        )
        if since is not None:
            stmt = stmt.where(UsageLog.timestamp >= _as_utc(since))

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar() or 0


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
