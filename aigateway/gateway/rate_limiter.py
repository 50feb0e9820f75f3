"""Quota enforcer: per-caller usage ceilings by tier.

Two ledger strategies:
  - Lifetime (ANONYMOUS, NEW): total count of an action ever vs a fixed ceiling
  - Rolling windows (PRO, TEAM, BUSINESS): hourly and monthly ceilings, each
    counted over ledger rows newer than now - window

Ceilings come from configuration keyed by tier and "{ACTION}_{WINDOW}" and
are cached in the shared store. A missing ceiling means unlimited.
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from aigateway.core.config import settings
from aigateway.core.exceptions import QuotaExceeded
from aigateway.core.metrics import QUOTA_DENIALS
from aigateway.gateway.ledger import UsageLedger
from aigateway.gateway.store import KeyValueStore
from aigateway.gateway.types import Caller, QuotaAction, QuotaCheck, Tier, UsageRecord

logger = logging.getLogger(__name__)

HOURLY_WINDOW = 3600
MONTHLY_WINDOW = 2_592_000  # 30 days
UNLIMITED = sys.maxsize

_RECORD_FIELDS = ("provider", "model", "tokens", "cost", "latency_ms", "status", "error")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QuotaEnforcer:
    def __init__(
        self,
        ledger: UsageLedger,
        store: KeyValueStore,
        limits: dict[str, dict[str, int]] | None = None,
        cache_ttl: int | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.ledger = ledger
        self.store = store
        self.limits = limits if limits is not None else settings.rate_limits
        self.cache_ttl = cache_ttl or settings.limits_cache_ttl
        self._clock = clock

    async def check(self, caller: Caller, action: QuotaAction) -> QuotaCheck:
        """Read-only: never writes to the ledger."""
        limits = await self.get_tier_limits(caller.tier)

        if caller.tier.uses_lifetime_limits:
            limit = limits.get(f"{action.value}_TOTAL")
            if limit is None:
                return self._unlimited()
            return await self._check_lifetime(caller, action, limit)

        hourly_limit = limits.get(f"{action.value}_HOURLY")
        monthly_limit = limits.get(f"{action.value}_MONTHLY")
        if hourly_limit is None and monthly_limit is None:
            return self._unlimited()

        hourly: QuotaCheck | None = None
        if hourly_limit is not None:
            hourly = await self._check_window(caller, action, hourly_limit, HOURLY_WINDOW, "hourly")
            if not hourly.allowed:
                return hourly

        if monthly_limit is not None:
            monthly = await self._check_window(caller, action, monthly_limit, MONTHLY_WINDOW, "monthly")
            monthly.hourly = hourly
            return monthly

        return hourly

    async def enforce(self, caller: Caller, action: QuotaAction) -> QuotaCheck:
        """Like check(), but raises QuotaExceeded when denied."""
        result = await self.check(caller, action)
        if not result.allowed:
            QUOTA_DENIALS.labels(tier=caller.tier.value, action=action.value).inc()
            logger.info(
                "Quota denied for caller %s: %s %d/%d (%s)",
                caller.id,
                action.value,
                result.used,
                result.limit,
                result.type,
            )
            raise QuotaExceeded(action.value, result.limit, result.used, result.resets_at, result.type)
        return result

    async def record_usage(
        self, caller: Caller, action: QuotaAction, metadata: dict[str, Any] | None = None
    ) -> UsageRecord:
        """Append exactly one row. Call only after the action actually ran."""
        metadata = dict(metadata or {})
        fields = {k: metadata.pop(k) for k in _RECORD_FIELDS if k in metadata}
        record = UsageRecord(
            caller_id=caller.id,
            timestamp=self._clock(),
            action=action,
            metadata=metadata,
            **fields,
        )
        await self.ledger.append(record)
        return record

    async def get_caller_limits(self, caller: Caller) -> dict[str, QuotaCheck]:
        """Quota state for every action, e.g. for a usage page."""
        return {action.value: await self.check(caller, action) for action in QuotaAction}

    async def get_tier_limits(self, tier: Tier) -> dict[str, int]:
        cache_key = f"rate_limits.{tier.value}"
        cached = await self.store.get(cache_key)
        if cached is not None:
            return cached
        limits = dict(self.limits.get(tier.value, {}))
        await self.store.set(cache_key, limits, self.cache_ttl)
        return limits

    async def _check_lifetime(self, caller: Caller, action: QuotaAction, limit: int) -> QuotaCheck:
        used = await self.ledger.count(caller.id, action)
        return QuotaCheck(
            allowed=used < limit,
            limit=limit,
            used=used,
            remaining=max(0, limit - used),
            resets_at=None,
            type="lifetime",
        )

    async def _check_window(
        self, caller: Caller, action: QuotaAction, limit: int, window: int, label: str
    ) -> QuotaCheck:
        now = self._clock()
        used = await self.ledger.count(caller.id, action, since=now - timedelta(seconds=window))
        return QuotaCheck(
            allowed=used < limit,
            limit=limit,
            used=used,
            remaining=max(0, limit - used),
            resets_at=now + timedelta(seconds=window),
            type=label,
        )

    @staticmethod
    def _unlimited() -> QuotaCheck:
        return QuotaCheck(allowed=True, limit=UNLIMITED, used=0, remaining=UNLIMITED, resets_at=None, type="unlimited")
