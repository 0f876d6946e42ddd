# src/manuscript_pipeline/ledger/memory_ledger.py — v1
"""In-process cost ledger (LEDGER_BACKEND=memory).

An asyncio lock makes "append event + update rollups" atomic for all
tasks of one process. Multi-worker deployments use the SQLite backend.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from manuscript_pipeline.ledger.base_ledger import BaseCostLedger
from manuscript_pipeline.ledger.models import (
    BudgetAlert,
    BudgetCheck,
    BudgetCounters,
    CostEvent,
)

logger = logging.getLogger(__name__)


class MemoryCostLedger(BaseCostLedger):
    """Dict-backed ledger for tests and single-process runs."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._lock = asyncio.Lock()
        self._events: list[CostEvent] = []
        self._event_ids: set[str] = set()
        self._counters: dict[tuple[str, str], BudgetCounters] = {}
        self._limits: dict[str, float] = {}
        self._tiers: dict[str, str] = {}
        self._alerts: dict[tuple[str, str, float], BudgetAlert] = {}

    def _limit_for(self, scope: str) -> float:
        if scope in self._limits:
            return self._limits[scope]
        tier = None
        if scope.startswith("user:"):
            tier = self._tiers.get(scope[len("user:"):])
        return self._default_limit(scope, tier)

    async def record(self, event: CostEvent) -> bool:
        new_alerts: list[BudgetAlert] = []
        async with self._lock:
            if event.event_id in self._event_ids:
                logger.debug("Duplicate cost event %s ignored", event.event_id)
                return False
            self._events.append(event)
            self._event_ids.add(event.event_id)

            period = event.period
            for scope in self._scopes_for(event):
                limit = self._limit_for(scope)
                counter = self._counters.get((scope, period))
                if counter is None:
                    counter = BudgetCounters(scope=scope, period=period, limit_usd=limit)
                    self._counters[(scope, period)] = counter
                before = counter.current_spend_usd
                counter.current_spend_usd = before + event.usd
                counter.limit_usd = limit
                if self._is_exceeded(counter.current_spend_usd, limit):
                    if not counter.exceeded:
                        counter.exceeded_at = event.created_at
                    counter.exceeded = True

                for threshold in self._crossed_thresholds(
                    before, counter.current_spend_usd, limit
                ):
                    key = (scope, period, threshold)
                    if key in self._alerts:
                        continue
                    alert = self._build_alert(
                        scope, period, threshold, counter.current_spend_usd, limit
                    )
                    self._alerts[key] = alert
                    new_alerts.append(alert)

        await self._emit(new_alerts)
        return True

    async def check(self, scope: str, at: datetime | None = None) -> BudgetCheck:
        period = self._period(at)
        limit = self._limit_for(scope)
        counter = self._counters.get((scope, period))
        spent = counter.current_spend_usd if counter else 0.0
        return BudgetCheck(
            scope=scope,
            period=period,
            limit_usd=limit,
            spent_usd=spent,
            exceeded=self._is_exceeded(spent, limit),
        )

    async def set_limit(self, scope: str, usd: float) -> None:
        async with self._lock:
            self._limits[scope] = usd
            counter = self._counters.get((scope, self._period(None)))
            if counter is not None:
                counter.limit_usd = usd
                exceeded = self._is_exceeded(counter.current_spend_usd, usd)
                if exceeded and not counter.exceeded:
                    counter.exceeded_at = self._clock()
                counter.exceeded = exceeded
        logger.info("Budget limit for %s set to $%.2f", scope, usd)

    async def set_user_tier(self, user_id: str, tier: str) -> None:
        if tier not in self._settings.tier_limits:
            raise ValueError(f"Unknown tier: {tier!r}")
        self._tiers[user_id] = tier
        logger.info("User %s moved to tier %s", user_id, tier)

    async def events(
        self, report_id: str | None = None, user_id: str | None = None
    ) -> list[CostEvent]:
        return [
            e
            for e in self._events
            if (report_id is None or e.report_id == report_id)
            and (user_id is None or e.user_id == user_id)
        ]

    async def alerts(self, scope: str | None = None) -> list[BudgetAlert]:
        return [a for a in self._alerts.values() if scope is None or a.scope == scope]

    async def counters(self, scope: str, period: str) -> BudgetCounters | None:
        counter = self._counters.get((scope, period))
        return counter.model_copy() if counter else None