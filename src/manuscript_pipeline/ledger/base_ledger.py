# src/manuscript_pipeline/ledger/base_ledger.py — v1
"""Abstract cost ledger interface plus the limit and alert rules shared by backends.

Counters are keyed by (scope, period) where period is the UTC calendar
month of the event's createdAt. A new month starts a fresh counter, and a
late event only ever updates the counter of its own month.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Awaitable, Callable

from manuscript_pipeline.config.settings import Settings
from manuscript_pipeline.core.models import period_of, utc_now
from manuscript_pipeline.ledger.models import (
    GLOBAL_SCOPE,
    BudgetAlert,
    BudgetCheck,
    BudgetCounters,
    CostEvent,
    alert_severity,
    user_scope,
)

logger = logging.getLogger(__name__)

AlertSink = Callable[[BudgetAlert], Awaitable[None]]


class BaseCostLedger(ABC):
    """Append-only record of billable operations with monthly budget rollups.

    Args:
        settings: Provides tier limits, the global limit and alert thresholds.
        alert_sink: Optional async callback receiving each new BudgetAlert.
        clock: Source of "now" for checks (injectable for period tests).
    """

    def __init__(
        self,
        settings: Settings | None = None,
        alert_sink: AlertSink | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._settings = settings or Settings()
        self._alert_sink = alert_sink
        self._clock = clock

    # --- Contract ---

    @abstractmethod
    async def record(self, event: CostEvent) -> bool:
        """Append an event and update its user and global rollups atomically.

        Returns:
            False when an event with the same id was already recorded.
        """

    @abstractmethod
    async def check(self, scope: str, at: datetime | None = None) -> BudgetCheck:
        """Current spend against the limit of a scope for the period of ``at``."""

    @abstractmethod
    async def set_limit(self, scope: str, usd: float) -> None:
        """Administrative override of a scope's monthly limit."""

    @abstractmethod
    async def set_user_tier(self, user_id: str, tier: str) -> None:
        """Assign a user to a pricing tier (free, pro, enterprise)."""

    @abstractmethod
    async def events(
        self, report_id: str | None = None, user_id: str | None = None
    ) -> list[CostEvent]:
        """Recorded events, optionally filtered, in append order."""

    @abstractmethod
    async def alerts(self, scope: str | None = None) -> list[BudgetAlert]:
        """Emitted alerts, optionally filtered by scope."""

    @abstractmethod
    async def counters(self, scope: str, period: str) -> BudgetCounters | None:
        """Raw rollup row for (scope, period), if any event touched it."""

    async def check_user(self, user_id: str, at: datetime | None = None) -> BudgetCheck:
        return await self.check(user_scope(user_id), at)

    async def check_global(self, at: datetime | None = None) -> BudgetCheck:
        return await self.check(GLOBAL_SCOPE, at)

    # --- Shared rules ---

    def _period(self, at: datetime | None) -> str:
        return period_of(at or self._clock())

    def _default_limit(self, scope: str, tier: str | None) -> float:
        if scope == GLOBAL_SCOPE:
            return self._settings.monthly_limit_global
        tier = tier or self._settings.default_user_tier
        return self._settings.tier_limits.get(tier, self._settings.monthly_limit_free)

    @staticmethod
    def _scopes_for(event: CostEvent) -> list[str]:
        scopes = [GLOBAL_SCOPE]
        if event.user_id:
            scopes.insert(0, user_scope(event.user_id))
        return scopes

    @staticmethod
    def _is_exceeded(spent: float, limit: float) -> bool:
        return spent >= limit

    def _crossed_thresholds(self, before: float, after: float, limit: float) -> list[float]:
        """Thresholds (percent) crossed by moving spend from before to after."""
        if limit <= 0:
            return [t for t in self._settings.budget_alert_thresholds_list if after > before]
        pct_before = before / limit * 100
        pct_after = after / limit * 100
        return [
            t
            for t in self._settings.budget_alert_thresholds_list
            if pct_before < t <= pct_after
        ]

    def _build_alert(
        self, scope: str, period: str, threshold: float, spent: float, limit: float
    ) -> BudgetAlert:
        return BudgetAlert(
            scope=scope,
            period=period,
            threshold=threshold,
            severity=alert_severity(threshold),
            spent_usd=spent,
            limit_usd=limit,
        )

    async def _emit(self, alerts: list[BudgetAlert]) -> None:
        """Log new alerts and forward them to the sink."""
        for alert in alerts:
            level = logging.INFO if alert.severity == "info" else logging.WARNING
            logger.log(
                level,
                "Budget alert %s: %s reached %.0f%% of $%.2f in %s ($%.4f spent)",
                alert.severity.upper(),
                alert.scope,
                alert.threshold,
                alert.limit_usd,
                alert.period,
                alert.spent_usd,
                extra={"data": alert.model_dump(mode="json", by_alias=True)},
            )
            if self._alert_sink is not None:
                await self._alert_sink(alert)
