# tests/unit/ledger/test_unit_ledgers.py — v1
"""Tests for ledger backends — memory and SQLite (in-memory database)."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from manuscript_pipeline.ledger.ledger_factory import create_cost_ledger
from manuscript_pipeline.ledger.memory_ledger import MemoryCostLedger
from manuscript_pipeline.ledger.models import (
    GLOBAL_SCOPE,
    BudgetAlert,
    CostEvent,
    alert_severity,
    user_scope,
)
from manuscript_pipeline.ledger.sqlite_ledger import SqliteCostLedger

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


def _event(event_id: str, usd: float, user_id: str | None = "u1", **overrides) -> CostEvent:
    values = dict(
        event_id=event_id,
        report_id="r1",
        user_id=user_id,
        cost_center="llm",
        feature_name="developmental",
        operation="llm_completion",
        usd=usd,
        created_at=NOW,
    )
    values.update(overrides)
    return CostEvent(**values)


@pytest.fixture(params=["memory", "sqlite"])
def make_ledger(request, settings):
    created = []

    def _make(alert_sink=None, **overrides):
        kwargs = dict(settings=settings, alert_sink=alert_sink, clock=lambda: NOW)
        kwargs.update(overrides)
        if request.param == "memory":
            ledger = MemoryCostLedger(**kwargs)
        else:
            ledger = SqliteCostLedger(":memory:", **kwargs)
        created.append(ledger)
        return ledger

    yield _make
    for ledger in created:
        close = getattr(ledger, "close", None)
        if close is not None:
            close()


class TestRecord:
    @pytest.mark.asyncio
    async def test_updates_user_and_global(self, make_ledger):
        ledger = make_ledger()
        assert await ledger.record(_event("e1", 1.25)) is True
        user = await ledger.check_user("u1")
        assert user.spent_usd == pytest.approx(1.25)
        assert user.period == "2026-03"
        assert (await ledger.check_global()).spent_usd == pytest.approx(1.25)

    @pytest.mark.asyncio
    async def test_duplicate_event_ignored(self, make_ledger):
        ledger = make_ledger()
        await ledger.record(_event("e1", 1.0))
        assert await ledger.record(_event("e1", 1.0)) is False
        assert (await ledger.check_user("u1")).spent_usd == pytest.approx(1.0)
        assert len(await ledger.events()) == 1

    @pytest.mark.asyncio
    async def test_event_without_user_only_counts_globally(self, make_ledger):
        ledger = make_ledger()
        await ledger.record(_event("e1", 2.0, user_id=None, cost_center="infrastructure"))
        assert (await ledger.check_global()).spent_usd == pytest.approx(2.0)
        assert await ledger.counters(user_scope("u1"), "2026-03") is None

    @pytest.mark.asyncio
    async def test_late_event_counts_in_its_own_month(self, make_ledger):
        ledger = make_ledger()
        february = datetime(2026, 2, 28, 23, 59, tzinfo=timezone.utc)
        await ledger.record(_event("late", 3.0, created_at=february))
        assert (await ledger.check_user("u1")).spent_usd == 0.0
        assert (await ledger.check_user("u1", at=february)).spent_usd == pytest.approx(3.0)
        counters = await ledger.counters(user_scope("u1"), "2026-02")
        assert counters.current_spend_usd == pytest.approx(3.0)

    @pytest.mark.asyncio
    async def test_events_filtered_in_append_order(self, make_ledger):
        ledger = make_ledger()
        await ledger.record(_event("a", 0.1))
        await ledger.record(_event("b", 0.2, report_id="r2"))
        await ledger.record(_event("c", 0.3, user_id="u2"))
        assert [e.event_id for e in await ledger.events()] == ["a", "b", "c"]
        assert [e.event_id for e in await ledger.events(report_id="r1")] == ["a", "c"]
        assert [e.event_id for e in await ledger.events(user_id="u2")] == ["c"]

    @pytest.mark.asyncio
    async def test_metadata_roundtrips(self, make_ledger):
        ledger = make_ledger()
        await ledger.record(_event("e1", 0.1, metadata={"attempt": 2, "errorKind": "validation_error"}))
        (event,) = await ledger.events()
        assert event.metadata == {"attempt": 2, "errorKind": "validation_error"}


class TestLimits:
    @pytest.mark.asyncio
    async def test_default_tier_limit(self, make_ledger):
        check = await make_ledger().check_user("u1")
        assert check.limit_usd == 5.0
        assert check.remaining_usd == 5.0
        assert not check.exceeded

    @pytest.mark.asyncio
    async def test_user_tier(self, make_ledger):
        ledger = make_ledger()
        await ledger.set_user_tier("u1", "pro")
        assert (await ledger.check_user("u1")).limit_usd == 50.0
        with pytest.raises(ValueError, match="tier"):
            await ledger.set_user_tier("u1", "platinum")

    @pytest.mark.asyncio
    async def test_set_limit_override(self, make_ledger):
        ledger = make_ledger()
        await ledger.set_limit(user_scope("u1"), 0.5)
        await ledger.record(_event("e1", 0.5))
        check = await ledger.check_user("u1")
        assert check.exceeded
        assert check.remaining_usd == 0.0
        counters = await ledger.counters(user_scope("u1"), "2026-03")
        assert counters.exceeded
        assert counters.exceeded_at is not None

    @pytest.mark.asyncio
    async def test_raising_limit_clears_exceeded(self, make_ledger):
        ledger = make_ledger()
        await ledger.set_limit(user_scope("u1"), 1.0)
        await ledger.record(_event("e1", 2.0))
        await ledger.set_limit(user_scope("u1"), 10.0)
        assert not (await ledger.check_user("u1")).exceeded
        assert not (await ledger.counters(user_scope("u1"), "2026-03")).exceeded

    @pytest.mark.asyncio
    async def test_global_limit(self, make_ledger, make_settings):
        ledger = make_ledger(settings=make_settings(monthly_limit_global=1.0))
        await ledger.record(_event("e1", 0.6, user_id="u1"))
        await ledger.record(_event("e2", 0.6, user_id="u2"))
        assert (await ledger.check_global()).exceeded
        assert not (await ledger.check_user("u1")).exceeded


class TestAlerts:
    @pytest.mark.asyncio
    async def test_thresholds_fire_once(self, make_ledger):
        received: list[BudgetAlert] = []

        async def sink(alert: BudgetAlert) -> None:
            received.append(alert)

        ledger = make_ledger(alert_sink=sink)
        await ledger.set_limit(user_scope("u1"), 10.0)
        await ledger.record(_event("e1", 6.0))
        await ledger.record(_event("e2", 3.0))
        await ledger.record(_event("e3", 2.0))
        await ledger.record(_event("e4", 5.0))

        user_alerts = [(a.threshold, a.severity) for a in received if a.scope == user_scope("u1")]
        assert user_alerts == [
            (50.0, "info"),
            (75.0, "warning"),
            (90.0, "warning"),
            (100.0, "critical"),
        ]
        stored = await ledger.alerts(user_scope("u1"))
        assert sorted(a.threshold for a in stored) == [50.0, 75.0, 90.0, 100.0]

    @pytest.mark.asyncio
    async def test_global_scope_alerts_independently(self, make_ledger, make_settings):
        ledger = make_ledger(settings=make_settings(monthly_limit_global=2.0))
        await ledger.record(_event("e1", 1.0))
        scopes = {(a.scope, a.threshold) for a in await ledger.alerts()}
        assert (GLOBAL_SCOPE, 50.0) in scopes
        assert (user_scope("u1"), 50.0) not in scopes


class TestSeverity:
    def test_levels(self):
        assert alert_severity(50) == "info"
        assert alert_severity(75) == "warning"
        assert alert_severity(90) == "warning"
        assert alert_severity(100) == "critical"
        assert alert_severity(120) == "critical"


class TestLedgerFactory:
    def test_default_is_memory(self):
        assert isinstance(create_cost_ledger(), MemoryCostLedger)

    def test_sqlite_backend(self, make_settings, tmp_path):
        ledger = create_cost_ledger(
            make_settings(ledger_backend="sqlite", ledger_db_path=tmp_path / "db" / "ledger.db")
        )
        try:
            assert isinstance(ledger, SqliteCostLedger)
            assert (tmp_path / "db" / "ledger.db").exists()
        finally:
            ledger.close()

    @pytest.mark.asyncio
    async def test_sqlite_file_shared_between_instances(self, make_settings, tmp_path):
        settings = make_settings(ledger_backend="sqlite", ledger_db_path=tmp_path / "ledger.db")
        first = create_cost_ledger(settings)
        second = create_cost_ledger(settings)
        try:
            await first.record(_event("e1", 1.0, created_at=datetime.now(timezone.utc)))
            assert (await second.check_user("u1")).spent_usd == pytest.approx(1.0)
        finally:
            first.close()
            second.close()
