# src/manuscript_pipeline/ledger/sqlite_ledger.py — v1
"""SQLite-based cost ledger (LEDGER_BACKEND=sqlite).

Uses stdlib sqlite3 — no external dependency. Each record() runs in one
``BEGIN IMMEDIATE`` transaction (insert event, upsert both rollups,
insert first-time alerts), so workers sharing the database file observe
the append and the counter update atomically.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path

from manuscript_pipeline.ledger.base_ledger import BaseCostLedger
from manuscript_pipeline.ledger.models import (
    BudgetAlert,
    BudgetCheck,
    BudgetCounters,
    CostEvent,
)

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS cost_events (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    event_id TEXT NOT NULL UNIQUE,
    report_id TEXT,
    user_id TEXT,
    period TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_events_report ON cost_events(report_id);
CREATE INDEX IF NOT EXISTS idx_events_user ON cost_events(user_id);
CREATE TABLE IF NOT EXISTS budget_counters (
    scope TEXT NOT NULL,
    period TEXT NOT NULL,
    current_spend_usd REAL NOT NULL DEFAULT 0,
    limit_usd REAL NOT NULL,
    exceeded INTEGER NOT NULL DEFAULT 0,
    exceeded_at TEXT,
    PRIMARY KEY (scope, period)
);
CREATE TABLE IF NOT EXISTS budget_limits (
    scope TEXT PRIMARY KEY,
    limit_usd REAL NOT NULL
);
CREATE TABLE IF NOT EXISTS user_tiers (
    user_id TEXT PRIMARY KEY,
    tier TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS budget_alerts (
    scope TEXT NOT NULL,
    period TEXT NOT NULL,
    threshold REAL NOT NULL,
    data TEXT NOT NULL,
    PRIMARY KEY (scope, period, threshold)
);
"""


class SqliteCostLedger(BaseCostLedger):
    """SQLite-backed ledger shared by workers on one host."""

    def __init__(self, db_path: Path | str, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._db_path = Path(db_path).expanduser() if str(db_path) != ":memory:" else None
        if self._db_path is not None:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(
            str(self._db_path) if self._db_path else ":memory:",
            isolation_level=None,
            timeout=30.0,
        )
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)

    # --- Helpers ---

    def _limit_for(self, scope: str) -> float:
        row = self._conn.execute(
            "SELECT limit_usd FROM budget_limits WHERE scope = ?", (scope,)
        ).fetchone()
        if row is not None:
            return float(row[0])
        tier = None
        if scope.startswith("user:"):
            tier_row = self._conn.execute(
                "SELECT tier FROM user_tiers WHERE user_id = ?", (scope[len("user:"):],)
            ).fetchone()
            tier = tier_row[0] if tier_row else None
        return self._default_limit(scope, tier)

    def _spent(self, scope: str, period: str) -> float:
        row = self._conn.execute(
            "SELECT current_spend_usd FROM budget_counters WHERE scope = ? AND period = ?",
            (scope, period),
        ).fetchone()
        return float(row[0]) if row else 0.0

    # --- Contract ---

    async def record(self, event: CostEvent) -> bool:
        new_alerts: list[BudgetAlert] = []
        period = event.period
        self._conn.execute("BEGIN IMMEDIATE")
        try:
            cursor = self._conn.execute(
                """INSERT OR IGNORE INTO cost_events
                   (event_id, report_id, user_id, period, data)
                   VALUES (?, ?, ?, ?, ?)""",
                (
                    event.event_id,
                    event.report_id,
                    event.user_id,
                    period,
                    event.model_dump_json(by_alias=True),
                ),
            )
            if cursor.rowcount == 0:
                self._conn.execute("ROLLBACK")
                logger.debug("Duplicate cost event %s ignored", event.event_id)
                return False

            for scope in self._scopes_for(event):
                limit = self._limit_for(scope)
                before = self._spent(scope, period)
                after = before + event.usd
                exceeded = self._is_exceeded(after, limit)
                self._conn.execute(
                    """INSERT INTO budget_counters
                       (scope, period, current_spend_usd, limit_usd, exceeded, exceeded_at)
                       VALUES (?, ?, ?, ?, ?, ?)
                       ON CONFLICT(scope, period) DO UPDATE SET
                         current_spend_usd = excluded.current_spend_usd,
                         limit_usd = excluded.limit_usd,
                         exceeded = MAX(budget_counters.exceeded, excluded.exceeded),
                         exceeded_at = COALESCE(budget_counters.exceeded_at, excluded.exceeded_at)""",
                    (
                        scope,
                        period,
                        after,
                        limit,
                        int(exceeded),
                        event.created_at.isoformat() if exceeded else None,
                    ),
                )
                for threshold in self._crossed_thresholds(before, after, limit):
                    alert = self._build_alert(scope, period, threshold, after, limit)
                    inserted = self._conn.execute(
                        """INSERT OR IGNORE INTO budget_alerts
                           (scope, period, threshold, data) VALUES (?, ?, ?, ?)""",
                        (scope, period, threshold, alert.model_dump_json(by_alias=True)),
                    )
                    if inserted.rowcount:
                        new_alerts.append(alert)
            self._conn.execute("COMMIT")
        except BaseException:
            self._conn.execute("ROLLBACK")
            raise

        await self._emit(new_alerts)
        return True

    async def check(self, scope: str, at: datetime | None = None) -> BudgetCheck:
        period = self._period(at)
        limit = self._limit_for(scope)
        spent = self._spent(scope, period)
        return BudgetCheck(
            scope=scope,
            period=period,
            limit_usd=limit,
            spent_usd=spent,
            exceeded=self._is_exceeded(spent, limit),
        )

    async def set_limit(self, scope: str, usd: float) -> None:
        period = self._period(None)
        self._conn.execute("BEGIN IMMEDIATE")
        try:
            self._conn.execute(
                """INSERT INTO budget_limits (scope, limit_usd) VALUES (?, ?)
                   ON CONFLICT(scope) DO UPDATE SET limit_usd = excluded.limit_usd""",
                (scope, usd),
            )
            spent = self._spent(scope, period)
            exceeded = self._is_exceeded(spent, usd)
            self._conn.execute(
                """UPDATE budget_counters SET limit_usd = ?, exceeded = ?,
                     exceeded_at = CASE WHEN ? THEN COALESCE(exceeded_at, ?) ELSE NULL END
                   WHERE scope = ? AND period = ?""",
                (usd, int(exceeded), int(exceeded), self._clock().isoformat(), scope, period),
            )
            self._conn.execute("COMMIT")
        except BaseException:
            self._conn.execute("ROLLBACK")
            raise
        logger.info("Budget limit for %s set to $%.2f", scope, usd)

    async def set_user_tier(self, user_id: str, tier: str) -> None:
        if tier not in self._settings.tier_limits:
            raise ValueError(f"Unknown tier: {tier!r}")
        self._conn.execute(
            """INSERT INTO user_tiers (user_id, tier) VALUES (?, ?)
               ON CONFLICT(user_id) DO UPDATE SET tier = excluded.tier""",
            (user_id, tier),
        )
        logger.info("User %s moved to tier %s", user_id, tier)

    async def events(
        self, report_id: str | None = None, user_id: str | None = None
    ) -> list[CostEvent]:
        query = "SELECT data FROM cost_events WHERE 1 = 1"
        params: list[str] = []
        if report_id is not None:
            query += " AND report_id = ?"
            params.append(report_id)
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)
        query += " ORDER BY seq"
        return [
            CostEvent.model_validate(json.loads(row[0]))
            for row in self._conn.execute(query, params)
        ]

    async def alerts(self, scope: str | None = None) -> list[BudgetAlert]:
        if scope is None:
            rows = self._conn.execute("SELECT data FROM budget_alerts ORDER BY period, scope, threshold")
        else:
            rows = self._conn.execute(
                "SELECT data FROM budget_alerts WHERE scope = ? ORDER BY period, threshold",
                (scope,),
            )
        return [BudgetAlert.model_validate(json.loads(row[0])) for row in rows]

    async def counters(self, scope: str, period: str) -> BudgetCounters | None:
        row = self._conn.execute(
            """SELECT current_spend_usd, limit_usd, exceeded, exceeded_at
               FROM budget_counters WHERE scope = ? AND period = ?""",
            (scope, period),
        ).fetchone()
        if row is None:
            return None
        return BudgetCounters(
            scope=scope,
            period=period,
            current_spend_usd=row[0],
            limit_usd=row[1],
            exceeded=bool(row[2]),
            exceeded_at=datetime.fromisoformat(row[3]) if row[3] else None,
        )

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
