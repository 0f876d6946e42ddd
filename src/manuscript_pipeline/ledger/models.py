# src/manuscript_pipeline/ledger/models.py — v1
"""Cost ledger models: CostEvent, BudgetCounters, BudgetCheck, BudgetAlert, ModelPricing."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, computed_field

from manuscript_pipeline.core.models import CamelModel, period_of, utc_now

CostCenter = Literal["llm", "payment", "email", "infrastructure"]
AlertSeverity = Literal["info", "warning", "critical"]

GLOBAL_SCOPE = "global"


def user_scope(user_id: str) -> str:
    return f"user:{user_id}"


class ModelPricing(BaseModel):
    """Per-model token pricing (USD per 1M tokens)."""

    model: str
    input_price_per_1m: float
    output_price_per_1m: float


class CostEvent(CamelModel):
    """One billable operation. Append-only, never mutated."""

    event_id: str
    report_id: str | None = None
    user_id: str | None = None
    cost_center: CostCenter
    feature_name: str
    operation: str
    usd: float
    input_tokens: int | None = None
    output_tokens: int | None = None
    model: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def period(self) -> str:
        """Budget period the event belongs to."""
        return period_of(self.created_at)


class BudgetCounters(CamelModel):
    """Monthly rollup for one scope (``user:{id}`` or ``global``)."""

    scope: str
    period: str
    current_spend_usd: float = 0.0
    limit_usd: float
    exceeded: bool = False
    exceeded_at: datetime | None = None


class BudgetCheck(CamelModel):
    """Answer to CheckUser / CheckGlobal."""

    scope: str
    period: str
    limit_usd: float
    spent_usd: float
    exceeded: bool

    @property
    def remaining_usd(self) -> float:
        return max(0.0, self.limit_usd - self.spent_usd)


class BudgetAlert(CamelModel):
    """One-shot notification that a scope crossed a threshold this period."""

    scope: str
    period: str
    threshold: float
    severity: AlertSeverity
    spent_usd: float
    limit_usd: float
    created_at: datetime = Field(default_factory=utc_now)


def alert_severity(threshold: float) -> AlertSeverity:
    """Severity for a threshold: 50 info, 75/90 warning, 100+ critical."""
    if threshold >= 100:
        return "critical"
    if threshold >= 75:
        return "warning"
    return "info"
