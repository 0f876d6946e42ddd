# src/manuscript_pipeline/core/models.py — v1
"""Shared Pydantic domain models used across modules.

Persisted and wire-visible models serialize with camelCase aliases
(``model_dump(by_alias=True)``); Python code uses snake_case fields.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

ReportState = Literal["queued", "running", "complete", "failed", "cancelled"]
StageStatus = Literal[
    "pending", "ready", "running", "succeeded", "failed", "skipped", "cancelled"
]
StageKind = Literal["analysis", "asset"]
Criticality = Literal["required", "optional"]
UserTier = Literal["free", "pro", "enterprise"]

TERMINAL_REPORT_STATES: frozenset[str] = frozenset({"complete", "failed", "cancelled"})
TERMINAL_STAGE_STATUSES: frozenset[str] = frozenset(
    {"succeeded", "failed", "skipped", "cancelled"}
)


def utc_now() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def period_of(moment: datetime) -> str:
    """Budget period key (UTC calendar month, ``YYYY-MM``) for a timestamp."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m")


class CamelModel(BaseModel):
    """Base for models persisted as camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_bytes(self) -> bytes:
        return self.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")


# === MANUSCRIPTS ===


class Manuscript(CamelModel):
    """Uploaded manuscript metadata (the text itself lives under raw_key)."""

    manuscript_id: str
    owner_id: str
    raw_key: str
    word_count: int
    uploaded_at: datetime
    title: str = ""
    genre: str = "general"


# === SUBMISSION ===


class SubmitOptions(CamelModel):
    """Per-report options chosen by the caller at submission time."""

    user_id: str
    genre: str | None = None
    style_guide: Literal["chicago", "ap", "custom"] = "chicago"
    include_assets: bool = False
    include_marketing: bool = False
    include_audiobook: bool = False
    formats: list[Literal["epub", "pdf"]] = Field(default_factory=list)
    author_data: dict[str, Any] = Field(default_factory=dict)
    series_data: dict[str, Any] = Field(default_factory=dict)


# === STATUS ===


class StatusRecord(CamelModel):
    """Poller-facing projection of a PipelineRun (wire-stable JSON)."""

    state: ReportState
    progress: int = 0
    current_step: str | None = None
    message: str = ""
    updated_at: datetime = Field(default_factory=utc_now)
    results: dict[str, str] | None = None
    errors: dict[str, str] | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_REPORT_STATES
