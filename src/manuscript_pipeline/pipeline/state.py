# src/manuscript_pipeline/pipeline/state.py — v1
"""Persistent pipeline state: PipelineRun and per-stage StageState.

A PipelineRun is the aggregate root of one report. It is mutated only by
the worker holding the report's queue lease and is committed to the
object store (``runs/{reportId}``) before every status write.
"""

from __future__ import annotations

import math
from datetime import datetime

from pydantic import Field

from manuscript_pipeline.core.models import (
    TERMINAL_REPORT_STATES,
    TERMINAL_STAGE_STATUSES,
    CamelModel,
    Criticality,
    ReportState,
    StageStatus,
    StatusRecord,
    SubmitOptions,
    utc_now,
)


class StageState(CamelModel):
    """Execution state of one stage within one report."""

    stage_id: str
    criticality: Criticality = "optional"
    status: StageStatus = "pending"
    attempt: int = 0
    started_at: datetime | None = None
    finished_at: datetime | None = None
    result_key: str | None = None
    error_kind: str | None = None
    # Earliest time a retry may be dispatched (backoff)
    not_before: datetime | None = None
    # Set when the next dispatch must append the repair instruction
    repair_hint: str | None = None
    repair_used: bool = False
    # Recovered from a crashed worker: re-dispatch keeps the attempt number
    resume: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STAGE_STATUSES

    @property
    def is_required(self) -> bool:
        return self.criticality == "required"


class PipelineRun(CamelModel):
    """Serialized state of one report's pipeline run."""

    report_id: str
    manuscript_id: str
    user_id: str
    options: SubmitOptions
    dag_version: int
    state: ReportState = "queued"
    created_at: datetime = Field(default_factory=utc_now)
    finished_at: datetime | None = None
    stage_states: dict[str, StageState] = Field(default_factory=dict)
    progress_pct: float = 0.0
    current_step: str | None = None
    last_message: str = "Queued"
    last_event_at: datetime = Field(default_factory=utc_now)
    errors: dict[str, str] = Field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_REPORT_STATES

    def stage(self, stage_id: str) -> StageState:
        return self.stage_states[stage_id]

    def stages_with(self, *statuses: str) -> list[str]:
        """Stage ids currently in any of the given statuses."""
        return [sid for sid, st in self.stage_states.items() if st.status in statuses]

    @property
    def succeeded(self) -> set[str]:
        return set(self.stages_with("succeeded"))

    def touch(self, message: str, current_step: str | None = None) -> None:
        """Record a transition message and timestamp."""
        self.last_message = message
        if current_step is not None:
            self.current_step = current_step
        self.last_event_at = utc_now()

    def advance_progress(self, pct: float) -> None:
        """Raise progress; never lowers it."""
        self.progress_pct = min(100.0, max(self.progress_pct, pct))

    def result_keys(self) -> dict[str, str]:
        return {
            sid: st.result_key
            for sid, st in sorted(self.stage_states.items())
            if st.status == "succeeded" and st.result_key
        }

    def to_status(self) -> StatusRecord:
        """Project the run onto the poller-facing status record."""
        return StatusRecord(
            state=self.state,
            progress=math.floor(self.progress_pct),
            current_step=self.current_step,
            message=self.last_message,
            updated_at=self.last_event_at,
            results=self.result_keys() if self.is_terminal else None,
            errors=dict(sorted(self.errors.items())) or None,
        )
