# src/manuscript_pipeline/logging/context.py — v1
"""Contextual logging support: attach worker, report, stage and attempt to log records.

Context variables are copied into every asyncio task at creation time, so
stage tasks dispatched concurrently for one report each log their own
stage and attempt.
"""

from __future__ import annotations

import contextvars
from dataclasses import dataclass
from typing import Any

_worker_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "worker_id", default=None
)
_report_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "report_id", default=None
)
_stage: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "stage", default=None
)
_attempt: contextvars.ContextVar[int | None] = contextvars.ContextVar(
    "attempt", default=None
)


@dataclass
class LogContext:
    """Immutable snapshot of current logging context."""

    worker_id: str | None = None
    report_id: str | None = None
    stage: str | None = None
    attempt: int | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(
        worker_id=_worker_id.get(),
        report_id=_report_id.get(),
        stage=_stage.get(),
        attempt=_attempt.get(),
    )


def set_worker_context(worker_id: str) -> None:
    """Set worker-level context (called once per worker process or task)."""
    _worker_id.set(worker_id)


def set_report_context(report_id: str | None) -> None:
    """Set report-level context (called when a worker starts driving a report)."""
    _report_id.set(report_id)
    _stage.set(None)
    _attempt.set(None)


def set_stage_context(stage: str, attempt: int | None = None) -> None:
    """Set stage-level context (called inside each stage task)."""
    _stage.set(stage)
    _attempt.set(attempt)


def clear_context() -> None:
    """Reset all context variables."""
    _worker_id.set(None)
    _report_id.set(None)
    _stage.set(None)
    _attempt.set(None)
