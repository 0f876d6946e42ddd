# src/manuscript_pipeline/api/facade.py — v1
"""Public API facade — the only entry point handlers use.

Usage:
    ctx = PipelineContext.from_settings(settings)
    response = await submit_report(ctx, SubmitRequest(...))
    view = await get_status(ctx, response.report_id)

PipelineContext is the explicit environment object: every collaborator
(object store, queue, ledger, LLM client, limiter) is built once from
settings and passed down through constructors. Nothing here executes a
stage; analysis only runs inside a worker that leased the report.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Sequence

from manuscript_pipeline.api.models import (
    CancelResponse,
    ErrorResponse,
    StatusView,
    SubmitRequest,
    SubmitResponse,
    UploadRequest,
    UploadResponse,
)
from manuscript_pipeline.config.settings import Settings
from manuscript_pipeline.core.errors import (
    BudgetExceeded,
    DuplicateReport,
    ManuscriptMissing,
    ReportNotFound,
    ResultNotFound,
    friendly_message,
)
from manuscript_pipeline.core.models import StatusRecord, SubmitOptions
from manuscript_pipeline.llm.concurrency import LLMConcurrencyLimiter
from manuscript_pipeline.pipeline.analyzer import StageAnalyzer
from manuscript_pipeline.pipeline.dag_builder import build_dag
from manuscript_pipeline.pipeline.orchestrator import PIPELINE_ERROR_KEY, PipelineOrchestrator
from manuscript_pipeline.pipeline.registry import StageRegistry
from manuscript_pipeline.pipeline.worker import PipelineWorker
from manuscript_pipeline.storage.manuscripts import put_manuscript
from manuscript_pipeline.storage.run_repository import RunRepository

if TYPE_CHECKING:
    from manuscript_pipeline.ledger.base_ledger import BaseCostLedger
    from manuscript_pipeline.llm.base_client import BaseLLMClient
    from manuscript_pipeline.queue.base_queue import BaseJobQueue
    from manuscript_pipeline.storage.base_object_store import BaseObjectStore

logger = logging.getLogger(__name__)


@dataclass
class PipelineContext:
    """Explicit environment shared by handlers and workers of one process."""

    settings: Settings
    store: BaseObjectStore
    runs: RunRepository
    queue: BaseJobQueue
    ledger: BaseCostLedger
    llm_client: BaseLLMClient
    limiter: LLMConcurrencyLimiter
    registry: StageRegistry
    analyzer: StageAnalyzer
    orchestrator: PipelineOrchestrator

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        store: BaseObjectStore | None = None,
        queue: BaseJobQueue | None = None,
        ledger: BaseCostLedger | None = None,
        llm_client: BaseLLMClient | None = None,
        limiter: LLMConcurrencyLimiter | None = None,
        registry: StageRegistry | None = None,
    ) -> PipelineContext:
        """Build every collaborator from settings unless one is injected."""
        settings = settings or Settings()

        if store is None:
            from manuscript_pipeline.storage.store_factory import create_object_store
            store = create_object_store(settings)
        if queue is None:
            from manuscript_pipeline.queue.queue_factory import create_job_queue
            queue = create_job_queue(settings)
        if ledger is None:
            from manuscript_pipeline.ledger.ledger_factory import create_cost_ledger
            ledger = create_cost_ledger(settings)
        if llm_client is None:
            from manuscript_pipeline.llm.client_factory import create_llm_client
            llm_client = create_llm_client(settings=settings)

        limiter = limiter or LLMConcurrencyLimiter.from_settings(settings)
        registry = registry or StageRegistry.default()
        runs = RunRepository(store, status_ttl_sec=settings.status_ttl_sec)
        analyzer = StageAnalyzer(
            registry, runs, ledger, llm_client, limiter=limiter, settings=settings
        )
        orchestrator = PipelineOrchestrator(
            runs, queue, ledger, analyzer, registry, settings=settings
        )
        return cls(
            settings=settings,
            store=store,
            runs=runs,
            queue=queue,
            ledger=ledger,
            llm_client=llm_client,
            limiter=limiter,
            registry=registry,
            analyzer=analyzer,
            orchestrator=orchestrator,
        )

    def worker(self, consumer_id: str | None = None) -> PipelineWorker:
        return PipelineWorker(
            self.orchestrator, self.queue, settings=self.settings, consumer_id=consumer_id
        )

    def close(self) -> None:
        """Release backend connections that hold OS resources."""
        for resource in (self.ledger, self.queue):
            close = getattr(resource, "close", None)
            if close is not None:
                close()


# ------------------------------------------------------------------
# Handler projection
# ------------------------------------------------------------------


async def upload_manuscript(ctx: PipelineContext, request: UploadRequest) -> UploadResponse:
    manuscript = await put_manuscript(
        ctx.store,
        request.user_id,
        request.text,
        title=request.title,
        genre=request.genre,
        manuscript_id=request.manuscript_id,
    )
    return UploadResponse(
        manuscript_id=manuscript.manuscript_id, word_count=manuscript.word_count
    )


async def submit_report(ctx: PipelineContext, request: SubmitRequest) -> SubmitResponse:
    """POST /submit.

    Raises:
        DuplicateReport, ManuscriptMissing, BudgetExceeded: see error_response().
    """
    report_id = request.report_id or generate_report_id()
    status = await ctx.orchestrator.submit(report_id, request.manuscript_id, request.options)
    return SubmitResponse(report_id=report_id, status=status)


async def reanalyze_report(
    ctx: PipelineContext, report_id: str, options: SubmitOptions | None = None
) -> SubmitResponse:
    """Run the pipeline again on the manuscript of an existing report.

    Always creates a new report; the old one is left untouched.

    Raises:
        ReportNotFound: The original report has no stored run.
    """
    run = await ctx.runs.load_run(report_id)
    if run is None:
        raise ReportNotFound(f"Report {report_id} not found")
    request = SubmitRequest(manuscript_id=run.manuscript_id, options=options or run.options)
    response = await submit_report(ctx, request)
    logger.info("Report %s reanalyzed as %s", report_id, response.report_id)
    return response


async def get_status(ctx: PipelineContext, report_id: str) -> StatusView:
    """GET /status/{reportId}."""
    status = await ctx.orchestrator.status(report_id)
    message = user_message(status, required_stage_ids(ctx.registry))
    return StatusView(report_id=report_id, status=status, user_message=message)


async def cancel_report(ctx: PipelineContext, report_id: str) -> CancelResponse:
    """POST /cancel/{reportId}. Returns immediately."""
    await ctx.orchestrator.cancel(report_id)
    return CancelResponse(report_id=report_id)


async def get_result(ctx: PipelineContext, report_id: str, stage_id: str) -> bytes:
    """GET /result/{reportId}/{stageId}: opaque stage JSON."""
    return await ctx.orchestrator.fetch_result(report_id, stage_id)


async def delete_report(ctx: PipelineContext, report_id: str) -> int:
    """Delete a report and its artifacts. Cost events are kept."""
    return await ctx.runs.delete_report(report_id)


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def user_message(status: StatusRecord, required: Sequence[str] = ()) -> str | None:
    """User-facing explanation of a failed or cancelled report.

    The error of a failed required stage (first in ``required`` order)
    explains the failure; optional stage errors are only used when no
    required stage recorded one.
    """
    if status.state == "cancelled":
        return friendly_message("cancelled")
    if status.state != "failed":
        return None
    errors = status.errors or {}
    for stage_id in (PIPELINE_ERROR_KEY, *required):
        if stage_id in errors:
            return friendly_message(errors[stage_id])
    kinds = sorted(set(errors.values()))
    return friendly_message(kinds[0]) if kinds else friendly_message("invariant_violation")


def required_stage_ids(registry: StageRegistry) -> list[str]:
    """Required stages in dispatch order."""
    order = build_dag(registry.get_dependency_map()).flat_order
    return [sid for sid in order if registry.get_or_raise(sid).criticality == "required"]


_ERROR_MAP: dict[type[Exception], tuple[str, int]] = {
    DuplicateReport: ("duplicate_report", 409),
    ManuscriptMissing: ("manuscript_missing", 404),
    BudgetExceeded: ("budget_exceeded", 402),
    ReportNotFound: ("report_not_found", 404),
    ResultNotFound: ("result_not_found", 404),
}

_ERROR_TEXT: dict[str, str] = {
    "duplicate_report": "This report has already been submitted.",
    "manuscript_missing": "The manuscript could not be found. Please upload it again.",
    "budget_exceeded": friendly_message("budget_exceeded"),
    "report_not_found": "No report with this id exists.",
    "result_not_found": "This part of the report is not available.",
}


def error_response(exc: Exception) -> ErrorResponse:
    """Map a contract error to a handler response without leaking internals."""
    for error_type, (code, http_status) in _ERROR_MAP.items():
        if isinstance(exc, error_type):
            return ErrorResponse(error=code, message=_ERROR_TEXT[code], http_status=http_status)
    logger.error("Unmapped error at the API boundary: %r", exc)
    return ErrorResponse(
        error="internal_error",
        message=friendly_message("invariant_violation"),
        http_status=500,
    )


def generate_report_id() -> str:
    """yyyymmdd_hhmmss_{uuid4_short}."""
    ts = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    return f"{ts}_{uuid.uuid4().hex[:8]}"
