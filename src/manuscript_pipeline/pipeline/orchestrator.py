# src/manuscript_pipeline/pipeline/orchestrator.py — v1
"""Pipeline orchestrator — drive one report through the stage DAG.

A worker that leased a report's envelope calls drive(). The run is
loaded from the object store, interrupted stages are resumed, and ready
stages are dispatched to the Analyzer as concurrent tasks under the
per-report cap. Every stage completion is applied to the PipelineRun,
committed (run first, then status), and followed by a heartbeat that
extends the lease. The loop ends when the report reaches a terminal
state or a cancel marker is observed.

Public contract used by the API facade: submit, cancel, status,
fetch_result, drive.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from functools import partial
from typing import Callable

from manuscript_pipeline.config.settings import Settings
from manuscript_pipeline.core.errors import (
    BudgetExceeded,
    DuplicateReport,
    ErrorKind,
    LeaseLost,
    ManuscriptMissing,
    ReportNotFound,
    friendly_message,
)
from manuscript_pipeline.core.models import ReportState, StatusRecord, SubmitOptions, utc_now
from manuscript_pipeline.ledger.base_ledger import BaseCostLedger
from manuscript_pipeline.llm.retry import RetryPolicy, classify_error
from manuscript_pipeline.logging.context import set_report_context, set_stage_context
from manuscript_pipeline.pipeline import scheduler
from manuscript_pipeline.pipeline.analyzer import StageAnalyzer
from manuscript_pipeline.pipeline.dag_builder import build_dag
from manuscript_pipeline.pipeline.plugin_kit.models import StageResult
from manuscript_pipeline.pipeline.registry import StageRegistry
from manuscript_pipeline.pipeline.state import PipelineRun
from manuscript_pipeline.queue.base_queue import BaseJobQueue
from manuscript_pipeline.queue.models import Envelope
from manuscript_pipeline.storage.manuscripts import manuscript_exists
from manuscript_pipeline.storage.run_repository import RunRepository

logger = logging.getLogger(__name__)

PIPELINE_ERROR_KEY = "_pipeline"
RUN_NOT_FOUND = "run_not_found"


@dataclass
class _Drive:
    """Per-drive bookkeeping: the leased envelope and in-flight stage tasks."""

    run: PipelineRun
    envelope: Envelope
    tasks: dict[asyncio.Task[StageResult], str] = field(default_factory=dict)
    last_heartbeat: float = 0.0


class PipelineOrchestrator:
    """Owns report lifecycle: submission, execution, cancellation, status.

    Args:
        runs: Repository over the shared object store.
        queue: Job queue carrying one envelope per report.
        ledger: Cost ledger, consulted at submission.
        analyzer: Executes individual stages.
        registry: Stage definitions of the running DAG version.
        settings: Concurrency caps, timeouts and retry configuration.
        clock: UTC clock used for timestamps and backoff deadlines.
        rng: Random source for backoff jitter.
    """

    def __init__(
        self,
        runs: RunRepository,
        queue: BaseJobQueue,
        ledger: BaseCostLedger,
        analyzer: StageAnalyzer,
        registry: StageRegistry,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utc_now,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self._runs = runs
        self._queue = queue
        self._ledger = ledger
        self._analyzer = analyzer
        self._registry = registry
        self._settings = settings or Settings()
        self._clock = clock
        self._rng = rng
        self._retry = RetryPolicy.from_settings(self._settings)
        self._dependency_map = registry.get_dependency_map()
        self._rank = build_dag(self._dependency_map).rank()

    @property
    def runs(self) -> RunRepository:
        return self._runs

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    async def submit(
        self, report_id: str, manuscript_id: str, options: SubmitOptions
    ) -> StatusRecord:
        """Create a report, seed its queued status and enqueue its envelope.

        Raises:
            DuplicateReport: report_id was already used.
            ManuscriptMissing: The manuscript is not in the object store.
            BudgetExceeded: The user's or the global monthly budget is exhausted.
        """
        if await self._runs.report_exists(report_id):
            raise DuplicateReport(f"Report {report_id} already exists")
        if not await manuscript_exists(self._runs.store, options.user_id, manuscript_id):
            raise ManuscriptMissing(f"Manuscript {manuscript_id} not found")
        for check in (
            await self._ledger.check_user(options.user_id),
            await self._ledger.check_global(),
        ):
            if check.exceeded:
                raise BudgetExceeded(f"{check.scope} monthly budget exhausted")

        stage_ids = self._registry.select_stages(options)
        run = PipelineRun(
            report_id=report_id,
            manuscript_id=manuscript_id,
            user_id=options.user_id,
            options=options,
            dag_version=self._registry.dag_version,
            created_at=self._clock(),
            stage_states=scheduler.initial_stage_states(self._registry, stage_ids),
        )
        run.touch("Queued for analysis")
        status = await self._runs.commit(run)
        await self._queue.enqueue(
            Envelope(report_id=report_id, dag_version=run.dag_version)
        )
        logger.info(
            "Submitted report %s (manuscript=%s, user=%s, %d stages)",
            report_id, manuscript_id, options.user_id, len(stage_ids),
        )
        return status

    async def cancel(self, report_id: str) -> None:
        """Request cancellation. Idempotent; the leasing worker acts on it.

        Raises:
            ReportNotFound: No such report.
        """
        if not await self._runs.report_exists(report_id):
            raise ReportNotFound(f"Report {report_id} not found")
        await self._runs.request_cancel(report_id)
        logger.info("Cancel requested for report %s", report_id)

    async def status(self, report_id: str) -> StatusRecord:
        """Read the status record. No lock is taken.

        Raises:
            ReportNotFound: No status record exists (or it expired).
        """
        status = await self._runs.read_status(report_id)
        if status is None:
            raise ReportNotFound(f"Report {report_id} not found")
        return status

    async def fetch_result(self, report_id: str, stage_id: str) -> bytes:
        """Opaque stage JSON from the object store.

        Raises:
            ResultNotFound: The stage has not produced a result.
        """
        return await self._runs.read_result(report_id, stage_id)

    # ------------------------------------------------------------------
    # Driving a report
    # ------------------------------------------------------------------

    async def drive(self, envelope: Envelope) -> ReportState | None:
        """Advance a leased report until it is terminal.

        Returns:
            The terminal report state, or None when the envelope was
            dead-lettered or the lease was lost (not acked).
        """
        set_report_context(envelope.report_id)
        run = await self._runs.load_run(envelope.report_id)
        if run is None:
            logger.error("No run stored for report %s", envelope.report_id)
            await self._queue.dead_letter(envelope, RUN_NOT_FOUND)
            return None
        if run.is_terminal:
            logger.info("Report %s already %s, acking", run.report_id, run.state)
            await self._queue.ack(envelope)
            return run.state

        drive = _Drive(run=run, envelope=envelope)
        try:
            expected = self._registry.dag_version
            if run.dag_version != expected or envelope.dag_version != expected:
                return await self._fail_version_mismatch(drive)
            return await self._loop(drive)
        except LeaseLost:
            logger.warning(
                "Lease lost for report %s; abandoning without ack", run.report_id
            )
            await self._abandon_tasks(drive)
            return None
        except BaseException:
            # Worker shutdown or backend failure: the envelope stays leased
            # and is redelivered, so no stage task may outlive this drive
            await self._abandon_tasks(drive)
            raise

    async def _loop(self, drive: _Drive) -> ReportState:
        run = drive.run
        recovered = scheduler.recover_interrupted(run)
        if run.state == "queued":
            run.state = "running"
            run.touch("Analysis started")
        elif recovered:
            run.touch("Analysis resumed")
        await self._commit(drive)

        poll = self._settings.cancel_poll_interval_sec
        while True:
            if await self._runs.is_cancel_requested(run.report_id):
                return await self._cancel_run(drive)

            changed = scheduler.promote(run, self._dependency_map)
            if not drive.tasks:
                outcome = scheduler.terminal_state(run)
                if outcome is not None:
                    return await self._finish(drive, outcome)

            batch = scheduler.select_batch(
                run,
                self._rank,
                len(drive.tasks),
                self._settings.per_report_concurrency,
                self._clock(),
            )
            for stage_id in batch:
                self._mark_running(run, stage_id)
            if batch or changed:
                run.advance_progress(scheduler.compute_progress(run))
                await self._commit(drive)
            for stage_id in batch:
                st = run.stage(stage_id)
                task = asyncio.create_task(
                    self._run_stage(run.report_id, stage_id, st.attempt, st.repair_hint)
                )
                drive.tasks[task] = stage_id

            if not drive.tasks:
                await asyncio.sleep(self._backoff_wait(run, poll))
                await self._heartbeat_if_due(drive)
                continue

            done, _ = await asyncio.wait(
                drive.tasks, timeout=poll, return_when=asyncio.FIRST_COMPLETED
            )
            for task in done:
                self._apply_outcome(run, drive.tasks.pop(task), task)
            if done:
                run.advance_progress(scheduler.compute_progress(run))
                await self._commit(drive)
            else:
                await self._heartbeat_if_due(drive)

    async def _run_stage(
        self, report_id: str, stage_id: str, attempt: int, repair_hint: str | None
    ) -> StageResult:
        set_stage_context(stage_id, attempt)
        return await asyncio.wait_for(
            self._analyzer.run(
                report_id,
                stage_id,
                attempt,
                repair_hint=repair_hint,
                is_cancelled=partial(self._runs.is_cancel_requested, report_id),
            ),
            timeout=self._settings.stage_timeout_sec,
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _mark_running(self, run: PipelineRun, stage_id: str) -> None:
        st = run.stage(stage_id)
        if st.resume:
            st.resume = False
        else:
            st.attempt += 1
        st.status = "running"
        st.started_at = self._clock()
        st.not_before = None
        stage = self._registry.get_or_raise(stage_id)
        run.touch(f"{stage.description} (attempt {st.attempt})", current_step=stage_id)
        logger.info("Dispatching %s attempt %d", stage_id, st.attempt)

    def _apply_outcome(
        self, run: PipelineRun, stage_id: str, task: asyncio.Task[StageResult]
    ) -> None:
        exc = task.exception()
        if exc is None:
            self._apply_success(run, stage_id, task.result())
        else:
            self._apply_failure(run, stage_id, exc)

    def _apply_success(self, run: PipelineRun, stage_id: str, result: StageResult) -> None:
        st = run.stage(stage_id)
        st.status = "succeeded"
        st.result_key = result.result_key
        st.finished_at = self._clock()
        st.error_kind = None
        st.repair_hint = None
        run.errors.pop(stage_id, None)
        run.touch(f"{stage_id} complete", current_step=stage_id)
        logger.info(
            "Stage %s succeeded (attempt %d%s)",
            stage_id, st.attempt, ", reused" if result.reused else "",
        )

    def _apply_failure(self, run: PipelineRun, stage_id: str, exc: BaseException) -> None:
        st = run.stage(stage_id)
        kind = classify_error(exc)

        if self._retry.should_retry(kind, st.attempt):
            delay = self._retry.backoff_delay(st.attempt, self._rng)
            st.status = "ready"
            st.not_before = self._clock() + timedelta(seconds=delay)
            run.touch(f"{stage_id} retrying", current_step=stage_id)
            logger.warning(
                "Stage %s attempt %d failed (%s), retrying in %.2fs: %s",
                stage_id, st.attempt, kind, delay, exc,
            )
            return

        if kind == "validation_error" and not st.repair_used:
            st.status = "ready"
            st.repair_used = True
            st.repair_hint = str(exc)
            run.touch(f"{stage_id} retrying with repair prompt", current_step=stage_id)
            logger.warning("Stage %s invalid answer, requesting repair: %s", stage_id, exc)
            return

        st.finished_at = self._clock()
        st.error_kind = kind
        st.repair_hint = None
        run.errors[stage_id] = kind
        if kind == "cancelled":
            st.status = "cancelled"
        elif kind == "budget_exceeded" and not st.is_required:
            st.status = "skipped"
            logger.warning("Optional stage %s skipped: budget exceeded", stage_id)
        else:
            st.status = "failed"
            log = logger.error if st.is_required else logger.warning
            log("Stage %s failed (%s) after attempt %d: %s", stage_id, kind, st.attempt, exc)
        run.touch(friendly_message(kind), current_step=stage_id)

    async def _finish(self, drive: _Drive, outcome: ReportState) -> ReportState:
        run = drive.run
        run.state = outcome
        run.finished_at = self._clock()
        if outcome == "complete":
            run.advance_progress(100.0)
            run.touch("Analysis complete")
        else:
            failed = [sid for sid in run.stages_with("failed") if run.stage(sid).is_required]
            kind = run.errors.get(failed[0], "") if failed else ""
            run.touch(friendly_message(kind) if kind else "Analysis failed")
        await self._runs.commit(run)
        await self._queue.ack(drive.envelope)
        logger.info(
            "Report %s %s: %d succeeded, %d failed, %d skipped",
            run.report_id, outcome,
            len(run.stages_with("succeeded")),
            len(run.stages_with("failed")),
            len(run.stages_with("skipped")),
        )
        return outcome

    async def _cancel_run(self, drive: _Drive) -> ReportState:
        """Stop dispatching, keep finished results, cancel everything else."""
        run = drive.run
        for task, stage_id in list(drive.tasks.items()):
            if task.done() and not task.cancelled() and task.exception() is None:
                self._apply_success(run, stage_id, task.result())
                del drive.tasks[task]
        interrupted = set(drive.tasks.values())
        await self._abandon_tasks(drive)

        now = self._clock()
        for stage_id, st in run.stage_states.items():
            if st.is_terminal:
                continue
            st.status = "cancelled"
            st.finished_at = now
            st.error_kind = "cancelled"
            if stage_id in interrupted:
                run.errors[stage_id] = "cancelled"
        run.state = "cancelled"
        run.finished_at = now
        run.advance_progress(scheduler.compute_progress(run))
        run.touch("Analysis cancelled")
        await self._runs.commit(run)
        await self._queue.ack(drive.envelope)
        logger.info("Report %s cancelled (interrupted: %s)", run.report_id, sorted(interrupted))
        return "cancelled"

    async def _fail_version_mismatch(self, drive: _Drive) -> ReportState:
        run = drive.run
        mismatch: ErrorKind = "dag_version_mismatch"
        logger.error(
            "Report %s built for DAG v%d (envelope v%d), worker runs v%d",
            run.report_id, run.dag_version, drive.envelope.dag_version,
            self._registry.dag_version,
        )
        run.errors[PIPELINE_ERROR_KEY] = mismatch
        run.state = "failed"
        run.finished_at = self._clock()
        run.touch(friendly_message(mismatch))
        await self._runs.commit(run)
        await self._queue.ack(drive.envelope)
        return "failed"

    # ------------------------------------------------------------------
    # Lease and timing helpers
    # ------------------------------------------------------------------

    async def _commit(self, drive: _Drive) -> None:
        await self._runs.commit(drive.run)
        await self._heartbeat(drive)

    async def _heartbeat(self, drive: _Drive) -> None:
        drive.envelope = await self._queue.heartbeat(drive.envelope)
        drive.last_heartbeat = asyncio.get_running_loop().time()

    async def _heartbeat_if_due(self, drive: _Drive) -> None:
        elapsed = asyncio.get_running_loop().time() - drive.last_heartbeat
        if elapsed >= self._settings.heartbeat_interval_sec:
            await self._heartbeat(drive)

    def _backoff_wait(self, run: PipelineRun, poll: float) -> float:
        wake = scheduler.next_wakeup(run)
        if wake is None:
            return poll
        return max(0.0, min(poll, (wake - self._clock()).total_seconds()))

    async def _abandon_tasks(self, drive: _Drive) -> None:
        for task in drive.tasks:
            task.cancel()
        if drive.tasks:
            await asyncio.gather(*drive.tasks, return_exceptions=True)
        drive.tasks.clear()
