# src/manuscript_pipeline/pipeline/worker.py — v1
"""Queue consumer that drives leased reports through the orchestrator."""

from __future__ import annotations

import asyncio
import logging
import os
import socket
import uuid

from manuscript_pipeline.config.settings import Settings
from manuscript_pipeline.core.errors import AlreadyLeased
from manuscript_pipeline.core.models import ReportState
from manuscript_pipeline.logging.context import set_worker_context
from manuscript_pipeline.pipeline.orchestrator import PipelineOrchestrator
from manuscript_pipeline.queue.base_queue import BaseJobQueue

logger = logging.getLogger(__name__)

# Pause after a lease conflict before polling again
LEASE_CONFLICT_BACKOFF_SEC = 0.1


def default_consumer_id() -> str:
    """host:pid:suffix, unique per worker instance."""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:6]}"


class PipelineWorker:
    """Poll the job queue and drive up to N reports concurrently.

    Args:
        orchestrator: Drives one leased report to a terminal state.
        queue: Source of envelopes.
        settings: Poll timeout and per-worker report concurrency.
        consumer_id: Lease owner identity (generated if omitted).
    """

    def __init__(
        self,
        orchestrator: PipelineOrchestrator,
        queue: BaseJobQueue,
        settings: Settings | None = None,
        consumer_id: str | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._queue = queue
        self._settings = settings or Settings()
        self.consumer_id = consumer_id or default_consumer_id()
        self._slots = asyncio.Semaphore(self._settings.worker_report_concurrency)
        self._active: set[asyncio.Task[ReportState | None]] = set()
        self._stopping = asyncio.Event()
        self.reports_driven = 0

    async def run_once(self, timeout: float = 0.0) -> ReportState | None:
        """Dequeue one envelope and drive it to completion.

        Returns:
            The report's terminal state, or None when nothing was driven
            (empty queue, report leased elsewhere, lost lease).
        """
        set_worker_context(self.consumer_id)
        try:
            envelope = await self._queue.dequeue(self.consumer_id, timeout=timeout)
        except AlreadyLeased as exc:
            logger.debug("Report %s leased by another consumer", exc.report_id)
            return None
        if envelope is None:
            return None
        logger.info(
            "Leased report %s (delivery %d)", envelope.report_id, envelope.delivery_count
        )
        state = await self._orchestrator.drive(envelope)
        self.reports_driven += 1
        return state

    async def run(self) -> None:
        """Poll until stop() is called, then wait for in-flight reports."""
        set_worker_context(self.consumer_id)
        logger.info(
            "Worker %s started (max %d reports)",
            self.consumer_id, self._settings.worker_report_concurrency,
        )
        while not self._stopping.is_set():
            await self._slots.acquire()
            if self._stopping.is_set():
                self._slots.release()
                break
            try:
                envelope = await self._queue.dequeue(
                    self.consumer_id, timeout=self._settings.dequeue_timeout_sec
                )
            except AlreadyLeased as exc:
                logger.debug("Report %s leased by another consumer", exc.report_id)
                envelope = None
                await asyncio.sleep(LEASE_CONFLICT_BACKOFF_SEC)
            except Exception:
                self._slots.release()
                raise
            if envelope is None:
                self._slots.release()
                continue
            task = asyncio.create_task(self._orchestrator.drive(envelope))
            self._active.add(task)
            task.add_done_callback(self._on_done)

        if self._active:
            logger.info("Worker %s draining %d report(s)", self.consumer_id, len(self._active))
            await asyncio.gather(*self._active, return_exceptions=True)
        logger.info("Worker %s stopped after %d report(s)", self.consumer_id, self.reports_driven)

    def stop(self) -> None:
        """Stop polling; reports already leased run to completion."""
        self._stopping.set()

    def _on_done(self, task: asyncio.Task[ReportState | None]) -> None:
        self._active.discard(task)
        self._slots.release()
        self.reports_driven += 1
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Driving a report crashed; its envelope will be redelivered",
                exc_info=task.exception(),
            )
