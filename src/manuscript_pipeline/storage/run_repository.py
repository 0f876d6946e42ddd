# src/manuscript_pipeline/storage/run_repository.py — v1
"""Typed access to report state kept in the object store.

commit() is the only code path that writes a status record: it saves
the PipelineRun first and then overwrites ``status/{reportId}``, so a
poller never sees progress ahead of the committed run.
"""

from __future__ import annotations

import logging

from manuscript_pipeline.core.errors import ResultNotFound
from manuscript_pipeline.core.models import StatusRecord, utc_now
from manuscript_pipeline.pipeline.state import PipelineRun
from manuscript_pipeline.storage import layout
from manuscript_pipeline.storage.base_object_store import BaseObjectStore

logger = logging.getLogger(__name__)


class RunRepository:
    """Load and commit PipelineRun snapshots, status records and markers."""

    def __init__(self, store: BaseObjectStore, status_ttl_sec: int = 604_800) -> None:
        self._store = store
        self._status_ttl_sec = status_ttl_sec

    @property
    def store(self) -> BaseObjectStore:
        return self._store

    # --- Runs ---

    async def load_run(self, report_id: str) -> PipelineRun | None:
        data = await self._store.get_optional(layout.run_key(report_id))
        if data is None:
            return None
        return PipelineRun.model_validate_json(data)

    async def save_run(self, run: PipelineRun) -> None:
        await self._store.put(layout.run_key(run.report_id), run.to_json_bytes(), overwrite=True)

    async def report_exists(self, report_id: str) -> bool:
        return await self._store.exists(layout.run_key(report_id)) or await self._store.exists(
            layout.status_key(report_id)
        )

    # --- Status ---

    async def read_status(self, report_id: str) -> StatusRecord | None:
        data = await self._store.get_optional(layout.status_key(report_id))
        if data is None:
            return None
        return StatusRecord.model_validate_json(data)

    async def commit(self, run: PipelineRun) -> StatusRecord:
        """Persist the run, then project and write its status record."""
        await self.save_run(run)
        status = run.to_status()
        await self._store.put(
            layout.status_key(run.report_id),
            status.to_json_bytes(),
            ttl_sec=self._status_ttl_sec if status.is_terminal else None,
            overwrite=True,
        )
        logger.debug(
            "Committed report %s: state=%s progress=%d step=%s",
            run.report_id, status.state, status.progress, status.current_step,
        )
        return status

    # --- Cancellation ---

    async def request_cancel(self, report_id: str) -> None:
        await self._store.put(
            layout.cancel_key(report_id), utc_now().isoformat(), overwrite=True
        )

    async def is_cancel_requested(self, report_id: str) -> bool:
        return await self._store.exists(layout.cancel_key(report_id))

    # --- Results ---

    async def read_result(self, report_id: str, stage_id: str) -> bytes:
        data = await self._store.get_optional(layout.result_key(report_id, stage_id))
        if data is None:
            raise ResultNotFound(f"No result for {report_id}/{stage_id}")
        return data

    async def delete_report(self, report_id: str) -> int:
        """Delete a report and every artifact it owns.

        Cost events are owned by the user account and are not touched.
        """
        removed = await self._store.delete(layout.report_prefix(report_id))
        for key in (
            layout.run_key(report_id),
            layout.status_key(report_id),
            layout.cancel_key(report_id),
        ):
            removed += int(await self._store.remove(key))
        logger.info("Deleted report %s (%d objects)", report_id, removed)
        return removed
