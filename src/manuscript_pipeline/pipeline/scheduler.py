# src/manuscript_pipeline/pipeline/scheduler.py — v1
"""Scheduling decisions over a PipelineRun.

Pure functions: they read and mutate the run in memory and never touch
storage, the queue or the clock. The orchestrator commits whatever they
change.
"""

from __future__ import annotations

import logging
from datetime import datetime

from manuscript_pipeline.config.stages import PROGRESS_WEIGHTS
from manuscript_pipeline.core.models import ReportState
from manuscript_pipeline.pipeline.registry import StageRegistry
from manuscript_pipeline.pipeline.state import PipelineRun, StageState

logger = logging.getLogger(__name__)


def initial_stage_states(registry: StageRegistry, stage_ids: list[str]) -> dict[str, StageState]:
    """Fresh ``pending`` states for the stages selected into a run."""
    return {
        sid: StageState(stage_id=sid, criticality=registry.get_or_raise(sid).criticality)
        for sid in sorted(stage_ids)
    }


def recover_interrupted(run: PipelineRun) -> list[str]:
    """Return stages left ``running`` by a crashed worker to ``ready``.

    The attempt number is kept so the re-dispatch reuses the same
    idempotency key and result key.
    """
    recovered = run.stages_with("running")
    for stage_id in recovered:
        st = run.stage(stage_id)
        st.status = "ready"
        st.resume = True
    if recovered:
        logger.info("Report %s: resuming interrupted stages %s", run.report_id, recovered)
    return recovered


def promote(run: PipelineRun, dependency_map: dict[str, list[str]]) -> list[str]:
    """Move pending stages to ready or skipped based on their parents.

    A stage becomes ready once every parent succeeded, and is skipped as
    soon as any parent ended without success. Skips cascade within one
    call.

    Returns:
        Stage ids whose status changed.
    """
    changed: list[str] = []
    progressed = True
    while progressed:
        progressed = False
        for stage_id in run.stages_with("pending"):
            parents = [run.stage_states[p] for p in dependency_map.get(stage_id, [])]
            if any(p.is_terminal and p.status != "succeeded" for p in parents):
                run.stage(stage_id).status = "skipped"
            elif all(p.status == "succeeded" for p in parents):
                run.stage(stage_id).status = "ready"
            else:
                continue
            changed.append(stage_id)
            progressed = True
    return changed


def dispatch_order(run: PipelineRun, rank: dict[str, int]) -> list[str]:
    """Ready stages, required first, then by topological rank."""
    return sorted(
        run.stages_with("ready"),
        key=lambda sid: (not run.stage(sid).is_required, rank.get(sid, len(rank)), sid),
    )


def select_batch(
    run: PipelineRun,
    rank: dict[str, int],
    in_flight: int,
    cap: int,
    now: datetime,
) -> list[str]:
    """Next stages to dispatch without exceeding the per-report cap.

    Stages still waiting out a retry backoff are not eligible.
    """
    free = cap - in_flight
    if free <= 0:
        return []
    eligible = [
        sid
        for sid in dispatch_order(run, rank)
        if run.stage(sid).not_before is None or run.stage(sid).not_before <= now
    ]
    return eligible[:free]


def next_wakeup(run: PipelineRun) -> datetime | None:
    """Earliest backoff deadline among ready stages, if any."""
    times = [
        run.stage(sid).not_before
        for sid in run.stages_with("ready")
        if run.stage(sid).not_before is not None
    ]
    return min(times) if times else None  # type: ignore[type-var]


def compute_progress(run: PipelineRun, weights: dict[str, float] | None = None) -> float:
    """Weighted share of finished stages against the full DAG.

    Stages not selected into the run still count in the denominator, so
    a run without assets tops out at the analysis share until completion.
    """
    weights = PROGRESS_WEIGHTS if weights is None else weights
    total = sum(weights.values())
    if total <= 0:
        return 0.0
    done = sum(
        weights.get(sid, 0.0) for sid, st in run.stage_states.items() if st.is_terminal
    )
    return 100.0 * done / total


def terminal_state(run: PipelineRun) -> ReportState | None:
    """Decide the report outcome once no stage can make progress.

    Returns None while any stage is ready, running or still pending.
    """
    if run.stages_with("pending", "ready", "running"):
        return None
    required = [st for st in run.stage_states.values() if st.is_required]
    if all(st.status == "succeeded" for st in required):
        return "complete"
    return "failed"
