# src/manuscript_pipeline/pipeline/dag_builder.py — v1
"""DAG builder — topological plan of the stage graph.

Produces levels of stages with no mutual dependencies. The scheduler
uses the flat order as its dispatch tie-break; detecting cycles here
keeps a bad stage table from ever reaching a worker.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


class DAGError(Exception):
    """The dependency map has a cycle or names an unregistered stage."""


@dataclass
class ExecutionPlan:
    """Ordered stage levels. Stages in one level may run concurrently."""

    levels: list[list[str]] = field(default_factory=list)
    total_stages: int = 0

    @property
    def flat_order(self) -> list[str]:
        """Flat topological ordering."""
        return [stage for level in self.levels for stage in level]

    def rank(self) -> dict[str, int]:
        """stage_id -> position in flat_order."""
        return {stage: i for i, stage in enumerate(self.flat_order)}


def build_dag(dependency_map: dict[str, list[str]]) -> ExecutionPlan:
    """Build an execution plan with Kahn's algorithm and level detection.

    Args:
        dependency_map: stage_id -> list of dependency stage ids.

    Raises:
        DAGError: If a cycle is detected or a dependency is missing.
    """
    if not dependency_map:
        return ExecutionPlan()

    all_stages = set(dependency_map)
    for stage, deps in dependency_map.items():
        for dep in deps:
            if dep not in all_stages:
                raise DAGError(f"Stage '{stage}' depends on '{dep}' which is not registered")

    in_degree: dict[str, int] = {s: 0 for s in all_stages}
    dependents: dict[str, list[str]] = {s: [] for s in all_stages}
    for stage, deps in dependency_map.items():
        for dep in deps:
            dependents[dep].append(stage)
            in_degree[stage] += 1

    levels: list[list[str]] = []
    queue = sorted(s for s, d in in_degree.items() if d == 0)
    processed = 0
    while queue:
        levels.append(queue)
        next_queue: list[str] = []
        for stage in queue:
            processed += 1
            for dependent in dependents[stage]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    next_queue.append(dependent)
        queue = sorted(next_queue)

    if processed != len(all_stages):
        remaining = sorted(s for s in all_stages if in_degree[s] > 0)
        raise DAGError(f"Cycle detected involving stages: {remaining}")

    plan = ExecutionPlan(levels=levels, total_stages=processed)
    logger.debug("DAG built: %d stages in %d levels", plan.total_stages, len(plan.levels))
    return plan


def ancestors(dependency_map: dict[str, list[str]], stage_id: str) -> set[str]:
    """All transitive dependencies of a stage."""
    seen: set[str] = set()
    stack = list(dependency_map.get(stage_id, []))
    while stack:
        dep = stack.pop()
        if dep not in seen:
            seen.add(dep)
            stack.extend(dependency_map.get(dep, []))
    return seen
