# src/manuscript_pipeline/storage/layout.py — v1
"""Canonical object store keys.

Every component builds keys through these helpers; no other module
formats a storage path by hand.
"""

from __future__ import annotations

MANUSCRIPTS_DIR = "manuscripts"
RUNS_DIR = "runs"
REPORTS_DIR = "reports"
STATUS_DIR = "status"
CANCEL_DIR = "cancel"

_META_SUFFIX = ".meta.json"


def manuscript_key(user_id: str, manuscript_id: str) -> str:
    """Raw (or extracted plain) text of a manuscript."""
    return f"{MANUSCRIPTS_DIR}/{user_id}/{manuscript_id}"


def manuscript_meta_key(user_id: str, manuscript_id: str) -> str:
    """Manuscript metadata (title, genre, word count)."""
    return manuscript_key(user_id, manuscript_id) + _META_SUFFIX


def run_key(report_id: str) -> str:
    """Serialized PipelineRun."""
    return f"{RUNS_DIR}/{report_id}"


def report_prefix(report_id: str) -> str:
    """Prefix holding every stage artifact of a report."""
    return f"{REPORTS_DIR}/{report_id}/"


def result_key(report_id: str, stage_id: str) -> str:
    """Per-stage result JSON."""
    return f"{report_prefix(report_id)}{stage_id}.json"


def status_key(report_id: str) -> str:
    """Poller-facing StatusRecord."""
    return f"{STATUS_DIR}/{report_id}"


def cancel_key(report_id: str) -> str:
    """Cancel marker observed by the leasing worker."""
    return f"{CANCEL_DIR}/{report_id}"
