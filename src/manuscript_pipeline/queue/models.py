# src/manuscript_pipeline/queue/models.py — v1
"""Job queue types: Envelope, DeadLetter, QueueStats."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import Field

from manuscript_pipeline.core.models import CamelModel, utc_now


def new_envelope_id() -> str:
    return uuid.uuid4().hex


class Envelope(CamelModel):
    """One unit of pipeline work: a whole report's worth.

    ``visibility_deadline`` is an epoch timestamp (queue clock) set while
    the envelope is leased; None while it waits in the pending list.
    """

    envelope_id: str = Field(default_factory=new_envelope_id)
    report_id: str
    dag_version: int
    enqueued_at: datetime = Field(default_factory=utc_now)
    visibility_deadline: float | None = None
    delivery_count: int = 0
    consumer_id: str | None = None


class DeadLetter(CamelModel):
    """Envelope parked for operator review."""

    envelope: Envelope
    reason: str
    dead_lettered_at: datetime = Field(default_factory=utc_now)


class QueueStats(CamelModel):
    """Point-in-time queue depth."""

    pending: int = 0
    in_flight: int = 0
    dead: int = 0
