# src/manuscript_pipeline/queue/memory_queue.py — v1
"""In-process job queue (QUEUE_BACKEND=memory).

Suitable for tests and single-process deployments. The clock is
injectable so visibility timeouts can be driven deterministically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Callable

from manuscript_pipeline.core.errors import AlreadyLeased, LeaseLost
from manuscript_pipeline.queue.base_queue import MAX_DELIVERIES_EXCEEDED, BaseJobQueue
from manuscript_pipeline.queue.models import DeadLetter, Envelope, QueueStats

logger = logging.getLogger(__name__)


class MemoryJobQueue(BaseJobQueue):
    """Deque-backed queue with per-report leases."""

    def __init__(
        self,
        visibility_timeout_sec: float = 300.0,
        max_deliveries: int = 5,
        poll_interval_sec: float = 0.05,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(visibility_timeout_sec, max_deliveries, poll_interval_sec)
        self._clock = clock
        self._lock = asyncio.Lock()
        self._pending: deque[str] = deque()
        self._envelopes: dict[str, Envelope] = {}
        self._in_flight: dict[str, float] = {}
        # report_id -> envelope_id holding the lease
        self._leases: dict[str, str] = {}
        self._dead: list[DeadLetter] = []

    async def enqueue(self, envelope: Envelope) -> Envelope:
        async with self._lock:
            stored = envelope.model_copy(update={"visibility_deadline": None, "consumer_id": None})
            self._envelopes[stored.envelope_id] = stored
            self._pending.append(stored.envelope_id)
        logger.debug("Enqueued envelope %s for report %s", envelope.envelope_id, envelope.report_id)
        return stored.model_copy()

    def _reap(self) -> None:
        """Return expired in-flight envelopes to the front of the pending list."""
        now = self._clock()
        expired = sorted(
            (eid for eid, deadline in self._in_flight.items() if deadline <= now),
            key=lambda eid: self._envelopes[eid].enqueued_at,
        )
        for envelope_id in reversed(expired):
            del self._in_flight[envelope_id]
            envelope = self._envelopes[envelope_id]
            if self._leases.get(envelope.report_id) == envelope_id:
                del self._leases[envelope.report_id]
            envelope.visibility_deadline = None
            envelope.consumer_id = None
            self._pending.appendleft(envelope_id)
            logger.info(
                "Lease expired for report %s (envelope %s), redelivering",
                envelope.report_id,
                envelope_id,
            )

    def _requeue_report(self, envelope: Envelope) -> None:
        """Send a rejected envelope and its report's later envelopes to the tail."""
        same_report = [
            eid for eid in self._pending
            if self._envelopes[eid].report_id == envelope.report_id
        ]
        for eid in same_report:
            self._pending.remove(eid)
        self._pending.append(envelope.envelope_id)
        self._pending.extend(same_report)

    def _park(self, envelope: Envelope, reason: str) -> None:
        self._envelopes.pop(envelope.envelope_id, None)
        self._in_flight.pop(envelope.envelope_id, None)
        try:
            self._pending.remove(envelope.envelope_id)
        except ValueError:
            pass
        if self._leases.get(envelope.report_id) == envelope.envelope_id:
            del self._leases[envelope.report_id]
        self._dead.append(DeadLetter(envelope=envelope.model_copy(), reason=reason))
        logger.warning(
            "Envelope %s for report %s dead-lettered: %s",
            envelope.envelope_id,
            envelope.report_id,
            reason,
        )

    async def _try_dequeue(self, consumer_id: str) -> Envelope | None:
        async with self._lock:
            self._reap()
            while self._pending:
                envelope_id = self._pending.popleft()
                envelope = self._envelopes[envelope_id]

                holder = self._leases.get(envelope.report_id)
                if holder is not None and holder != envelope_id:
                    self._requeue_report(envelope)
                    raise AlreadyLeased(envelope.report_id)

                envelope.delivery_count += 1
                if self._exhausted(envelope):
                    self._park(envelope, MAX_DELIVERIES_EXCEEDED)
                    continue

                envelope.visibility_deadline = self._clock() + self._visibility_timeout
                envelope.consumer_id = consumer_id
                self._in_flight[envelope_id] = envelope.visibility_deadline
                self._leases[envelope.report_id] = envelope_id
                logger.debug(
                    "Consumer %s leased report %s (delivery %d)",
                    consumer_id,
                    envelope.report_id,
                    envelope.delivery_count,
                )
                return envelope.model_copy()
            return None

    async def heartbeat(self, envelope: Envelope) -> Envelope:
        async with self._lock:
            now = self._clock()
            deadline = self._in_flight.get(envelope.envelope_id)
            if (
                deadline is None
                or deadline <= now
                or self._leases.get(envelope.report_id) != envelope.envelope_id
                or self._envelopes[envelope.envelope_id].delivery_count != envelope.delivery_count
            ):
                raise LeaseLost(f"Lease lost for report {envelope.report_id}")
            new_deadline = now + self._visibility_timeout
            self._in_flight[envelope.envelope_id] = new_deadline
            self._envelopes[envelope.envelope_id].visibility_deadline = new_deadline
            envelope.visibility_deadline = new_deadline
            return envelope

    async def ack(self, envelope: Envelope) -> None:
        async with self._lock:
            self._in_flight.pop(envelope.envelope_id, None)
            if self._envelopes.pop(envelope.envelope_id, None) is None:
                return
            try:
                self._pending.remove(envelope.envelope_id)
            except ValueError:
                pass
            if self._leases.get(envelope.report_id) == envelope.envelope_id:
                del self._leases[envelope.report_id]
        logger.debug("Acked envelope %s for report %s", envelope.envelope_id, envelope.report_id)

    async def dead_letter(self, envelope: Envelope, reason: str) -> None:
        async with self._lock:
            self._park(envelope, reason)

    async def stats(self) -> QueueStats:
        async with self._lock:
            return QueueStats(
                pending=len(self._pending),
                in_flight=len(self._in_flight),
                dead=len(self._dead),
            )

    async def dead_letters(self) -> list[DeadLetter]:
        async with self._lock:
            return [dl.model_copy() for dl in self._dead]

    async def purge(self) -> int:
        async with self._lock:
            count = len(self._pending)
            for envelope_id in self._pending:
                self._envelopes.pop(envelope_id, None)
            self._pending.clear()
        logger.info("Purged %d pending envelopes", count)
        return count
