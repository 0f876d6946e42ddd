# src/manuscript_pipeline/queue/base_queue.py — v1
"""Abstract job queue interface.

Delivery is at-least-once. A dequeued envelope is leased for the
visibility timeout; the lease also covers its report, so at most one
consumer advances a given report at a time. An envelope whose lease
expires becomes visible again at the front of the queue.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod

from manuscript_pipeline.queue.models import DeadLetter, Envelope, QueueStats

# Reason recorded when an envelope runs out of deliveries
MAX_DELIVERIES_EXCEEDED = "max_deliveries_exceeded"


class BaseJobQueue(ABC):
    """Durable FIFO-per-report delivery of pipeline envelopes.

    Args:
        visibility_timeout_sec: Lease duration granted by dequeue/heartbeat.
        max_deliveries: Deliveries allowed before the envelope is dead-lettered.
        poll_interval_sec: Sleep between empty polls while dequeue waits.
    """

    def __init__(
        self,
        visibility_timeout_sec: float = 300.0,
        max_deliveries: int = 5,
        poll_interval_sec: float = 0.05,
    ) -> None:
        self._visibility_timeout = visibility_timeout_sec
        self._max_deliveries = max_deliveries
        self._poll_interval = poll_interval_sec

    @abstractmethod
    async def enqueue(self, envelope: Envelope) -> Envelope:
        """Durably append an envelope. Returns after the write is acknowledged."""

    async def dequeue(self, consumer_id: str, timeout: float = 0.0) -> Envelope | None:
        """Lease the next envelope, waiting up to ``timeout`` seconds.

        Returns:
            The leased envelope, or None if the queue stayed empty.

        Raises:
            AlreadyLeased: The next envelope's report is leased by another
                envelope. The rejected envelope goes back to the pending list.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(0.0, timeout)
        while True:
            envelope = await self._try_dequeue(consumer_id)
            if envelope is not None:
                return envelope
            remaining = deadline - loop.time()
            if remaining <= 0:
                return None
            await asyncio.sleep(min(self._poll_interval, remaining))

    @abstractmethod
    async def _try_dequeue(self, consumer_id: str) -> Envelope | None:
        """Single non-blocking dequeue attempt."""

    @abstractmethod
    async def heartbeat(self, envelope: Envelope) -> Envelope:
        """Extend the lease by the visibility timeout.

        Raises:
            LeaseLost: The lease expired or belongs to another envelope.
        """

    @abstractmethod
    async def ack(self, envelope: Envelope) -> None:
        """Remove the envelope and release its report lease. Idempotent."""

    @abstractmethod
    async def dead_letter(self, envelope: Envelope, reason: str) -> None:
        """Move the envelope to the dead-letter sink and release its lease."""

    @abstractmethod
    async def stats(self) -> QueueStats:
        """Pending, in-flight and dead-lettered counts."""

    @abstractmethod
    async def dead_letters(self) -> list[DeadLetter]:
        """Dead-lettered envelopes, oldest first."""

    @abstractmethod
    async def purge(self) -> int:
        """Drop all pending envelopes. Returns the number removed."""

    def _exhausted(self, envelope: Envelope) -> bool:
        return envelope.delivery_count > self._max_deliveries
