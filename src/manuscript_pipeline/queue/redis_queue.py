# src/manuscript_pipeline/queue/redis_queue.py — v1
"""Redis-based job queue (QUEUE_BACKEND=redis).

Requires 'redis' package: pip install redis.
Suitable for a fleet of workers on separate hosts.

Key layout (``{name}`` = QUEUE_NAME):
    {name}:pending         list of envelope ids (FIFO)
    {name}:envelopes       hash envelope id -> envelope JSON
    {name}:inflight        sorted set envelope id -> visibility deadline
    {name}:lease:{report}  envelope id holding the report lease (SET NX PX)
    {name}:dead            list of dead-letter JSON records
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from manuscript_pipeline.core.errors import AlreadyLeased, LeaseLost
from manuscript_pipeline.queue.base_queue import MAX_DELIVERIES_EXCEEDED, BaseJobQueue
from manuscript_pipeline.queue.models import DeadLetter, Envelope, QueueStats

logger = logging.getLogger(__name__)


class RedisJobQueue(BaseJobQueue):
    """Redis-backed queue for distributed workers."""

    def __init__(
        self,
        redis_url: str,
        name: str = "manuscript-pipeline",
        visibility_timeout_sec: float = 300.0,
        max_deliveries: int = 5,
        poll_interval_sec: float = 0.25,
        clock: Callable[[], float] = time.time,
    ) -> None:
        try:
            import redis
        except ImportError as e:
            raise ImportError(
                "redis package required for Redis job queue: pip install redis"
            ) from e

        super().__init__(visibility_timeout_sec, max_deliveries, poll_interval_sec)
        self._client = redis.Redis.from_url(redis_url, decode_responses=True)
        self._name = name
        self._clock = clock

    # --- Keys ---

    @property
    def _pending_key(self) -> str:
        return f"{self._name}:pending"

    @property
    def _envelopes_key(self) -> str:
        return f"{self._name}:envelopes"

    @property
    def _inflight_key(self) -> str:
        return f"{self._name}:inflight"

    @property
    def _dead_key(self) -> str:
        return f"{self._name}:dead"

    def _lease_key(self, report_id: str) -> str:
        return f"{self._name}:lease:{report_id}"

    @property
    def _lease_ms(self) -> int:
        return int(self._visibility_timeout * 1000)

    # --- Helpers ---

    def _load(self, envelope_id: str) -> Envelope | None:
        data = self._client.hget(self._envelopes_key, envelope_id)
        if data is None:
            return None
        return Envelope.model_validate_json(data)

    def _save(self, envelope: Envelope) -> None:
        self._client.hset(
            self._envelopes_key,
            envelope.envelope_id,
            envelope.model_dump_json(by_alias=True),
        )

    def _release(self, envelope: Envelope) -> None:
        lease_key = self._lease_key(envelope.report_id)
        if self._client.get(lease_key) == envelope.envelope_id:
            self._client.delete(lease_key)

    def _reap(self) -> None:
        expired = self._client.zrangebyscore(self._inflight_key, "-inf", self._clock())
        for envelope_id in reversed(list(expired)):
            if not self._client.zrem(self._inflight_key, envelope_id):
                continue  # another consumer reaped it first
            envelope = self._load(envelope_id)
            if envelope is None:
                continue
            self._release(envelope)
            envelope.visibility_deadline = None
            envelope.consumer_id = None
            self._save(envelope)
            self._client.lpush(self._pending_key, envelope_id)
            logger.info(
                "Lease expired for report %s (envelope %s), redelivering",
                envelope.report_id,
                envelope_id,
            )

    def _requeue_report(self, envelope: Envelope) -> None:
        """Send a rejected envelope and its report's later envelopes to the tail."""
        pending = list(self._client.lrange(self._pending_key, 0, -1))
        same_report: list[str] = []
        if pending:
            for envelope_id, data in zip(
                pending, self._client.hmget(self._envelopes_key, pending)
            ):
                if data and Envelope.model_validate_json(data).report_id == envelope.report_id:
                    same_report.append(envelope_id)
        for envelope_id in same_report:
            self._client.lrem(self._pending_key, 1, envelope_id)
        self._client.rpush(self._pending_key, envelope.envelope_id, *same_report)

    def _park(self, envelope: Envelope, reason: str) -> None:
        self._client.zrem(self._inflight_key, envelope.envelope_id)
        self._client.lrem(self._pending_key, 0, envelope.envelope_id)
        self._client.hdel(self._envelopes_key, envelope.envelope_id)
        self._release(envelope)
        record = DeadLetter(envelope=envelope, reason=reason)
        self._client.rpush(self._dead_key, record.model_dump_json(by_alias=True))
        logger.warning(
            "Envelope %s for report %s dead-lettered: %s",
            envelope.envelope_id,
            envelope.report_id,
            reason,
        )

    # --- Contract ---

    async def enqueue(self, envelope: Envelope) -> Envelope:
        stored = envelope.model_copy(update={"visibility_deadline": None, "consumer_id": None})
        self._save(stored)
        self._client.rpush(self._pending_key, stored.envelope_id)
        logger.debug("Enqueued envelope %s for report %s", stored.envelope_id, stored.report_id)
        return stored

    async def _try_dequeue(self, consumer_id: str) -> Envelope | None:
        self._reap()
        while True:
            envelope_id = self._client.lpop(self._pending_key)
            if envelope_id is None:
                return None
            envelope = self._load(envelope_id)
            if envelope is None:
                continue  # acked or purged while pending

            lease_key = self._lease_key(envelope.report_id)
            acquired = self._client.set(lease_key, envelope_id, nx=True, px=self._lease_ms)
            if not acquired and self._client.get(lease_key) != envelope_id:
                self._requeue_report(envelope)
                raise AlreadyLeased(envelope.report_id)

            envelope.delivery_count += 1
            if self._exhausted(envelope):
                self._park(envelope, MAX_DELIVERIES_EXCEEDED)
                continue

            envelope.visibility_deadline = self._clock() + self._visibility_timeout
            envelope.consumer_id = consumer_id
            self._save(envelope)
            self._client.zadd(self._inflight_key, {envelope_id: envelope.visibility_deadline})
            logger.debug(
                "Consumer %s leased report %s (delivery %d)",
                consumer_id,
                envelope.report_id,
                envelope.delivery_count,
            )
            return envelope

    async def heartbeat(self, envelope: Envelope) -> Envelope:
        now = self._clock()
        deadline = self._client.zscore(self._inflight_key, envelope.envelope_id)
        lease_key = self._lease_key(envelope.report_id)
        stored = self._load(envelope.envelope_id)
        if (
            deadline is None
            or float(deadline) <= now
            or self._client.get(lease_key) != envelope.envelope_id
            or stored is None
            or stored.delivery_count != envelope.delivery_count
        ):
            raise LeaseLost(f"Lease lost for report {envelope.report_id}")
        new_deadline = now + self._visibility_timeout
        self._client.set(lease_key, envelope.envelope_id, xx=True, px=self._lease_ms)
        self._client.zadd(self._inflight_key, {envelope.envelope_id: new_deadline})
        envelope.visibility_deadline = new_deadline
        self._save(envelope)
        return envelope

    async def ack(self, envelope: Envelope) -> None:
        self._client.zrem(self._inflight_key, envelope.envelope_id)
        self._client.lrem(self._pending_key, 0, envelope.envelope_id)
        self._client.hdel(self._envelopes_key, envelope.envelope_id)
        self._release(envelope)
        logger.debug("Acked envelope %s for report %s", envelope.envelope_id, envelope.report_id)

    async def dead_letter(self, envelope: Envelope, reason: str) -> None:
        self._park(envelope, reason)

    async def stats(self) -> QueueStats:
        return QueueStats(
            pending=int(self._client.llen(self._pending_key)),
            in_flight=int(self._client.zcard(self._inflight_key)),
            dead=int(self._client.llen(self._dead_key)),
        )

    async def dead_letters(self) -> list[DeadLetter]:
        return [
            DeadLetter.model_validate_json(data)
            for data in self._client.lrange(self._dead_key, 0, -1)
        ]

    async def purge(self) -> int:
        pending = list(self._client.lrange(self._pending_key, 0, -1))
        if pending:
            self._client.hdel(self._envelopes_key, *pending)
        self._client.delete(self._pending_key)
        logger.info("Purged %d pending envelopes", len(pending))
        return len(pending)

    def close(self) -> None:
        """Close the Redis connection."""
        self._client.close()
