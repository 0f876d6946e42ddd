# tests/unit/queue/test_unit_job_queues.py — v1
"""Tests for queue backends — memory (fake clock) and Redis (in-process fake client)."""

from __future__ import annotations

import asyncio
from unittest.mock import patch

import pytest

from manuscript_pipeline.core.errors import AlreadyLeased, LeaseLost
from manuscript_pipeline.queue.base_queue import MAX_DELIVERIES_EXCEEDED
from manuscript_pipeline.queue.memory_queue import MemoryJobQueue
from manuscript_pipeline.queue.models import Envelope
from manuscript_pipeline.queue.queue_factory import create_job_queue


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class _FakeRedis:
    """The subset of redis-py commands used by RedisJobQueue."""

    def __init__(self) -> None:
        self.strings: dict[str, str] = {}
        self.hashes: dict[str, dict[str, str]] = {}
        self.lists: dict[str, list[str]] = {}
        self.zsets: dict[str, dict[str, float]] = {}

    # strings
    def get(self, key):
        return self.strings.get(key)

    def set(self, key, value, nx=False, xx=False, px=None):
        if nx and key in self.strings:
            return None
        if xx and key not in self.strings:
            return None
        self.strings[key] = value
        return True

    def delete(self, *keys):
        removed = 0
        for key in keys:
            for space in (self.strings, self.hashes, self.lists, self.zsets):
                if space.pop(key, None) is not None:
                    removed += 1
        return removed

    # hashes
    def hget(self, key, field):
        return self.hashes.get(key, {}).get(field)

    def hset(self, key, field, value):
        self.hashes.setdefault(key, {})[field] = value

    def hmget(self, key, fields):
        return [self.hashes.get(key, {}).get(f) for f in fields]

    def hdel(self, key, *fields):
        return sum(self.hashes.get(key, {}).pop(f, None) is not None for f in fields)

    # lists
    def lpush(self, key, *values):
        for value in values:
            self.lists.setdefault(key, []).insert(0, value)

    def rpush(self, key, *values):
        self.lists.setdefault(key, []).extend(values)

    def lpop(self, key):
        items = self.lists.get(key)
        return items.pop(0) if items else None

    def lrange(self, key, start, end):
        items = self.lists.get(key, [])
        return list(items[start:] if end == -1 else items[start:end + 1])

    def lrem(self, key, count, value):
        items = self.lists.get(key, [])
        removed = 0
        while value in items and (count == 0 or removed < count):
            items.remove(value)
            removed += 1
        return removed

    def llen(self, key):
        return len(self.lists.get(key, []))

    # sorted sets
    def zadd(self, key, mapping):
        self.zsets.setdefault(key, {}).update(mapping)

    def zrem(self, key, member):
        return int(self.zsets.get(key, {}).pop(member, None) is not None)

    def zscore(self, key, member):
        return self.zsets.get(key, {}).get(member)

    def zcard(self, key):
        return len(self.zsets.get(key, {}))

    def zrangebyscore(self, key, low, high):
        members = self.zsets.get(key, {})
        return [m for m, s in sorted(members.items(), key=lambda kv: kv[1]) if s <= high]

    def close(self):
        pass


def _redis_queue(clock, **kwargs):
    from manuscript_pipeline.queue.redis_queue import RedisJobQueue
    from manuscript_pipeline.queue.base_queue import BaseJobQueue

    with patch("manuscript_pipeline.queue.redis_queue.RedisJobQueue.__init__", return_value=None):
        queue = RedisJobQueue.__new__(RedisJobQueue)
    BaseJobQueue.__init__(
        queue,
        kwargs.get("visibility_timeout_sec", 30.0),
        kwargs.get("max_deliveries", 5),
        0.01,
    )
    queue._client = _FakeRedis()
    queue._name = "test"
    queue._clock = clock
    return queue


@pytest.fixture(params=["memory", "redis"])
def make_queue(request):
    def _make(**kwargs):
        clock = FakeClock()
        if request.param == "memory":
            queue = MemoryJobQueue(
                visibility_timeout_sec=kwargs.get("visibility_timeout_sec", 30.0),
                max_deliveries=kwargs.get("max_deliveries", 5),
                poll_interval_sec=0.01,
                clock=clock,
            )
        else:
            queue = _redis_queue(clock, **kwargs)
        return queue, clock

    return _make


def _env(report_id: str) -> Envelope:
    return Envelope(report_id=report_id, dag_version=1)


class TestDelivery:
    @pytest.mark.asyncio
    async def test_fifo_and_lease_fields(self, make_queue):
        queue, clock = make_queue()
        first = await queue.enqueue(_env("r1"))
        await queue.enqueue(_env("r2"))

        leased = await queue.dequeue("c1")
        assert leased.envelope_id == first.envelope_id
        assert leased.delivery_count == 1
        assert leased.consumer_id == "c1"
        assert leased.visibility_deadline == clock.now + 30.0
        assert (await queue.dequeue("c1")).report_id == "r2"

    @pytest.mark.asyncio
    async def test_empty_queue_returns_none(self, make_queue):
        queue, _ = make_queue()
        assert await queue.dequeue("c1") is None

    @pytest.mark.asyncio
    async def test_dequeue_waits_for_enqueue(self, make_queue):
        queue, _ = make_queue()

        async def late_enqueue() -> None:
            await asyncio.sleep(0.02)
            await queue.enqueue(_env("r1"))

        producer = asyncio.create_task(late_enqueue())
        leased = await queue.dequeue("c1", timeout=2.0)
        await producer
        assert leased is not None and leased.report_id == "r1"

    @pytest.mark.asyncio
    async def test_ack_is_idempotent(self, make_queue):
        queue, _ = make_queue()
        await queue.enqueue(_env("r1"))
        leased = await queue.dequeue("c1")
        await queue.ack(leased)
        await queue.ack(leased)
        stats = await queue.stats()
        assert (stats.pending, stats.in_flight, stats.dead) == (0, 0, 0)


class TestLeases:
    @pytest.mark.asyncio
    async def test_heartbeat_extends_deadline(self, make_queue):
        queue, clock = make_queue()
        await queue.enqueue(_env("r1"))
        leased = await queue.dequeue("c1")
        clock.now += 20
        renewed = await queue.heartbeat(leased)
        assert renewed.visibility_deadline == clock.now + 30.0
        clock.now += 20
        await queue.heartbeat(renewed)

    @pytest.mark.asyncio
    async def test_expired_lease_is_redelivered_first(self, make_queue):
        queue, clock = make_queue()
        await queue.enqueue(_env("r1"))
        await queue.enqueue(_env("r2"))
        stale = await queue.dequeue("c1")

        clock.now += 31
        again = await queue.dequeue("c2")
        assert again.envelope_id == stale.envelope_id
        assert again.delivery_count == 2
        assert again.consumer_id == "c2"
        with pytest.raises(LeaseLost):
            await queue.heartbeat(stale)

    @pytest.mark.asyncio
    async def test_heartbeat_after_expiry_raises(self, make_queue):
        queue, clock = make_queue()
        await queue.enqueue(_env("r1"))
        leased = await queue.dequeue("c1")
        clock.now += 31
        with pytest.raises(LeaseLost):
            await queue.heartbeat(leased)

    @pytest.mark.asyncio
    async def test_report_leased_once(self, make_queue):
        queue, _ = make_queue()
        await queue.enqueue(_env("r1"))
        await queue.enqueue(_env("r1"))
        await queue.enqueue(_env("r2"))

        holder = await queue.dequeue("c1")
        with pytest.raises(AlreadyLeased) as info:
            await queue.dequeue("c2")
        assert info.value.report_id == "r1"
        # The rejected envelope moved behind other reports
        assert (await queue.dequeue("c2")).report_id == "r2"

        await queue.ack(holder)
        follow_up = await queue.dequeue("c2")
        assert follow_up.report_id == "r1"
        assert follow_up.envelope_id != holder.envelope_id


class TestDeadLetters:
    @pytest.mark.asyncio
    async def test_max_deliveries(self, make_queue):
        queue, clock = make_queue(max_deliveries=2)
        await queue.enqueue(_env("r1"))
        await queue.dequeue("c1")
        clock.now += 31
        await queue.dequeue("c1")
        clock.now += 31
        assert await queue.dequeue("c1") is None

        dead = await queue.dead_letters()
        assert [d.reason for d in dead] == [MAX_DELIVERIES_EXCEEDED]
        assert dead[0].envelope.delivery_count == 3
        assert (await queue.stats()).dead == 1

    @pytest.mark.asyncio
    async def test_explicit_dead_letter_releases_lease(self, make_queue):
        queue, _ = make_queue()
        await queue.enqueue(_env("r1"))
        await queue.enqueue(_env("r1"))
        leased = await queue.dequeue("c1")
        await queue.dead_letter(leased, "run_not_found")

        assert (await queue.dequeue("c2")).report_id == "r1"
        assert [d.reason for d in await queue.dead_letters()] == ["run_not_found"]


class TestAdmin:
    @pytest.mark.asyncio
    async def test_stats_and_purge(self, make_queue):
        queue, _ = make_queue()
        for report in ("r1", "r2", "r3"):
            await queue.enqueue(_env(report))
        await queue.dequeue("c1")
        stats = await queue.stats()
        assert (stats.pending, stats.in_flight) == (2, 1)
        assert await queue.purge() == 2
        assert await queue.dequeue("c1") is None


class TestRedisJobQueue:
    def test_import_error_without_redis(self):
        """Clear ImportError when redis is not available."""
        import sys
        redis_mod = sys.modules.get("redis")
        sys.modules["redis"] = None  # type: ignore[assignment]
        try:
            from manuscript_pipeline.queue.redis_queue import RedisJobQueue
            with pytest.raises(ImportError, match="redis"):
                RedisJobQueue(redis_url="redis://localhost")
        finally:
            if redis_mod is not None:
                sys.modules["redis"] = redis_mod
            else:
                sys.modules.pop("redis", None)

    @pytest.mark.asyncio
    async def test_key_layout(self):
        queue = _redis_queue(FakeClock())
        envelope = await queue.enqueue(_env("r1"))
        await queue.dequeue("c1")
        client = queue._client
        assert client.strings["test:lease:r1"] == envelope.envelope_id
        assert envelope.envelope_id in client.zsets["test:inflight"]
        assert envelope.envelope_id in client.hashes["test:envelopes"]


class TestQueueFactory:
    def test_memory(self, settings):
        assert isinstance(create_job_queue(settings), MemoryJobQueue)

    def test_redis(self, make_settings):
        settings = make_settings(queue_backend="redis", queue_redis_url="redis://q:6379/0")
        with patch(
            "manuscript_pipeline.queue.redis_queue.RedisJobQueue.__init__", return_value=None
        ) as init:
            create_job_queue(settings)
        init.assert_called_once_with(
            redis_url="redis://q:6379/0",
            name="manuscript-pipeline",
            visibility_timeout_sec=30.0,
            max_deliveries=5,
        )
