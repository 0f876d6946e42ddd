# src/manuscript_pipeline/queue/queue_factory.py — v1
"""Factory for job queue instantiation."""

from __future__ import annotations

from manuscript_pipeline.config.settings import Settings
from manuscript_pipeline.queue.base_queue import BaseJobQueue


def create_job_queue(settings: Settings | None = None) -> BaseJobQueue:
    """Instantiate the configured queue backend.

    Args:
        settings: Application settings. Defaults to the in-memory backend.

    Returns:
        Configured BaseJobQueue implementation.
    """
    settings = settings or Settings()
    backend = settings.queue_backend

    if backend == "memory":
        from manuscript_pipeline.queue.memory_queue import MemoryJobQueue
        return MemoryJobQueue(
            visibility_timeout_sec=settings.visibility_timeout_sec,
            max_deliveries=settings.max_deliveries,
        )

    if backend == "redis":
        from manuscript_pipeline.queue.redis_queue import RedisJobQueue
        if not settings.queue_redis_url:
            raise ValueError("QUEUE_REDIS_URL must be set when QUEUE_BACKEND=redis")
        return RedisJobQueue(
            redis_url=settings.queue_redis_url,
            name=settings.queue_name,
            visibility_timeout_sec=settings.visibility_timeout_sec,
            max_deliveries=settings.max_deliveries,
        )

    raise ValueError(f"Unsupported queue backend: {backend!r}")
