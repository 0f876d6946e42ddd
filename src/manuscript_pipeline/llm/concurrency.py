# src/manuscript_pipeline/llm/concurrency.py — v1
"""Global cap on simultaneous LLM calls.

Within a worker an asyncio.Semaphore bounds in-flight calls. A
pyrate-limiter bucket additionally limits calls per minute: kept in
Redis when a URL is configured so every worker draws from the same
bucket, in memory otherwise. The provider's own rate limit stays the
final authority.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from pyrate_limiter import Duration, InMemoryBucket, Limiter, Rate, RedisBucket

from manuscript_pipeline.config.settings import Settings

logger = logging.getLogger(__name__)

_BUCKET_KEY = "manuscript-pipeline:llm-bucket"
_ITEM_NAME = "llm-call"


class LLMConcurrencyLimiter:
    """Semaphore plus optional per-minute rate bucket.

    Args:
        max_concurrency: Simultaneous calls allowed in this process.
        redis_url: Shared bucket location; empty keeps the bucket in memory.
        per_minute: Calls allowed per minute; 0 disables the bucket.
        retry_interval_sec: Pause between attempts while the bucket is full.
    """

    def __init__(
        self,
        max_concurrency: int = 16,
        redis_url: str = "",
        per_minute: int = 0,
        retry_interval_sec: float = 0.5,
    ) -> None:
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._max = max_concurrency
        self._in_use = 0
        self._per_minute = per_minute
        self._redis_url = redis_url
        self._retry_interval = retry_interval_sec
        self._limiter: Limiter | None = None
        self._init_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> LLMConcurrencyLimiter:
        return cls(
            max_concurrency=settings.global_llm_concurrency,
            redis_url=settings.llm_rate_limit_redis_url,
            per_minute=settings.llm_rate_limit_per_minute,
        )

    @property
    def in_use(self) -> int:
        """Calls currently holding a slot in this process."""
        return self._in_use

    @property
    def capacity(self) -> int:
        return self._max

    @property
    def rate_limited(self) -> bool:
        return self._per_minute > 0

    async def _rate_limiter(self) -> Limiter:
        async with self._init_lock:
            if self._limiter is None:
                rates = [Rate(self._per_minute, Duration.MINUTE)]
                if self._redis_url:
                    try:
                        from redis import asyncio as aioredis
                    except ImportError as e:
                        raise ImportError(
                            "redis package required for the shared LLM bucket: pip install redis"
                        ) from e
                    client = aioredis.Redis.from_url(self._redis_url)
                    bucket = await RedisBucket.init(rates, client, _BUCKET_KEY)
                    logger.info(
                        "LLM rate bucket in Redis: %d calls/minute", self._per_minute
                    )
                else:
                    bucket = InMemoryBucket(rates)
                self._limiter = Limiter(bucket, raise_when_fail=False)
            return self._limiter

    async def _take_token(self) -> None:
        """Wait until the rate bucket accepts one more call."""
        if not self.rate_limited:
            return
        limiter = await self._rate_limiter()
        while True:
            acquired = limiter.try_acquire(_ITEM_NAME)
            if inspect.isawaitable(acquired):
                acquired = await acquired
            if acquired:
                return
            logger.debug(
                "LLM rate bucket full (%d/minute), retrying in %.2fs",
                self._per_minute, self._retry_interval,
            )
            await asyncio.sleep(self._retry_interval)

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        """Hold one LLM call slot for the duration of the block."""
        async with self._semaphore:
            await self._take_token()
            self._in_use += 1
            try:
                yield
            finally:
                self._in_use -= 1
