# src/manuscript_pipeline/storage/memory_store.py — v1
"""In-process object store (OBJECT_STORE_BACKEND=memory).

Single-process only; used by tests and local experiments.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from manuscript_pipeline.core.errors import ObjectNotFound
from manuscript_pipeline.storage.base_object_store import BaseObjectStore, to_bytes

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    data: bytes
    expires_at: float | None = None


class MemoryObjectStore(BaseObjectStore):
    """Dict-backed object store with TTL support.

    Args:
        clock: Wall-clock source in epoch seconds (injectable for TTL tests).
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._objects: dict[str, _Entry] = {}
        self._clock = clock

    def _live(self, key: str) -> _Entry | None:
        entry = self._objects.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self._clock():
            del self._objects[key]
            return None
        return entry

    async def put(
        self,
        key: str,
        data: bytes | str,
        *,
        ttl_sec: int | None = None,
        overwrite: bool = False,
    ) -> None:
        body = to_bytes(data)
        existing = self._live(key)
        if existing is not None and not overwrite:
            if self.check_write_once(key, existing.data, body):
                return
        expires_at = self._clock() + ttl_sec if ttl_sec else None
        self._objects[key] = _Entry(data=body, expires_at=expires_at)

    async def get(self, key: str) -> bytes:
        entry = self._live(key)
        if entry is None:
            raise ObjectNotFound(key)
        return entry.data

    async def delete(self, prefix: str) -> int:
        doomed = [k for k in self._objects if k.startswith(prefix)]
        for key in doomed:
            del self._objects[key]
        logger.debug("Deleted %d objects under %r", len(doomed), prefix)
        return len(doomed)

    async def remove(self, key: str) -> bool:
        return self._objects.pop(key, None) is not None

    async def exists(self, key: str) -> bool:
        return self._live(key) is not None

    def keys(self, prefix: str = "") -> list[str]:
        """Sorted live keys under prefix (test and debugging helper)."""
        return sorted(k for k in list(self._objects) if k.startswith(prefix) and self._live(k))
