# src/manuscript_pipeline/storage/local_store.py — v1
"""Local filesystem object store (OBJECT_STORE_BACKEND=local).

Each key maps to a file under the root directory. TTLs are kept in a
sidecar file; writes go through a temp file and an atomic rename so a
reader never sees a partial object.
"""

from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import Callable

from manuscript_pipeline.core.errors import ObjectNotFound
from manuscript_pipeline.storage.base_object_store import BaseObjectStore, to_bytes

logger = logging.getLogger(__name__)

_TTL_SUFFIX = ".__expires__"
_TMP_SUFFIX = ".__tmp__"


class LocalObjectStore(BaseObjectStore):
    """Store objects as files under a root directory."""

    def __init__(
        self,
        root: str | Path,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._root = Path(root).expanduser()
        self._root.mkdir(parents=True, exist_ok=True)
        self._clock = clock

    def _resolve(self, key: str) -> Path:
        path = (self._root / key).resolve()
        if self._root.resolve() not in path.parents:
            raise ValueError(f"Key escapes store root: {key!r}")
        return path

    def _expired(self, path: Path) -> bool:
        ttl_path = path.with_name(path.name + _TTL_SUFFIX)
        if not ttl_path.exists():
            return False
        return float(ttl_path.read_text(encoding="utf-8")) <= self._clock()

    def _read_live(self, path: Path) -> bytes | None:
        if not path.is_file():
            return None
        if self._expired(path):
            self._remove(path)
            return None
        return path.read_bytes()

    @staticmethod
    def _remove(path: Path) -> None:
        path.unlink(missing_ok=True)
        path.with_name(path.name + _TTL_SUFFIX).unlink(missing_ok=True)

    @staticmethod
    def _atomic_write(path: Path, body: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + _TMP_SUFFIX)
        tmp.write_bytes(body)
        os.replace(tmp, path)

    async def put(
        self,
        key: str,
        data: bytes | str,
        *,
        ttl_sec: int | None = None,
        overwrite: bool = False,
    ) -> None:
        path = self._resolve(key)
        body = to_bytes(data)
        if not overwrite:
            existing = self._read_live(path)
            if existing is not None and self.check_write_once(key, existing, body):
                return

        self._atomic_write(path, body)
        ttl_path = path.with_name(path.name + _TTL_SUFFIX)
        if ttl_sec:
            self._atomic_write(ttl_path, str(self._clock() + ttl_sec).encode("utf-8"))
        else:
            ttl_path.unlink(missing_ok=True)
        logger.debug("Local put: %s (%d bytes)", key, len(body))

    async def get(self, key: str) -> bytes:
        data = self._read_live(self._resolve(key))
        if data is None:
            raise ObjectNotFound(key)
        return data

    async def delete(self, prefix: str) -> int:
        count = 0
        for path in sorted(self._root.rglob("*")):
            if not path.is_file() or path.name.endswith((_TTL_SUFFIX, _TMP_SUFFIX)):
                continue
            key = path.relative_to(self._root).as_posix()
            if key.startswith(prefix):
                self._remove(path)
                count += 1
        return count

    async def remove(self, key: str) -> bool:
        path = self._resolve(key)
        existed = path.is_file()
        self._remove(path)
        return existed

    async def exists(self, key: str) -> bool:
        return self._read_live(self._resolve(key)) is not None
