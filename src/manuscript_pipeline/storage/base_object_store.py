# src/manuscript_pipeline/storage/base_object_store.py — v1
"""Abstract object store interface.

Keys are opaque strings. Every key is write-once: repeating a write with
the same bytes is a no-op, a write with different bytes raises
ObjectConflict unless the caller passes ``overwrite=True`` (reserved for
status records, run snapshots and cancel markers).
"""

from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod

from manuscript_pipeline.core.errors import ObjectConflict, ObjectNotFound


def content_hash(data: bytes) -> str:
    """SHA-256 hex digest used for write-once comparisons."""
    return hashlib.sha256(data).hexdigest()


def to_bytes(data: bytes | str) -> bytes:
    return data.encode("utf-8") if isinstance(data, str) else data


class BaseObjectStore(ABC):
    """Unified interface for object storage backends."""

    @abstractmethod
    async def put(
        self,
        key: str,
        data: bytes | str,
        *,
        ttl_sec: int | None = None,
        overwrite: bool = False,
    ) -> None:
        """Store bytes under key, honouring write-once semantics."""

    @abstractmethod
    async def get(self, key: str) -> bytes:
        """Read bytes; raise ObjectNotFound if missing or expired."""

    @abstractmethod
    async def delete(self, prefix: str) -> int:
        """Delete every key starting with prefix. Returns the count removed."""

    @abstractmethod
    async def remove(self, key: str) -> bool:
        """Delete exactly one key. Returns False if it was absent."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Check whether a live object is stored under key."""

    async def get_optional(self, key: str) -> bytes | None:
        """Read bytes, or None when the key is absent."""
        try:
            return await self.get(key)
        except ObjectNotFound:
            return None

    @staticmethod
    def check_write_once(key: str, existing: bytes | str, new: bytes) -> bool:
        """Compare an existing object with a new write.

        Existing may be the stored bytes or their precomputed hash.

        Returns:
            True when the write is an idempotent repeat (caller skips it).

        Raises:
            ObjectConflict: If the bytes differ.
        """
        existing_hash = existing if isinstance(existing, str) else content_hash(existing)
        if existing_hash == content_hash(new):
            return True
        raise ObjectConflict(f"Key {key!r} already holds different content")
