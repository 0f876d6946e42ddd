# src/manuscript_pipeline/storage/s3_store.py — v1
"""S3-compatible object store (OBJECT_STORE_BACKEND=s3).

Supports AWS S3, MinIO, R2 and other S3-compatible storage.
Requires 'boto3' package: pip install boto3.

The content hash and expiry are kept in object metadata so write-once
checks and TTL reads need only a HEAD request.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

from manuscript_pipeline.core.errors import ObjectNotFound
from manuscript_pipeline.storage.base_object_store import (
    BaseObjectStore,
    content_hash,
    to_bytes,
)

logger = logging.getLogger(__name__)

_HASH_META = "content-sha256"
_EXPIRES_META = "expires-at"
_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


class S3ObjectStore(BaseObjectStore):
    """Store objects in an S3 bucket under a key prefix."""

    def __init__(
        self,
        bucket: str,
        prefix: str = "manuscript-pipeline/",
        region: str | None = None,
        endpoint_url: str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize S3 store.

        Args:
            bucket: S3 bucket name.
            prefix: Key prefix for all objects (e.g. "manuscript-pipeline/").
            region: AWS region (optional, uses boto3 default if not set).
            endpoint_url: Custom endpoint for MinIO/compatible storage.
            clock: Wall-clock source for TTL checks.
        """
        try:
            import boto3
        except ImportError as e:
            raise ImportError(
                "boto3 package required for S3 object store: pip install boto3"
            ) from e

        kwargs: dict[str, Any] = {}
        if region:
            kwargs["region_name"] = region
        if endpoint_url:
            kwargs["endpoint_url"] = endpoint_url

        self._s3 = boto3.client("s3", **kwargs)
        self._bucket = bucket
        self._prefix = prefix.rstrip("/") + "/" if prefix else ""
        self._clock = clock

    def _full_key(self, key: str) -> str:
        """Build the full S3 key from a store key."""
        return f"{self._prefix}{key}"

    def _is_not_found(self, exc: Exception) -> bool:
        response = getattr(exc, "response", None) or {}
        code = str(response.get("Error", {}).get("Code", ""))
        return code in _NOT_FOUND_CODES

    def _head(self, key: str) -> dict[str, str] | None:
        """Return live object metadata, or None when absent or expired."""
        try:
            response = self._s3.head_object(Bucket=self._bucket, Key=self._full_key(key))
        except self._s3.exceptions.ClientError as exc:
            if self._is_not_found(exc):
                return None
            raise
        metadata = response.get("Metadata", {}) or {}
        if self._is_expired(metadata):
            return None
        return metadata

    def _is_expired(self, metadata: dict[str, str]) -> bool:
        expires_at = metadata.get(_EXPIRES_META)
        return expires_at is not None and float(expires_at) <= self._clock()

    async def put(
        self,
        key: str,
        data: bytes | str,
        *,
        ttl_sec: int | None = None,
        overwrite: bool = False,
    ) -> None:
        body = to_bytes(data)
        if not overwrite:
            metadata = self._head(key)
            if metadata is not None:
                existing = metadata.get(_HASH_META) or await self.get(key)
                if self.check_write_once(key, existing, body):
                    return

        object_meta = {_HASH_META: content_hash(body)}
        if ttl_sec:
            object_meta[_EXPIRES_META] = str(self._clock() + ttl_sec)
        self._s3.put_object(
            Bucket=self._bucket,
            Key=self._full_key(key),
            Body=body,
            Metadata=object_meta,
        )
        logger.debug("S3 put: s3://%s/%s (%d bytes)", self._bucket, self._full_key(key), len(body))

    async def get(self, key: str) -> bytes:
        try:
            response = self._s3.get_object(Bucket=self._bucket, Key=self._full_key(key))
        except self._s3.exceptions.ClientError as exc:
            if self._is_not_found(exc):
                raise ObjectNotFound(key) from exc
            raise
        if self._is_expired(response.get("Metadata", {}) or {}):
            raise ObjectNotFound(key)
        return response["Body"].read()

    async def delete(self, prefix: str) -> int:
        full_prefix = self._full_key(prefix)
        count = 0
        token: str | None = None
        while True:
            kwargs: dict[str, Any] = {"Bucket": self._bucket, "Prefix": full_prefix}
            if token:
                kwargs["ContinuationToken"] = token
            response = self._s3.list_objects_v2(**kwargs)
            keys = [{"Key": obj["Key"]} for obj in response.get("Contents", [])]
            if keys:
                self._s3.delete_objects(Bucket=self._bucket, Delete={"Objects": keys})
                count += len(keys)
            if not response.get("IsTruncated"):
                break
            token = response.get("NextContinuationToken")
        logger.debug("S3 delete: %d objects under %s", count, full_prefix)
        return count

    async def remove(self, key: str) -> bool:
        existed = self._head(key) is not None
        self._s3.delete_object(Bucket=self._bucket, Key=self._full_key(key))
        return existed

    async def exists(self, key: str) -> bool:
        return self._head(key) is not None
