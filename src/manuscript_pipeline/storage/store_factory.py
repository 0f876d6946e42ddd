# src/manuscript_pipeline/storage/store_factory.py — v1
"""Factory: instantiate the object store from configuration."""

from __future__ import annotations

from manuscript_pipeline.config.settings import Settings
from manuscript_pipeline.storage.base_object_store import BaseObjectStore
from manuscript_pipeline.storage.local_store import LocalObjectStore
from manuscript_pipeline.storage.memory_store import MemoryObjectStore


def create_object_store(settings: Settings) -> BaseObjectStore:
    """Create the object store selected by OBJECT_STORE_BACKEND.

    Raises:
        ValueError: If the backend is not supported or misconfigured.
    """
    backend = settings.object_store_backend

    if backend == "memory":
        return MemoryObjectStore()

    if backend == "local":
        return LocalObjectStore(settings.object_store_root)

    if backend == "s3":
        from manuscript_pipeline.storage.s3_store import S3ObjectStore

        if not settings.object_store_s3_bucket:
            raise ValueError(
                "OBJECT_STORE_S3_BUCKET must be set when OBJECT_STORE_BACKEND=s3"
            )
        return S3ObjectStore(
            bucket=settings.object_store_s3_bucket,
            prefix=settings.object_store_s3_prefix,
            region=settings.object_store_s3_region or None,
            endpoint_url=settings.object_store_s3_endpoint or None,
        )

    raise ValueError(f"Unsupported object store backend: {backend!r}")
