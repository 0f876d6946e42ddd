# tests/unit/storage/test_unit_object_stores.py — v1
"""Tests for storage backends — memory, local filesystem, S3 (mocked boto3)."""

from __future__ import annotations

import io
from unittest.mock import patch

import pytest

from manuscript_pipeline.core.errors import ObjectConflict, ObjectNotFound
from manuscript_pipeline.storage.base_object_store import BaseObjectStore, content_hash
from manuscript_pipeline.storage.local_store import LocalObjectStore
from manuscript_pipeline.storage.memory_store import MemoryObjectStore


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


# =====================================================================
#  Fake boto3 client
# =====================================================================


class _ClientError(Exception):
    def __init__(self, code: str) -> None:
        super().__init__(code)
        self.response = {"Error": {"Code": code}}


class _FakeS3:
    class exceptions:
        ClientError = _ClientError

    def __init__(self) -> None:
        self.objects: dict[str, tuple[bytes, dict[str, str]]] = {}
        self.puts = 0

    def head_object(self, Bucket, Key):
        if Key not in self.objects:
            raise _ClientError("404")
        return {"Metadata": dict(self.objects[Key][1])}

    def get_object(self, Bucket, Key):
        if Key not in self.objects:
            raise _ClientError("NoSuchKey")
        body, meta = self.objects[Key]
        return {"Body": io.BytesIO(body), "Metadata": dict(meta)}

    def put_object(self, Bucket, Key, Body, Metadata):
        self.puts += 1
        self.objects[Key] = (Body, dict(Metadata))

    def list_objects_v2(self, Bucket, Prefix, ContinuationToken=None):
        keys = sorted(k for k in self.objects if k.startswith(Prefix))
        return {"Contents": [{"Key": k} for k in keys], "IsTruncated": False}

    def delete_objects(self, Bucket, Delete):
        for obj in Delete["Objects"]:
            self.objects.pop(obj["Key"], None)

    def delete_object(self, Bucket, Key):
        self.objects.pop(Key, None)


def _s3_store(clock=None):
    from manuscript_pipeline.storage.s3_store import S3ObjectStore

    with patch("manuscript_pipeline.storage.s3_store.S3ObjectStore.__init__", return_value=None):
        store = S3ObjectStore.__new__(S3ObjectStore)
    store._s3 = _FakeS3()
    store._bucket = "bucket"
    store._prefix = "mp/"
    store._clock = clock or FakeClock()
    return store


# =====================================================================
#  Shared contract, run against every backend
# =====================================================================


@pytest.fixture(params=["memory", "local", "s3"])
def clock_and_store(request, tmp_path):
    clock = FakeClock()
    if request.param == "memory":
        return clock, MemoryObjectStore(clock=clock)
    if request.param == "local":
        return clock, LocalObjectStore(tmp_path / "objects", clock=clock)
    return clock, _s3_store(clock)


class TestObjectStoreContract:
    @pytest.mark.asyncio
    async def test_put_get(self, clock_and_store):
        _, store = clock_and_store
        await store.put("reports/r1/developmental.json", b'{"a": 1}')
        assert await store.get("reports/r1/developmental.json") == b'{"a": 1}'

    @pytest.mark.asyncio
    async def test_str_is_stored_as_utf8(self, clock_and_store):
        _, store = clock_and_store
        await store.put("k", "café")
        assert await store.get("k") == "café".encode("utf-8")

    @pytest.mark.asyncio
    async def test_get_missing_raises(self, clock_and_store):
        _, store = clock_and_store
        with pytest.raises(ObjectNotFound):
            await store.get("nope")
        assert await store.get_optional("nope") is None

    @pytest.mark.asyncio
    async def test_identical_rewrite_is_noop(self, clock_and_store):
        _, store = clock_and_store
        await store.put("k", b"same")
        await store.put("k", b"same")
        assert await store.get("k") == b"same"

    @pytest.mark.asyncio
    async def test_different_rewrite_conflicts(self, clock_and_store):
        _, store = clock_and_store
        await store.put("k", b"first")
        with pytest.raises(ObjectConflict):
            await store.put("k", b"second")
        assert await store.get("k") == b"first"

    @pytest.mark.asyncio
    async def test_overwrite_replaces(self, clock_and_store):
        _, store = clock_and_store
        await store.put("status/r1", b"queued")
        await store.put("status/r1", b"running", overwrite=True)
        assert await store.get("status/r1") == b"running"

    @pytest.mark.asyncio
    async def test_ttl_expiry(self, clock_and_store):
        clock, store = clock_and_store
        await store.put("status/r1", b"done", ttl_sec=60)
        clock.now += 59
        assert await store.exists("status/r1")
        clock.now += 2
        assert not await store.exists("status/r1")
        with pytest.raises(ObjectNotFound):
            await store.get("status/r1")

    @pytest.mark.asyncio
    async def test_expired_key_can_be_rewritten(self, clock_and_store):
        clock, store = clock_and_store
        await store.put("k", b"old", ttl_sec=1)
        clock.now += 5
        await store.put("k", b"new")
        assert await store.get("k") == b"new"

    @pytest.mark.asyncio
    async def test_delete_prefix(self, clock_and_store):
        _, store = clock_and_store
        await store.put("reports/r1/a.json", b"1")
        await store.put("reports/r1/b.json", b"2")
        await store.put("reports/r2/a.json", b"3")
        assert await store.delete("reports/r1/") == 2
        assert not await store.exists("reports/r1/a.json")
        assert await store.exists("reports/r2/a.json")

    @pytest.mark.asyncio
    async def test_remove_single_key(self, clock_and_store):
        _, store = clock_and_store
        await store.put("cancel/r1", b"x")
        assert await store.remove("cancel/r1") is True
        assert await store.remove("cancel/r1") is False


class TestWriteOnceCheck:
    def test_identical_bytes(self):
        assert BaseObjectStore.check_write_once("k", b"abc", b"abc") is True

    def test_precomputed_hash(self):
        assert BaseObjectStore.check_write_once("k", content_hash(b"abc"), b"abc") is True

    def test_conflict_names_key(self):
        with pytest.raises(ObjectConflict, match="runs/r1"):
            BaseObjectStore.check_write_once("runs/r1", b"abc", b"xyz")


class TestLocalObjectStore:
    def test_key_cannot_escape_root(self, tmp_path):
        store = LocalObjectStore(tmp_path / "objects")
        with pytest.raises(ValueError, match="escapes"):
            store._resolve("../outside")

    @pytest.mark.asyncio
    async def test_no_temp_files_left(self, tmp_path):
        store = LocalObjectStore(tmp_path / "objects")
        await store.put("reports/r1/x.json", b"{}", ttl_sec=10)
        names = [p.name for p in (tmp_path / "objects").rglob("*") if p.is_file()]
        assert not [n for n in names if n.endswith(".__tmp__")]

    @pytest.mark.asyncio
    async def test_sidecar_not_listed_by_delete(self, tmp_path):
        store = LocalObjectStore(tmp_path / "objects")
        await store.put("status/r1", b"s", ttl_sec=100)
        assert await store.delete("status/") == 1


class TestS3ObjectStore:
    def test_import_error_without_boto3(self):
        """Clear ImportError when boto3 is not available."""
        import sys
        boto_mod = sys.modules.get("boto3")
        sys.modules["boto3"] = None  # type: ignore[assignment]
        try:
            from manuscript_pipeline.storage.s3_store import S3ObjectStore
            with pytest.raises(ImportError, match="boto3"):
                S3ObjectStore(bucket="b")
        finally:
            if boto_mod is not None:
                sys.modules["boto3"] = boto_mod
            else:
                sys.modules.pop("boto3", None)

    @pytest.mark.asyncio
    async def test_keys_are_prefixed(self):
        store = _s3_store()
        await store.put("runs/r1", b"{}")
        assert "mp/runs/r1" in store._s3.objects

    @pytest.mark.asyncio
    async def test_write_once_uses_stored_hash(self):
        store = _s3_store()
        await store.put("k", b"v")
        await store.put("k", b"v")
        assert store._s3.puts == 1
        assert store._s3.objects["mp/k"][1]["content-sha256"] == content_hash(b"v")

    @pytest.mark.asyncio
    async def test_other_client_errors_propagate(self):
        store = _s3_store()

        def boom(**kwargs):
            raise _ClientError("AccessDenied")

        store._s3.head_object = boom
        with pytest.raises(_ClientError):
            await store.exists("k")
