"""Tests for the digest-addressed content store."""

from __future__ import annotations

import os
import tempfile
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from WasmPkg.PackageManager.errors import (
    CorruptError,
    IntegrityError,
    NotFoundError,
    Stage,
    StorageError,
    UsageError,
)
from WasmPkg.PackageManager.oci import compute_digest
from WasmPkg.PackageManager.storage.content_store import ContentStore
from WasmPkg.PackageManager.storage.layout import TEMP_SUFFIX, blob_path, digest_from_path


class TestLayout:
    """Blob path fan-out."""

    def test_blob_path_fans_out_by_prefix(self, tmp_path: Path) -> None:
        """sha256 digests land under alg/aa/rest."""
        digest = compute_digest(b"hello")
        hex_part = digest.split(":", 1)[1]
        path = blob_path(tmp_path, digest)
        assert path == tmp_path / "sha256" / hex_part[:2] / hex_part[2:]
        assert digest_from_path(tmp_path, path) == digest

    def test_blob_path_rejects_malformed_digest(self, tmp_path: Path) -> None:
        """Traversal-looking digests are refused."""
        with pytest.raises(ValueError):
            blob_path(tmp_path, "sha256:../../etc/passwd")


class TestPutGet:
    """Writes and reads."""

    def test_put_then_get_returns_bytes(self, store: ContentStore) -> None:
        """A stored payload comes back unchanged."""
        digest = store.put(b"component bytes")
        assert digest == compute_digest(b"component bytes")
        assert store.get(digest) == b"component bytes"
        assert store.exists(digest)

    def test_put_twice_stores_one_copy(self, store: ContentStore) -> None:
        """Storing the same payload again is a no-op."""
        first = store.put(b"same")
        second = store.put(b"same")
        assert first == second
        assert store.list_digests() == [first]
        assert store.usage() == (1, 4)

    def test_empty_payload(self, store: ContentStore) -> None:
        """Zero-byte blobs are valid content."""
        digest = store.put(b"")
        assert store.get(digest) == b""
        assert store.size(digest) == 0

    def test_put_verified_rejects_mismatch(self, store: ContentStore) -> None:
        """Bytes that do not hash to the declared digest are never written."""
        declared = compute_digest(b"expected")
        with pytest.raises(IntegrityError) as excinfo:
            store.put_verified(b"tampered", declared)
        assert excinfo.value.stage == Stage.VERIFY
        assert not store.exists(declared)
        assert store.list_digests() == []

    def test_put_verified_rejects_bad_digest_syntax(self, store: ContentStore) -> None:
        """A malformed expected digest is a usage error."""
        with pytest.raises(UsageError):
            store.put_verified(b"x", "md5:abc")

    def test_get_missing_raises_not_found(self, store: ContentStore) -> None:
        """Unknown digests raise NotFoundError."""
        with pytest.raises(NotFoundError):
            store.get(compute_digest(b"never stored"))

    def test_get_detects_corruption(self, store: ContentStore) -> None:
        """Bytes changed on disk are reported as corrupt."""
        digest = store.put(b"original")
        store.path_for(digest).write_bytes(b"bit rot")
        with pytest.raises(CorruptError) as excinfo:
            store.get(digest)
        assert excinfo.value.details["digest"] == digest
        assert store.verify_all() == [digest]

    def test_exists_is_false_for_invalid_digest(self, store: ContentStore) -> None:
        assert store.exists("not-a-digest") is False

    def test_partial_files_are_not_listed(self, store: ContentStore) -> None:
        """Interrupted writes leave nothing visible."""
        digest = store.put(b"visible")
        parent = store.path_for(digest).parent
        with tempfile.NamedTemporaryFile(dir=parent, suffix=".partial", delete=False) as handle:
            handle.write(b"half")
        assert store.list_digests() == [digest]

    @pytest.mark.property
    @settings(max_examples=40, suppress_health_check=[HealthCheck.function_scoped_fixture])
    @given(payload=st.binary(max_size=4096))
    def test_put_get_roundtrip_property(self, store: ContentStore, payload: bytes) -> None:
        """For any payload, get(put(P)) == P and a second put adds nothing."""
        digest = store.put(payload)
        assert store.get(digest) == payload
        before = store.usage()[0]
        store.put(payload)
        assert store.usage()[0] == before


class TestIndex:
    """Secondary SQLite index."""

    def test_index_repairs_from_filesystem(self, store: ContentStore, tmp_path: Path) -> None:
        """The filesystem wins over the index in both directions."""
        kept = store.put(b"kept")
        dropped = store.put(b"dropped")
        store.path_for(dropped).unlink()
        orphan = compute_digest(b"written behind the index's back")
        path = blob_path(store.root, orphan, create_parent=True)
        path.write_bytes(b"written behind the index's back")

        repairs = store.sync_index()

        assert repairs == 2
        assert store.list_digests() == sorted([kept, orphan])

    def test_reopen_keeps_content(self, tmp_path: Path) -> None:
        first = ContentStore(tmp_path / "blobs")
        digest = first.put(b"durable")
        first.close()
        second = ContentStore(tmp_path / "blobs")
        try:
            assert second.get(digest) == b"durable"
        finally:
            second.close()


class TestRemoveUnreferenced:
    """Cleanup of unreferenced blobs."""

    def test_removes_only_unreferenced(self, store: ContentStore) -> None:
        live = store.put(b"live")
        dead = store.put(b"dead")
        result = store.remove_unreferenced({live})
        assert result.removed == [dead]
        assert result.bytes_freed == 4
        assert store.exists(live)
        assert not store.exists(dead)

    def test_dry_run_deletes_nothing(self, store: ContentStore) -> None:
        dead = store.put(b"dead")
        result = store.remove_unreferenced(set(), dry_run=True)
        assert result.dry_run is True
        assert result.count == 1
        assert store.exists(dead)

    def test_keeps_blobs_newer_than_snapshot(self, store: ContentStore) -> None:
        """A blob written after the live set was captured survives cleanup."""
        old = store.put(b"old")
        past = time.time() - 60
        os.utime(store.path_for(old), (past, past))
        snapshot = time.time() - 30
        fresh = store.put(b"in flight")

        result = store.remove_unreferenced(set(), snapshot_time=snapshot)

        assert result.removed == [old]
        assert store.exists(fresh)

    def test_cleanup_inside_held_lock(self, store: ContentStore) -> None:
        """The lock holder's own thread may clean while holding it."""
        dead = store.put(b"dead")
        with store.gc_lock():
            assert store.remove_unreferenced(set()).removed == [dead]

    def test_cleanup_waits_for_lock_holder(self, tmp_path: Path) -> None:
        """Nothing is removed while another thread holds the cleanup lock."""
        store = ContentStore(tmp_path / "blobs", lock_timeout=0.2)
        try:
            dead = store.put(b"dead")
            with ThreadPoolExecutor(max_workers=1) as pool:
                with store.gc_lock():
                    future = pool.submit(store.remove_unreferenced, set())
                    with pytest.raises(StorageError) as excinfo:
                        future.result()
            assert excinfo.value.details["operation"] == "remove_unreferenced"
            assert store.exists(dead)
            assert store.remove_unreferenced(set()).removed == [dead]
        finally:
            store.close()


class TestConcurrentWrites:
    """Several writers storing the same payload."""

    def test_parallel_puts_store_one_copy(self, store: ContentStore) -> None:
        payload = b"shared layer " * 4096
        with ThreadPoolExecutor(max_workers=8) as pool:
            digests = list(pool.map(lambda _: store.put(payload), range(32)))

        assert set(digests) == {compute_digest(payload)}
        assert store.get(digests[0]) == payload
        assert store.list_digests() == [digests[0]]
        assert store.usage() == (1, len(payload))
        assert not [p for p in store.root.rglob("*") if p.name.endswith(TEMP_SUFFIX)]

    def test_parallel_verified_puts_of_distinct_payloads(self, store: ContentStore) -> None:
        payloads = [f"layer-{i}".encode() for i in range(16)]
        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(lambda data: store.put_verified(data, compute_digest(data)), payloads * 2))
        assert sorted(store.list_digests()) == sorted(compute_digest(p) for p in payloads)
