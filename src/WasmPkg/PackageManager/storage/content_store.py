# === NAVMAP v1 ===
# {
#   "module": "WasmPkg.PackageManager.storage.content_store",
#   "purpose": "Digest-addressed blob store with a secondary SQLite index and locked garbage collection",
#   "sections": [
#     {"id": "gcresult", "name": "GcResult", "anchor": "class-gcresult", "kind": "class"},
#     {"id": "contentstore", "name": "ContentStore", "anchor": "class-contentstore", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Content-addressable blob storage.

Responsibilities
----------------
- Store opaque payloads under ``<root>/<algorithm>/<2 hex>/<rest>`` keyed by
  their own digest, so identical payloads are stored exactly once.
- Verify payloads on read (:class:`~WasmPkg.PackageManager.errors.CorruptError`)
  and, when the caller supplies an expected digest, on write
  (:class:`~WasmPkg.PackageManager.errors.IntegrityError`).
- Keep a secondary index (``index.db3``) of digest, size and creation time for
  cheap existence and usage queries.  The blob file is authoritative; whenever
  the index disagrees with the filesystem it is repaired on the spot.
- Remove blobs outside a caller supplied live set while holding a
  :mod:`filelock` lock so only one cleanup runs at a time across processes.

Design Notes
------------
- Writes go to a temporary file beside the destination and are moved into
  place with :func:`os.replace`.  Concurrent writers of the same digest race
  harmlessly: the bytes are identical, the last rename wins.
- A cleanup never deletes a blob written after its ``snapshot_time``.  Callers
  take the time before reading the live set from the catalog, so a blob stored
  by an in-flight pull that has not yet committed its catalog rows survives.
- :meth:`ContentStore.gc_lock` is the same lock cleanup holds.  A cleanup reads
  its live set while holding it, and a pull re-checks the blobs it decided to
  reuse and commits its catalog rows while holding it, so a blob is never
  removed between a pull's existence check and its commit.
"""

from __future__ import annotations

import contextlib
import logging
import os
import sqlite3
import tempfile
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Set, Tuple

from filelock import FileLock, Timeout

from ..errors import CorruptError, NotFoundError, Stage, StorageError, UsageError
from ..oci import DEFAULT_ALGORITHM, compute_digest, parse_digest, verify_digest
from .layout import (
    GC_LOCK_FILENAME,
    INDEX_FILENAME,
    TEMP_SUFFIX,
    blob_path,
    digest_from_path,
    iter_blob_files,
)

logger = logging.getLogger(__name__)

_INDEX_SCHEMA = """
CREATE TABLE IF NOT EXISTS blobs (
    digest TEXT PRIMARY KEY,
    size INTEGER NOT NULL,
    created_at TEXT NOT NULL
)
"""


@dataclass
class GcResult:
    """Outcome of a cleanup pass."""

    removed: List[str] = field(default_factory=list)
    bytes_freed: int = 0
    dry_run: bool = False

    @property
    def count(self) -> int:
        return len(self.removed)


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class ContentStore:
    """Immutable, deduplicated blob storage keyed by digest."""

    def __init__(self, root: Path, *, lock_timeout: float = 30.0) -> None:
        """Open (creating if needed) the store rooted at ``root``.

        Args:
            root: Blob directory, usually ``<data_dir>/blobs``.
            lock_timeout: Seconds to wait for the cleanup lock.

        Raises:
            StorageError: If the directory or index cannot be created.
        """
        self.root = Path(root)
        self.index_path = self.root / INDEX_FILENAME
        self.lock_timeout = lock_timeout
        self._lock = threading.RLock()
        # Re-entrant within the acquiring thread; other threads and processes wait.
        self._gc_filelock = FileLock(
            str(self.root / GC_LOCK_FILENAME), timeout=lock_timeout, thread_local=True
        )
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(
                str(self.index_path), check_same_thread=False, timeout=30.0
            )
            self.conn.execute("PRAGMA journal_mode=WAL")
            self.conn.execute("PRAGMA synchronous=NORMAL")
            self.conn.execute(_INDEX_SCHEMA)
            self.conn.commit()
        except (OSError, sqlite3.Error) as exc:
            raise StorageError(
                f"Failed to open content store at {self.root}: {exc}",
                path=str(self.index_path),
                operation="open",
                stage=Stage.STORE,
            ) from exc
        logger.debug(f"Content store opened at {self.root}")

    # ------------------------------------------------------------------
    # Paths and index bookkeeping
    # ------------------------------------------------------------------

    def path_for(self, digest: str) -> Path:
        """Filesystem location of ``digest`` (which need not exist)."""
        try:
            return blob_path(self.root, digest)
        except ValueError as exc:
            raise UsageError(str(exc), stage=Stage.STORE) from exc

    def _index_execute(self, operation: str, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        with self._lock:
            try:
                cursor = self.conn.execute(sql, params)
                self.conn.commit()
                return cursor
            except sqlite3.Error as exc:
                raise StorageError(
                    f"Content index {operation} failed: {exc}",
                    path=str(self.index_path),
                    operation=operation,
                    stage=Stage.STORE,
                ) from exc

    def _index_record(self, digest: str, size: int) -> None:
        self._index_execute(
            "record",
            "INSERT OR IGNORE INTO blobs (digest, size, created_at) VALUES (?, ?, ?)",
            (digest, size, _utcnow()),
        )

    def _index_forget(self, digest: str) -> None:
        self._index_execute("forget", "DELETE FROM blobs WHERE digest = ?", (digest,))

    def _index_has(self, digest: str) -> bool:
        with self._lock:
            try:
                row = self.conn.execute(
                    "SELECT 1 FROM blobs WHERE digest = ?", (digest,)
                ).fetchone()
            except sqlite3.Error as exc:
                raise StorageError(
                    f"Content index lookup failed: {exc}",
                    path=str(self.index_path),
                    operation="lookup",
                    stage=Stage.STORE,
                ) from exc
        return row is not None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def put(self, data: bytes) -> str:
        """Store ``data`` and return its sha256 digest.

        Idempotent: a payload that is already stored is not rewritten.
        """
        digest = compute_digest(data, DEFAULT_ALGORITHM)
        self._write(digest, data)
        return digest

    def put_verified(self, data: bytes, expected_digest: str) -> str:
        """Store ``data`` under ``expected_digest`` after checking it hashes to it.

        Raises:
            IntegrityError: If the payload does not match; nothing is written.
        """
        try:
            parse_digest(expected_digest)
        except ValueError as exc:
            raise UsageError(str(exc), stage=Stage.VERIFY) from exc
        digest = verify_digest(data, expected_digest)
        self._write(digest, data)
        return digest

    def _write(self, digest: str, data: bytes) -> None:
        path = self.path_for(digest)
        if path.is_file():
            if not self._index_has(digest):
                self._index_record(digest, path.stat().st_size)
            logger.debug(f"Blob already stored: {digest}")
            return

        tmp_name: Optional[str] = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                dir=path.parent, prefix=path.name[:16] + ".", suffix=TEMP_SUFFIX, delete=False
            ) as handle:
                tmp_name = handle.name
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as exc:
            raise StorageError(
                f"Failed to write blob {digest}: {exc}",
                path=str(path),
                operation="put",
                stage=Stage.STORE,
            ) from exc
        finally:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)

        self._index_record(digest, len(data))
        logger.debug(f"Stored blob {digest} ({len(data)} bytes)")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def exists(self, digest: str) -> bool:
        """Return True if ``digest`` is stored, without reading the payload.

        The blob file is authoritative: a stale index row is dropped and an
        unindexed file is recorded.
        """
        try:
            path = blob_path(self.root, digest)
        except ValueError:
            return False
        on_disk = path.is_file()
        indexed = self._index_has(digest)
        if on_disk and not indexed:
            logger.debug(f"Indexing unrecorded blob {digest}")
            self._index_record(digest, path.stat().st_size)
        elif indexed and not on_disk:
            logger.warning(f"Dropping stale index row for missing blob {digest}")
            self._index_forget(digest)
        return on_disk

    def get(self, digest: str) -> bytes:
        """Return the payload stored under ``digest``.

        Raises:
            NotFoundError: If no blob is stored under ``digest``.
            CorruptError: If the stored bytes no longer hash to ``digest``.
        """
        path = self.path_for(digest)
        try:
            data = path.read_bytes()
        except FileNotFoundError as exc:
            if self._index_has(digest):
                self._index_forget(digest)
            raise NotFoundError(f"Blob not found: {digest}", stage=Stage.STORE) from exc
        except OSError as exc:
            raise StorageError(
                f"Failed to read blob {digest}: {exc}",
                path=str(path),
                operation="get",
                stage=Stage.STORE,
            ) from exc

        algorithm, _ = parse_digest(digest)
        actual = compute_digest(data, algorithm)
        if actual != digest:
            raise CorruptError(
                f"Stored blob {digest} hashes to {actual}",
                digest=digest,
                actual=actual,
                path=str(path),
            )
        return data

    def size(self, digest: str) -> int:
        path = self.path_for(digest)
        try:
            return path.stat().st_size
        except FileNotFoundError as exc:
            raise NotFoundError(f"Blob not found: {digest}", stage=Stage.STORE) from exc

    def list_digests(self) -> List[str]:
        """All stored digests, sorted."""
        digests = []
        for fpath in iter_blob_files(self.root):
            digest = digest_from_path(self.root, fpath)
            if digest is not None:
                digests.append(digest)
        return sorted(digests)

    def usage(self) -> Tuple[int, int]:
        """Return ``(blob_count, total_bytes)`` measured from the filesystem."""
        count = 0
        total = 0
        for fpath in iter_blob_files(self.root):
            if digest_from_path(self.root, fpath) is None:
                continue
            count += 1
            total += fpath.stat().st_size
        return count, total

    def verify_all(self) -> List[str]:
        """Re-hash every stored blob and return the digests that are corrupt."""
        corrupt: List[str] = []
        for digest in self.list_digests():
            try:
                self.get(digest)
            except CorruptError as exc:
                logger.error(f"Corrupt blob detected: {exc}")
                corrupt.append(digest)
            except NotFoundError:
                continue
        logger.info(f"Verified content store: {len(corrupt)} corrupt blobs")
        return corrupt

    def sync_index(self) -> int:
        """Make the index match the filesystem; returns the number of repairs."""
        on_disk = set(self.list_digests())
        with self._lock:
            indexed = {row[0] for row in self.conn.execute("SELECT digest FROM blobs")}
        repairs = 0
        for digest in sorted(on_disk - indexed):
            self._index_record(digest, self.path_for(digest).stat().st_size)
            repairs += 1
        for digest in sorted(indexed - on_disk):
            self._index_forget(digest)
            repairs += 1
        if repairs:
            logger.info(f"Repaired {repairs} content index entries")
        return repairs

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    @contextlib.contextmanager
    def gc_lock(self, operation: str = "gc_lock") -> Iterator[None]:
        """Hold the cleanup lock; no blob is removed while it is held.

        Re-entrant within one thread, so :meth:`remove_unreferenced` may run
        inside it.

        Raises:
            StorageError: If the lock is not acquired within ``lock_timeout``.
        """
        try:
            self._gc_filelock.acquire()
        except Timeout as exc:
            raise StorageError(
                f"Timed out waiting for cleanup lock after {self.lock_timeout}s",
                path=str(self.root / GC_LOCK_FILENAME),
                operation=operation,
                stage=Stage.STORE,
            ) from exc
        try:
            yield
        finally:
            self._gc_filelock.release()

    def remove_unreferenced(
        self,
        live_digests: Iterable[str],
        *,
        dry_run: bool = False,
        snapshot_time: Optional[float] = None,
    ) -> GcResult:
        """Delete every blob whose digest is not in ``live_digests``.

        Args:
            live_digests: Digests that must be kept.
            dry_run: Report what would be removed without deleting anything.
            snapshot_time: POSIX time at which the live set was captured.
                Blobs modified after it are kept.

        Returns:
            :class:`GcResult` listing removed digests and bytes freed.

        Raises:
            StorageError: If another cleanup holds the lock past ``lock_timeout``.
        """
        live: Set[str] = set(live_digests)
        result = GcResult(dry_run=dry_run)
        with self.gc_lock("remove_unreferenced"):
            for digest in self.list_digests():
                if digest in live:
                    continue
                path = self.path_for(digest)
                try:
                    stat = path.stat()
                except FileNotFoundError:
                    continue
                if snapshot_time is not None and stat.st_mtime > snapshot_time:
                    logger.debug(f"Keeping blob newer than live snapshot: {digest}")
                    continue
                result.removed.append(digest)
                result.bytes_freed += stat.st_size
                if dry_run:
                    logger.info(f"[DRY-RUN] Would remove blob {digest}")
                    continue
                self._index_forget(digest)
                try:
                    path.unlink(missing_ok=True)
                except OSError as exc:
                    raise StorageError(
                        f"Failed to remove blob {digest}: {exc}",
                        path=str(path),
                        operation="remove_unreferenced",
                        stage=Stage.STORE,
                    ) from exc

        action = "Would remove" if dry_run else "Removed"
        logger.info(f"{action} {result.count} unreferenced blobs ({result.bytes_freed} bytes)")
        return result

    def close(self) -> None:
        with self._lock:
            self.conn.close()


__all__ = ["ContentStore", "GcResult"]
