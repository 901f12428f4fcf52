# === NAVMAP v1 ===
# {
#   "module": "WasmPkg.PackageManager.catalog.store",
#   "purpose": "SQLite metadata catalog: images, known packages and tags, WIT interfaces, derived interfaces",
#   "sections": [
#     {"id": "sqlitecatalog", "name": "SQLiteCatalog", "anchor": "class-sqlitecatalog", "kind": "class"},
#     {"id": "images", "name": "Images", "anchor": "IMG", "kind": "api"},
#     {"id": "known", "name": "Known packages", "anchor": "KNO", "kind": "api"},
#     {"id": "wit", "name": "WIT interfaces", "anchor": "WIT", "kind": "api"},
#     {"id": "derived", "name": "Derived interfaces", "anchor": "DER", "kind": "api"},
#     {"id": "snapshots", "name": "Snapshots", "anchor": "SNP", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""SQLite implementation of the metadata catalog.

The catalog is a single database file shared by every process using the same
data directory.  It is opened in WAL mode so readers (``list``, ``state``)
never block on a writer's transaction, and every mutating sequence runs inside
one ``BEGIN IMMEDIATE`` transaction so partial writes are never visible.

Migrations run once in the constructor and must succeed before any other
operation; :attr:`SQLiteCatalog.applied_migrations` reports what happened so
the caller can rescan derived interfaces when a migration asks for it.
"""

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Set, Tuple

from ..errors import ConflictError, Stage, StorageError
from ..oci import referenced_digests as manifest_digests
from ..reference import Reference
from .migrations import MigrationInfo, MigrationResult, get_migration_info, run_migrations
from .models import (
    CatalogCounts,
    ImageEntry,
    InterfaceEntry,
    InterfaceType,
    KnownPackage,
    KnownPackageTag,
    TagType,
    WitInterface,
    WitInterfaceUsage,
)

logger = logging.getLogger(__name__)

DeriveFn = Callable[[Dict[str, Any]], Iterable[Tuple[str, str]]]

_IMAGE_COLUMNS = (
    "id, ref_registry, ref_repository, ref_mirror_registry, ref_tag, ref_digest, manifest"
)
_WIT_COLUMNS = (
    "id, wit_text, world_name, import_count, export_count, package_name, created_at"
)


def _utcnow() -> str:
    """Catalog clock: ISO-8601 UTC with microseconds."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _like_pattern(query: str) -> str:
    escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class SQLiteCatalog:
    """SQLite-backed metadata catalog.

    One connection is shared by all threads of a process and serialised by a
    re-entrant lock; cross-process isolation comes from SQLite itself.
    """

    def __init__(self, path: Path, wal_mode: bool = True, busy_timeout_ms: int = 30000):
        """Open the catalog at ``path`` and apply pending migrations.

        Args:
            path: Database file, usually ``<data_dir>/metadata.db3``.
            wal_mode: Enable write-ahead logging so readers are not blocked.
            busy_timeout_ms: How long to wait on another process's write lock.

        Raises:
            SchemaTooNewError: If the file was migrated by a newer build.
            StorageError: If the database cannot be opened or migrated.
        """
        self.path = Path(path)
        self._lock = threading.RLock()
        self._tx_depth = 0
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(
                str(self.path),
                check_same_thread=False,
                timeout=busy_timeout_ms / 1000.0,
                isolation_level=None,
            )
            self.conn.row_factory = sqlite3.Row
            if wal_mode:
                self.conn.execute("PRAGMA journal_mode=WAL")
            self.conn.execute("PRAGMA foreign_keys=ON")
            self.conn.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
        except (OSError, sqlite3.Error) as exc:
            raise StorageError(
                f"Failed to open catalog {self.path}: {exc}",
                path=str(self.path),
                operation="open",
                stage=Stage.CATALOG,
            ) from exc

        with self._lock:
            try:
                self.applied_migrations: List[MigrationResult] = run_migrations(
                    self.conn, path=str(self.path)
                )
            except BaseException:
                self.conn.close()
                raise
        logger.info(f"Opened SQLite catalog at {self.path}")

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    @property
    def needs_interface_rescan(self) -> bool:
        """True if a migration applied during open invalidated derived interfaces."""
        return any(r.applied and r.rescan_interfaces for r in self.applied_migrations)

    def _error(self, exc: sqlite3.Error, operation: str) -> StorageError:
        logger.error(f"Catalog {operation} failed: {exc}")
        return StorageError(
            f"Catalog {operation} failed: {exc}",
            path=str(self.path),
            operation=operation,
            stage=Stage.CATALOG,
        )

    @contextlib.contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the enclosed statements in one ``BEGIN IMMEDIATE`` transaction.

        Nested use joins the outer transaction.  Any exception rolls back.
        """
        with self._lock:
            if self._tx_depth:
                self._tx_depth += 1
                try:
                    yield self.conn
                finally:
                    self._tx_depth -= 1
                return

            try:
                self.conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as exc:
                raise self._error(exc, "begin") from exc
            self._tx_depth = 1
            try:
                yield self.conn
            except BaseException:
                self._tx_depth = 0
                self.conn.execute("ROLLBACK")
                raise
            self._tx_depth = 0
            try:
                self.conn.execute("COMMIT")
            except sqlite3.Error as exc:
                self.conn.execute("ROLLBACK")
                raise self._error(exc, "commit") from exc

    @contextlib.contextmanager
    def read_snapshot(self) -> Iterator[sqlite3.Connection]:
        """Run the enclosed reads against one consistent snapshot.

        Uses a deferred ``BEGIN``, so under WAL it neither takes nor waits
        for the write lock.  Inside :meth:`transaction` it joins the outer
        transaction.
        """
        with self._lock:
            if self._tx_depth:
                yield self.conn
                return
            try:
                self.conn.execute("BEGIN DEFERRED")
            except sqlite3.Error as exc:
                raise self._error(exc, "begin_read") from exc
            self._tx_depth = 1
            try:
                yield self.conn
            except BaseException:
                self._tx_depth = 0
                self.conn.execute("ROLLBACK")
                raise
            self._tx_depth = 0
            self.conn.execute("COMMIT")

    def _query(self, operation: str, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        with self._lock:
            try:
                return self.conn.execute(sql, params).fetchall()
            except sqlite3.Error as exc:
                raise self._error(exc, operation) from exc

    def _write(self, operation: str, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        try:
            return self.conn.execute(sql, params)
        except sqlite3.IntegrityError:
            raise
        except sqlite3.Error as exc:
            raise self._error(exc, operation) from exc

    # ------------------------------------------------------------------
    # Images (IMG)
    # ------------------------------------------------------------------

    def upsert_image(
        self,
        reference: Reference,
        manifest: str,
        *,
        digest: Optional[str] = None,
        mirror_registry: Optional[str] = None,
    ) -> int:
        """Insert or update the image row for ``reference``.

        A reference carrying a digest matches on the full unique key.  A
        tag-only reference is resolved to ``digest`` (typically the registry
        reported manifest digest) and matches, in order: the row with that
        tag and digest, then the newest row with that tag, which is updated
        in place.  Otherwise a new row is inserted.

        A unique-constraint race on insert is retried once as an update.

        Args:
            reference: Normalised reference.
            manifest: Raw manifest text.
            digest: Resolved manifest digest for tag-only references.
            mirror_registry: Registry the content was actually fetched from.

        Returns:
            The row id.

        Raises:
            ConflictError: If the retry also fails.
        """
        resolved = reference.digest or digest
        tag = reference.tag
        with self.transaction():
            row_id = self._match_image(reference, resolved)
            if row_id is not None:
                self._update_image(row_id, tag, resolved, manifest, mirror_registry)
                return row_id
            try:
                cursor = self._write(
                    "upsert_image",
                    """
                    INSERT INTO image
                    (ref_registry, ref_repository, ref_mirror_registry, ref_tag, ref_digest, manifest)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (reference.registry, reference.repository, mirror_registry, tag, resolved, manifest),
                )
                image_id = int(cursor.lastrowid)
                logger.debug(f"Inserted image {image_id} for {reference.whole()}")
                return image_id
            except sqlite3.IntegrityError as exc:
                logger.warning(f"Image insert raced for {reference.whole()}; retrying as update")
                row_id = self._lookup_exact(reference.registry, reference.repository, tag, resolved)
                if row_id is None:
                    raise ConflictError(
                        f"Could not insert or update image {reference.whole()}: {exc}",
                        details={"reference": reference.whole()},
                    ) from exc
                self._update_image(row_id, tag, resolved, manifest, mirror_registry)
                return row_id

    def _lookup_exact(
        self, registry: str, repository: str, tag: Optional[str], digest: Optional[str]
    ) -> Optional[int]:
        rows = self._query(
            "lookup_image",
            """
            SELECT id FROM image
            WHERE ref_registry = ? AND ref_repository = ?
              AND COALESCE(ref_tag, '') = ? AND COALESCE(ref_digest, '') = ?
            """,
            (registry, repository, tag or "", digest or ""),
        )
        return int(rows[0]["id"]) if rows else None

    def _newest_with_tag(self, registry: str, repository: str, tag: str) -> Optional[int]:
        rows = self._query(
            "lookup_image",
            """
            SELECT id FROM image
            WHERE ref_registry = ? AND ref_repository = ? AND ref_tag = ?
            ORDER BY id DESC LIMIT 1
            """,
            (registry, repository, tag),
        )
        return int(rows[0]["id"]) if rows else None

    def _match_image(self, reference: Reference, resolved: Optional[str]) -> Optional[int]:
        if reference.digest or not reference.tag:
            return self._lookup_exact(
                reference.registry, reference.repository, reference.tag, resolved
            )
        row_id = self._lookup_exact(reference.registry, reference.repository, reference.tag, resolved)
        if row_id is not None:
            return row_id
        return self._newest_with_tag(reference.registry, reference.repository, reference.tag)

    def _update_image(
        self,
        row_id: int,
        tag: Optional[str],
        digest: Optional[str],
        manifest: str,
        mirror_registry: Optional[str],
    ) -> None:
        try:
            self._write(
                "upsert_image",
                """
                UPDATE image
                SET ref_tag = ?, ref_digest = ?, manifest = ?,
                    ref_mirror_registry = COALESCE(?, ref_mirror_registry)
                WHERE id = ?
                """,
                (tag, digest, manifest, mirror_registry, row_id),
            )
        except sqlite3.IntegrityError as exc:
            raise ConflictError(
                f"Updating image {row_id} collides with an existing row: {exc}",
                details={"image_id": row_id, "digest": digest},
            ) from exc
        logger.debug(f"Updated image {row_id} (digest={digest})")

    def get_image(self, image_id: int) -> Optional[ImageEntry]:
        rows = self._query(
            "get_image", f"SELECT {_IMAGE_COLUMNS} FROM image WHERE id = ?", (image_id,)
        )
        return self._row_to_image(rows[0]) if rows else None

    def find_image(self, reference: Reference) -> Optional[ImageEntry]:
        """Return the stored image for ``reference``.

        With a digest the match is exact on digest; with only a tag it is the
        newest row carrying that tag.
        """
        if reference.digest:
            rows = self._query(
                "find_image",
                f"""
                SELECT {_IMAGE_COLUMNS} FROM image
                WHERE ref_registry = ? AND ref_repository = ? AND ref_digest = ?
                ORDER BY (COALESCE(ref_tag, '') = ?) DESC, id DESC LIMIT 1
                """,
                (reference.registry, reference.repository, reference.digest, reference.tag or ""),
            )
        else:
            rows = self._query(
                "find_image",
                f"""
                SELECT {_IMAGE_COLUMNS} FROM image
                WHERE ref_registry = ? AND ref_repository = ? AND ref_tag = ?
                ORDER BY id DESC LIMIT 1
                """,
                (reference.registry, reference.repository, reference.tag),
            )
        return self._row_to_image(rows[0]) if rows else None

    def list_images(self) -> List[ImageEntry]:
        rows = self._query(
            "list_images",
            f"SELECT {_IMAGE_COLUMNS} FROM image ORDER BY ref_registry, ref_repository, id",
        )
        return [self._row_to_image(row) for row in rows]

    def delete_image(self, reference: Reference) -> int:
        """Delete image rows matching ``reference``; links and interfaces cascade.

        Returns:
            Number of image rows removed.
        """
        if reference.digest:
            where, params = "ref_digest = ?", (reference.digest,)
        else:
            where, params = "ref_tag = ?", (reference.tag,)
        with self.transaction():
            cursor = self._write(
                "delete_image",
                f"DELETE FROM image WHERE ref_registry = ? AND ref_repository = ? AND {where}",
                (reference.registry, reference.repository) + params,
            )
            removed = cursor.rowcount
        logger.info(f"Deleted {removed} image rows for {reference.whole()}")
        return removed

    @staticmethod
    def _row_to_image(row: sqlite3.Row) -> ImageEntry:
        return ImageEntry(
            id=row["id"],
            registry=row["ref_registry"],
            repository=row["ref_repository"],
            mirror_registry=row["ref_mirror_registry"],
            tag=row["ref_tag"],
            digest=row["ref_digest"],
            manifest=row["manifest"],
        )

    # ------------------------------------------------------------------
    # Known packages (KNO)
    # ------------------------------------------------------------------

    def record_known_package(
        self, registry: str, repository: str, description: Optional[str] = None
    ) -> int:
        """Upsert a known package, bumping ``last_seen_at``. Returns the package id."""
        now = _utcnow()
        with self.transaction():
            self._write(
                "record_known_package",
                """
                INSERT INTO known_package (registry, repository, description, last_seen_at, created_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(registry, repository) DO UPDATE SET
                    last_seen_at = excluded.last_seen_at,
                    description = COALESCE(excluded.description, known_package.description)
                """,
                (registry, repository, description, now, now),
            )
            row = self.conn.execute(
                "SELECT id FROM known_package WHERE registry = ? AND repository = ?",
                (registry, repository),
            ).fetchone()
        return int(row["id"])

    def record_tag(self, package_id: int, tag: str) -> TagType:
        """Upsert ``tag`` on a known package.

        The classification is recomputed on every observation, so the most
        recent observation wins.

        Returns:
            The tag's classification.
        """
        tag_type = TagType.classify(tag)
        now = _utcnow()
        with self.transaction():
            self._write(
                "record_tag",
                """
                INSERT INTO known_package_tag
                    (known_package_id, tag, tag_type, last_seen_at, created_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(known_package_id, tag) DO UPDATE SET
                    last_seen_at = excluded.last_seen_at,
                    tag_type = excluded.tag_type
                """,
                (package_id, tag, tag_type.value, now, now),
            )
        return tag_type

    def get_known_package(self, registry: str, repository: str) -> Optional[KnownPackage]:
        rows = self._query(
            "get_known_package",
            "SELECT * FROM known_package WHERE registry = ? AND repository = ?",
            (registry, repository),
        )
        return self._row_to_package(rows[0]) if rows else None

    def list_known_packages(self, limit: int = 100) -> List[KnownPackage]:
        """Known packages, most recently seen first."""
        rows = self._query(
            "list_known_packages",
            "SELECT * FROM known_package ORDER BY last_seen_at DESC, id DESC LIMIT ?",
            (limit,),
        )
        return [self._row_to_package(row) for row in rows]

    def search_known_packages(self, query: str, limit: int = 100) -> List[KnownPackage]:
        """Known packages whose registry, repository or description contains ``query``."""
        pattern = _like_pattern(query)
        rows = self._query(
            "search_known_packages",
            """
            SELECT * FROM known_package
            WHERE repository LIKE ? ESCAPE '\\'
               OR registry LIKE ? ESCAPE '\\'
               OR COALESCE(description, '') LIKE ? ESCAPE '\\'
            ORDER BY last_seen_at DESC, id DESC
            LIMIT ?
            """,
            (pattern, pattern, pattern, limit),
        )
        return [self._row_to_package(row) for row in rows]

    def _tags_for(self, package_id: int) -> List[KnownPackageTag]:
        rows = self._query(
            "list_tags",
            """
            SELECT * FROM known_package_tag WHERE known_package_id = ?
            ORDER BY last_seen_at DESC, id DESC
            """,
            (package_id,),
        )
        return [
            KnownPackageTag(
                id=row["id"],
                known_package_id=row["known_package_id"],
                tag=row["tag"],
                tag_type=TagType(row["tag_type"]),
                last_seen_at=row["last_seen_at"],
                created_at=row["created_at"],
            )
            for row in rows
        ]

    def _row_to_package(self, row: sqlite3.Row) -> KnownPackage:
        return KnownPackage(
            id=row["id"],
            registry=row["registry"],
            repository=row["repository"],
            description=row["description"],
            last_seen_at=row["last_seen_at"],
            created_at=row["created_at"],
            tags=self._tags_for(row["id"]),
        )

    # ------------------------------------------------------------------
    # WIT interfaces (WIT)
    # ------------------------------------------------------------------

    def upsert_wit_interface(
        self,
        wit_text: str,
        world_name: Optional[str],
        import_count: int,
        export_count: int,
        package_name: Optional[str] = None,
    ) -> int:
        """Store an interface document, keyed by its text. Returns the row id.

        An existing row recorded before package names were tracked gets
        ``package_name`` filled in.
        """
        with self.transaction():
            self._write(
                "upsert_wit_interface",
                """
                INSERT OR IGNORE INTO wit_interface
                    (wit_text, world_name, import_count, export_count, package_name, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (wit_text, world_name, import_count, export_count, package_name, _utcnow()),
            )
            if package_name is not None:
                self._write(
                    "upsert_wit_interface",
                    "UPDATE wit_interface SET package_name = ? "
                    "WHERE wit_text = ? AND package_name IS NULL",
                    (package_name, wit_text),
                )
            row = self.conn.execute(
                "SELECT id FROM wit_interface WHERE wit_text = ?", (wit_text,)
            ).fetchone()
        return int(row["id"])

    def link_interface(self, image_id: int, wit_interface_id: int) -> None:
        """Idempotently link an image to an interface document."""
        with self.transaction():
            self._write(
                "link_interface",
                "INSERT OR IGNORE INTO image_wit_interface (image_id, wit_interface_id) VALUES (?, ?)",
                (image_id, wit_interface_id),
            )

    def unlink_interfaces(self, image_id: int) -> int:
        with self.transaction():
            cursor = self._write(
                "unlink_interfaces",
                "DELETE FROM image_wit_interface WHERE image_id = ?",
                (image_id,),
            )
        return cursor.rowcount

    def prune_wit_interfaces(self) -> int:
        """Delete interface documents no image links to any more."""
        with self.transaction():
            cursor = self._write(
                "prune_wit_interfaces",
                """
                DELETE FROM wit_interface WHERE id NOT IN
                    (SELECT DISTINCT wit_interface_id FROM image_wit_interface)
                """,
            )
        return cursor.rowcount

    def get_wit_interface_for_image(self, image_id: int) -> Optional[WitInterface]:
        rows = self._query(
            "get_wit_interface_for_image",
            f"""
            SELECT {", ".join("w." + c.strip() for c in _WIT_COLUMNS.split(","))}
            FROM wit_interface w
            JOIN image_wit_interface l ON l.wit_interface_id = w.id
            WHERE l.image_id = ?
            ORDER BY w.id DESC LIMIT 1
            """,
            (image_id,),
        )
        return self._row_to_wit(rows[0]) if rows else None

    def list_wit_interfaces(self) -> List[WitInterface]:
        rows = self._query(
            "list_wit_interfaces", f"SELECT {_WIT_COLUMNS} FROM wit_interface ORDER BY id"
        )
        return [self._row_to_wit(row) for row in rows]

    def list_wit_interfaces_with_images(self) -> List[WitInterfaceUsage]:
        """Every interface document with the references of the images linked to it."""
        usages: List[WitInterfaceUsage] = []
        for wit in self.list_wit_interfaces():
            rows = self._query(
                "list_wit_interfaces_with_images",
                f"""
                SELECT {", ".join("i." + c.strip() for c in _IMAGE_COLUMNS.split(","))}
                FROM image i
                JOIN image_wit_interface l ON l.image_id = i.id
                WHERE l.wit_interface_id = ?
                ORDER BY i.id
                """,
                (wit.id,),
            )
            references = [self._row_to_image(row).reference().whole() for row in rows]
            usages.append(WitInterfaceUsage(interface=wit, image_references=references))
        return usages

    @staticmethod
    def _row_to_wit(row: sqlite3.Row) -> WitInterface:
        return WitInterface(
            id=row["id"],
            wit_text=row["wit_text"],
            world_name=row["world_name"],
            import_count=row["import_count"],
            export_count=row["export_count"],
            package_name=row["package_name"],
            created_at=row["created_at"],
        )

    # ------------------------------------------------------------------
    # Derived interfaces (DER)
    # ------------------------------------------------------------------

    def replace_interfaces(self, image_id: int, records: Iterable[Tuple[str, str]]) -> int:
        """Replace an image's derived interface rows. Returns the number inserted."""
        now = _utcnow()
        unique = sorted({(name, InterfaceType(kind).value) for name, kind in records})
        with self.transaction():
            self._write(
                "replace_interfaces", "DELETE FROM interface WHERE image_id = ?", (image_id,)
            )
            for name, kind in unique:
                self._write(
                    "replace_interfaces",
                    """
                    INSERT INTO interface (image_id, name, interface_type, created_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (image_id, name, kind, now),
                )
        return len(unique)

    def rebuild_interfaces(self, image_id: int, derive: DeriveFn) -> int:
        """Recompute an image's derived interface rows from its stored manifest.

        Args:
            image_id: Image whose rows are rebuilt.
            derive: Maps the parsed manifest to ``(name, "import"|"export")`` pairs.

        Returns:
            Number of rows written; zero if the image is gone or its manifest
            is not JSON.
        """
        image = self.get_image(image_id)
        if image is None:
            return 0
        try:
            manifest = json.loads(image.manifest)
        except ValueError:
            logger.warning(f"Image {image_id} has an unparsable manifest; clearing interfaces")
            manifest = None
        records = list(derive(manifest)) if isinstance(manifest, dict) else []
        return self.replace_interfaces(image_id, records)

    def list_interfaces(self, image_id: int) -> List[InterfaceEntry]:
        rows = self._query(
            "list_interfaces",
            "SELECT * FROM interface WHERE image_id = ? ORDER BY interface_type, name",
            (image_id,),
        )
        return [
            InterfaceEntry(
                id=row["id"],
                image_id=row["image_id"],
                name=row["name"],
                interface_type=InterfaceType(row["interface_type"]),
                created_at=row["created_at"],
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Snapshots (SNP)
    # ------------------------------------------------------------------

    def referenced_digests(self) -> Set[str]:
        """Every blob digest referenced by a stored manifest, read from one snapshot."""
        with self.read_snapshot():
            rows = self.conn.execute("SELECT manifest FROM image").fetchall()
        digests: Set[str] = set()
        for row in rows:
            digests.update(manifest_digests(row["manifest"]))
        return digests

    def counts(self) -> CatalogCounts:
        def count(table: str) -> int:
            return int(self._query("counts", f"SELECT COUNT(*) FROM {table}")[0][0])

        return CatalogCounts(
            images=count("image"),
            known_packages=count("known_package"),
            known_package_tags=count("known_package_tag"),
            wit_interfaces=count("wit_interface"),
            interfaces=count("interface"),
        )

    def migration_info(self) -> MigrationInfo:
        with self._lock:
            return get_migration_info(self.conn)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self.conn:
                self.conn.close()
                logger.debug("Catalog connection closed")


__all__ = ["SQLiteCatalog"]
