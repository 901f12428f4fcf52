# === NAVMAP v1 ===
# {
#   "module": "WasmPkg.PackageManager.catalog.migrations",
#   "purpose": "Forward-only, numbered migration runner for the SQLite metadata catalog",
#   "sections": [
#     {"id": "types", "name": "Data Types & Constants", "anchor": "TYP", "kind": "models"},
#     {"id": "migrations", "name": "Migration Definitions", "anchor": "MIG", "kind": "data"},
#     {"id": "runner", "name": "Migration Runner", "anchor": "RUN", "kind": "api"},
#     {"id": "queries", "name": "Schema Queries", "anchor": "QRY", "kind": "infra"}
#   ]
# }
# === /NAVMAP ===

"""Forward-only migration runner for the metadata catalog.

Migrations are numbered from 1 and applied in ascending order, each inside its
own ``BEGIN IMMEDIATE`` transaction that also records the version in the
``migrations`` table.  There is no downgrade path: opening a catalog that has
a version this build does not know raises
:class:`~WasmPkg.PackageManager.errors.SchemaTooNewError`.

Every step is guarded (``IF NOT EXISTS`` or a column existence check) so a
crash between a schema change and the surrounding commit, or two processes
racing to open the same catalog, is safe to retry.  The connection must be in
autocommit mode (``isolation_level=None``) so transactions are explicit.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional, Set, Tuple

from ..errors import SchemaGapError, SchemaTooNewError, Stage, StorageError

logger = logging.getLogger(__name__)


# ============================================================================
# DATA TYPES & CONSTANTS (TYP)
# ============================================================================


@dataclass(frozen=True)
class Migration:
    """One numbered schema change."""

    version: int
    name: str
    statements: Tuple[str, ...] = ()
    upgrade_fn: Optional[Callable[[sqlite3.Connection], None]] = None
    # Derived interface rows must be recomputed after this migration.
    rescan_interfaces: bool = False


@dataclass
class MigrationResult:
    """Result of considering one migration during open."""

    version: int
    name: str
    applied: bool
    rescan_interfaces: bool = False
    error: Optional[str] = None


@dataclass
class MigrationInfo:
    current: int
    total: int
    applied_versions: List[int] = field(default_factory=list)

    @property
    def pending(self) -> int:
        return self.total - len(self.applied_versions)


BOOTSTRAP_SQL = """
CREATE TABLE IF NOT EXISTS migrations (
    id INTEGER PRIMARY KEY,
    version INTEGER NOT NULL UNIQUE,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
)
"""


def _column_exists(conn: sqlite3.Connection, table: str, column: str) -> bool:
    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return any(row[1] == column for row in rows)


# ============================================================================
# MIGRATION DEFINITIONS (MIG)
# ============================================================================


def _add_tag_type(conn: sqlite3.Connection) -> None:
    if not _column_exists(conn, "known_package_tag", "tag_type"):
        conn.execute(
            "ALTER TABLE known_package_tag ADD COLUMN tag_type TEXT NOT NULL DEFAULT 'release'"
        )
    # GLOB is case-sensitive, like TagType.classify.
    conn.execute("UPDATE known_package_tag SET tag_type = 'signature' WHERE tag GLOB '*.sig'")
    conn.execute("UPDATE known_package_tag SET tag_type = 'attestation' WHERE tag GLOB '*.att'")


def _add_package_name(conn: sqlite3.Connection) -> None:
    if not _column_exists(conn, "wit_interface", "package_name"):
        conn.execute("ALTER TABLE wit_interface ADD COLUMN package_name TEXT")
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_wit_interface_package_name "
        "ON wit_interface(package_name)"
    )


def _dedupe_wit_interfaces(conn: sqlite3.Connection) -> None:
    # Repoint links at the oldest copy of each text before dropping duplicates.
    conn.execute(
        """
        INSERT OR IGNORE INTO image_wit_interface (image_id, wit_interface_id)
        SELECT l.image_id, keep.id
        FROM image_wit_interface l
        JOIN wit_interface w ON w.id = l.wit_interface_id
        JOIN (SELECT MIN(id) AS id, wit_text FROM wit_interface GROUP BY wit_text) keep
          ON keep.wit_text = w.wit_text
        """
    )
    conn.execute(
        "DELETE FROM wit_interface WHERE id NOT IN "
        "(SELECT MIN(id) FROM wit_interface GROUP BY wit_text)"
    )
    conn.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_wit_interface_wit_text ON wit_interface(wit_text)"
    )


MIGRATIONS: List[Migration] = [
    Migration(
        1,
        "init",
        (
            """
            CREATE TABLE IF NOT EXISTS image (
                id INTEGER PRIMARY KEY,
                ref_registry TEXT NOT NULL,
                ref_repository TEXT NOT NULL,
                ref_mirror_registry TEXT,
                ref_tag TEXT,
                ref_digest TEXT,
                manifest TEXT NOT NULL
            )
            """,
        ),
    ),
    Migration(
        2,
        "known_packages",
        (
            """
            CREATE TABLE IF NOT EXISTS known_package (
                id INTEGER PRIMARY KEY,
                registry TEXT NOT NULL,
                repository TEXT NOT NULL,
                description TEXT,
                last_seen_at TEXT NOT NULL DEFAULT (datetime('now')),
                created_at TEXT NOT NULL DEFAULT (datetime('now')),
                UNIQUE(registry, repository)
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_known_package_repository ON known_package(repository)",
            "CREATE INDEX IF NOT EXISTS idx_known_package_registry ON known_package(registry)",
        ),
    ),
    Migration(
        3,
        "known_package_tags",
        (
            """
            CREATE TABLE IF NOT EXISTS known_package_tag (
                id INTEGER PRIMARY KEY,
                known_package_id INTEGER NOT NULL,
                tag TEXT NOT NULL,
                last_seen_at TEXT NOT NULL DEFAULT (datetime('now')),
                created_at TEXT NOT NULL DEFAULT (datetime('now')),
                FOREIGN KEY (known_package_id) REFERENCES known_package(id) ON DELETE CASCADE,
                UNIQUE(known_package_id, tag)
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_known_package_tag_package_id "
            "ON known_package_tag(known_package_id)",
        ),
    ),
    Migration(4, "tag_type", upgrade_fn=_add_tag_type),
    Migration(
        5,
        "interfaces",
        (
            """
            CREATE TABLE IF NOT EXISTS interface (
                id INTEGER PRIMARY KEY,
                image_id INTEGER NOT NULL,
                name TEXT NOT NULL,
                interface_type TEXT NOT NULL,
                created_at TEXT NOT NULL DEFAULT (datetime('now')),
                FOREIGN KEY (image_id) REFERENCES image(id) ON DELETE CASCADE
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_interface_image_id ON interface(image_id)",
            "CREATE INDEX IF NOT EXISTS idx_interface_name ON interface(name)",
        ),
        rescan_interfaces=True,
    ),
    Migration(
        6,
        "wit_interface",
        (
            """
            CREATE TABLE IF NOT EXISTS wit_interface (
                id INTEGER PRIMARY KEY,
                wit_text TEXT NOT NULL,
                world_name TEXT,
                import_count INTEGER NOT NULL DEFAULT 0,
                export_count INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS image_wit_interface (
                image_id INTEGER NOT NULL,
                wit_interface_id INTEGER NOT NULL,
                PRIMARY KEY (image_id, wit_interface_id),
                FOREIGN KEY (image_id) REFERENCES image(id) ON DELETE CASCADE,
                FOREIGN KEY (wit_interface_id) REFERENCES wit_interface(id) ON DELETE CASCADE
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_image_wit_interface_image_id "
            "ON image_wit_interface(image_id)",
            "CREATE INDEX IF NOT EXISTS idx_image_wit_interface_wit_interface_id "
            "ON image_wit_interface(wit_interface_id)",
        ),
        rescan_interfaces=True,
    ),
    Migration(7, "package_name", upgrade_fn=_add_package_name, rescan_interfaces=True),
    Migration(
        8,
        "image_unique",
        (
            # Keep the newest row of any duplicated reference; links cascade.
            """
            DELETE FROM image WHERE id NOT IN (
                SELECT MAX(id) FROM image
                GROUP BY ref_registry, ref_repository,
                         COALESCE(ref_tag, ''), COALESCE(ref_digest, '')
            )
            """,
            """
            CREATE UNIQUE INDEX IF NOT EXISTS idx_image_unique ON image(
                ref_registry,
                ref_repository,
                COALESCE(ref_tag, ''),
                COALESCE(ref_digest, '')
            )
            """,
        ),
    ),
    Migration(9, "wit_interface_unique", upgrade_fn=_dedupe_wit_interfaces),
]

EXPECTED_TABLES = (
    "migrations",
    "image",
    "known_package",
    "known_package_tag",
    "interface",
    "wit_interface",
    "image_wit_interface",
)


# ============================================================================
# MIGRATION RUNNER (RUN)
# ============================================================================


def get_applied_versions(conn: sqlite3.Connection) -> Set[int]:
    """Return the versions recorded in the ``migrations`` table."""
    rows = conn.execute("SELECT version FROM migrations").fetchall()
    return {int(row[0]) for row in rows}


def _check_applied(applied: Set[int], migrations: List[Migration]) -> None:
    known = [migration.version for migration in migrations]
    latest = max(known) if known else 0
    unknown = sorted(applied - set(known))
    if unknown:
        raise SchemaTooNewError(
            f"Catalog has migration {unknown[-1]} applied but this build only knows "
            f"migrations up to {latest}; upgrade the package manager",
            applied_version=unknown[-1],
            known_version=latest,
        )
    expected_prefix = known[: len(applied)]
    if sorted(applied) != expected_prefix:
        missing = sorted(set(expected_prefix) - applied)
        raise SchemaGapError(
            f"Applied migrations are not a prefix of the known sequence (missing {missing})",
            details={"applied": sorted(applied), "missing": missing},
        )


def run_migrations(
    conn: sqlite3.Connection,
    migrations: Optional[List[Migration]] = None,
    *,
    path: Optional[str] = None,
) -> List[MigrationResult]:
    """Apply every pending migration in order.

    Args:
        conn: Autocommit SQLite connection (``isolation_level=None``).
        migrations: Migration list to apply; defaults to :data:`MIGRATIONS`.
        path: Database path, used only for error context.

    Returns:
        One :class:`MigrationResult` per known migration, ``applied=True`` for
        those applied by this call.

    Raises:
        SchemaTooNewError: If the catalog records a version this build lacks.
        SchemaGapError: If the applied versions have a hole.
        StorageError: If a migration statement fails; its transaction is
            rolled back and its version is not recorded.
    """
    migrations = list(MIGRATIONS if migrations is None else migrations)
    try:
        conn.execute(BOOTSTRAP_SQL)
        applied = get_applied_versions(conn)
    except sqlite3.Error as exc:
        raise StorageError(
            f"Failed to read migration state: {exc}",
            path=path,
            operation="migrations.bootstrap",
            stage=Stage.CATALOG,
        ) from exc
    _check_applied(applied, migrations)

    pending = [m.version for m in migrations if m.version not in applied]
    if pending:
        logger.info(f"Applying {len(pending)} pending migrations: {pending}")
    else:
        logger.debug("All migrations already applied (0 pending)")

    results: List[MigrationResult] = []
    for migration in migrations:
        if migration.version in applied:
            results.append(MigrationResult(migration.version, migration.name, False))
            continue
        results.append(_apply_one(conn, migration, path=path))
    return results


def _apply_one(
    conn: sqlite3.Connection, migration: Migration, *, path: Optional[str]
) -> MigrationResult:
    label = f"{migration.version:02d}_{migration.name}"
    try:
        conn.execute("BEGIN IMMEDIATE")
    except sqlite3.Error as exc:
        raise StorageError(
            f"Failed to begin migration {label}: {exc}",
            path=path,
            operation=f"migration.{label}",
            stage=Stage.CATALOG,
        ) from exc
    try:
        already = conn.execute(
            "SELECT 1 FROM migrations WHERE version = ?", (migration.version,)
        ).fetchone()
        if already is not None:
            conn.execute("ROLLBACK")
            logger.debug(f"Migration {label} applied concurrently; skipping")
            return MigrationResult(migration.version, migration.name, False)

        for statement in migration.statements:
            conn.execute(statement)
        if migration.upgrade_fn is not None:
            migration.upgrade_fn(conn)
        conn.execute(
            "INSERT INTO migrations (version, applied_at) VALUES (?, ?)",
            (migration.version, datetime.now(timezone.utc).isoformat()),
        )
        conn.execute("COMMIT")
    except sqlite3.Error as exc:
        conn.execute("ROLLBACK")
        logger.error(f"Migration {label} failed: {exc}")
        raise StorageError(
            f"Migration {label} failed: {exc}",
            path=path,
            operation=f"migration.{label}",
            stage=Stage.CATALOG,
        ) from exc
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    logger.info(f"Applied migration: {label}")
    return MigrationResult(
        migration.version, migration.name, True, rescan_interfaces=migration.rescan_interfaces
    )


# ============================================================================
# SCHEMA QUERIES (QRY)
# ============================================================================


def get_migration_info(conn: sqlite3.Connection) -> MigrationInfo:
    """Current and total migration counts, as shown by ``state`` queries."""
    applied = sorted(get_applied_versions(conn))
    return MigrationInfo(
        current=applied[-1] if applied else 0,
        total=len(MIGRATIONS),
        applied_versions=applied,
    )


def verify_schema(conn: sqlite3.Connection) -> bool:
    """Return True if every expected table exists and no migration is pending."""
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    tables = {row[0] for row in rows}
    missing = [table for table in EXPECTED_TABLES if table not in tables]
    if missing:
        logger.warning(f"Missing catalog tables: {missing}")
        return False
    info = get_migration_info(conn)
    if info.pending:
        logger.warning(f"{info.pending} migrations pending")
        return False
    return True


__all__ = [
    "Migration",
    "MigrationResult",
    "MigrationInfo",
    "MIGRATIONS",
    "run_migrations",
    "get_applied_versions",
    "get_migration_info",
    "verify_schema",
]
