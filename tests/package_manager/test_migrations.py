"""Tests for the forward-only catalog migration engine."""

from __future__ import annotations

import sqlite3
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Iterator

import pytest

from WasmPkg.PackageManager.catalog import migrations as migrations_module
from WasmPkg.PackageManager.catalog.migrations import (
    MIGRATIONS,
    Migration,
    get_applied_versions,
    get_migration_info,
    run_migrations,
    verify_schema,
)
from WasmPkg.PackageManager.catalog.models import TagType
from WasmPkg.PackageManager.catalog.store import SQLiteCatalog
from WasmPkg.PackageManager.errors import SchemaGapError, SchemaTooNewError, StorageError


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "metadata.db3"


@pytest.fixture
def raw_conn(db_path: Path) -> Iterator[sqlite3.Connection]:
    """Autocommit connection, the mode the runner requires."""
    conn = sqlite3.connect(str(db_path), isolation_level=None)
    conn.execute("PRAGMA foreign_keys=ON")
    yield conn
    conn.close()


def _recorded_versions(conn: sqlite3.Connection) -> list:
    return [row[0] for row in conn.execute("SELECT version FROM migrations ORDER BY version")]


class TestRunMigrations:
    """Applying pending migrations."""

    def test_fresh_catalog_applies_everything_once(self, raw_conn: sqlite3.Connection) -> None:
        """Every known migration is applied in order and recorded exactly once."""
        results = run_migrations(raw_conn)
        assert [r.version for r in results] == [m.version for m in MIGRATIONS]
        assert all(r.applied for r in results)
        assert _recorded_versions(raw_conn) == list(range(1, len(MIGRATIONS) + 1))
        assert verify_schema(raw_conn)

    def test_rerun_is_a_noop(self, raw_conn: sqlite3.Connection) -> None:
        run_migrations(raw_conn)
        results = run_migrations(raw_conn)
        assert not any(r.applied for r in results)
        assert _recorded_versions(raw_conn) == list(range(1, len(MIGRATIONS) + 1))

    def test_partial_catalog_applies_only_the_rest(self, raw_conn: sqlite3.Connection) -> None:
        """With versions 1..k applied, opening applies k+1..N."""
        run_migrations(raw_conn, MIGRATIONS[:4])
        assert get_applied_versions(raw_conn) == {1, 2, 3, 4}

        results = run_migrations(raw_conn)

        applied = [r.version for r in results if r.applied]
        assert applied == [m.version for m in MIGRATIONS[4:]]
        assert _recorded_versions(raw_conn) == list(range(1, len(MIGRATIONS) + 1))

    def test_unknown_version_is_fatal(self, raw_conn: sqlite3.Connection) -> None:
        """A catalog migrated by a newer build refuses to open."""
        run_migrations(raw_conn)
        raw_conn.execute(
            "INSERT INTO migrations (version, applied_at) VALUES (?, 'later')",
            (len(MIGRATIONS) + 1,),
        )
        with pytest.raises(SchemaTooNewError) as excinfo:
            run_migrations(raw_conn)
        assert excinfo.value.applied_version == len(MIGRATIONS) + 1
        assert excinfo.value.known_version == len(MIGRATIONS)

    def test_gap_in_applied_versions_is_fatal(self, raw_conn: sqlite3.Connection) -> None:
        run_migrations(raw_conn, MIGRATIONS[:3])
        raw_conn.execute("DELETE FROM migrations WHERE version = 2")
        with pytest.raises(SchemaGapError):
            run_migrations(raw_conn)

    def test_failed_migration_rolls_back(self, raw_conn: sqlite3.Connection) -> None:
        """A failing step leaves neither its schema changes nor its version behind."""
        broken = [
            Migration(
                1,
                "broken",
                (
                    "CREATE TABLE half_done (id INTEGER PRIMARY KEY)",
                    "THIS IS NOT SQL",
                ),
            )
        ]
        with pytest.raises(StorageError):
            run_migrations(raw_conn, broken)
        tables = {
            row[0] for row in raw_conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
        }
        assert "half_done" not in tables
        assert get_applied_versions(raw_conn) == set()

    def test_migration_info(self, raw_conn: sqlite3.Connection) -> None:
        run_migrations(raw_conn, MIGRATIONS[:5])
        info = get_migration_info(raw_conn)
        assert info.current == 5
        assert info.total == len(MIGRATIONS)
        assert info.pending == len(MIGRATIONS) - 5


class TestDataMigrations:
    """Migrations that rewrite existing rows."""

    def test_tag_type_backfill(self, raw_conn: sqlite3.Connection) -> None:
        """Existing signature and attestation tags are classified."""
        run_migrations(raw_conn, MIGRATIONS[:3])
        raw_conn.execute(
            "INSERT INTO known_package (id, registry, repository) VALUES (1, 'ghcr.io', 'acme/widget')"
        )
        for tag in ("1.0.0", "sha256-abc.sig", "sha256-abc.att"):
            raw_conn.execute(
                "INSERT INTO known_package_tag (known_package_id, tag) VALUES (1, ?)", (tag,)
            )

        run_migrations(raw_conn)

        rows = dict(raw_conn.execute("SELECT tag, tag_type FROM known_package_tag"))
        assert rows == {
            "1.0.0": "release",
            "sha256-abc.sig": "signature",
            "sha256-abc.att": "attestation",
        }

    def test_tag_type_backfill_is_case_sensitive(self, raw_conn: sqlite3.Connection) -> None:
        """Backfilled classifications agree with the classifier applied on write."""
        run_migrations(raw_conn, MIGRATIONS[:3])
        raw_conn.execute(
            "INSERT INTO known_package (id, registry, repository) VALUES (1, 'ghcr.io', 'acme/widget')"
        )
        tags = ("V1.SIG", "build.Att", "sha256-abc.sig")
        for tag in tags:
            raw_conn.execute(
                "INSERT INTO known_package_tag (known_package_id, tag) VALUES (1, ?)", (tag,)
            )

        run_migrations(raw_conn)

        rows = dict(raw_conn.execute("SELECT tag, tag_type FROM known_package_tag"))
        assert rows == {tag: TagType.classify(tag).value for tag in tags}
        assert rows["V1.SIG"] == "release"

    def test_image_dedupe_keeps_newest(self, raw_conn: sqlite3.Connection) -> None:
        """Duplicate image references collapse to the newest row before the unique index."""
        run_migrations(raw_conn, MIGRATIONS[:7])
        for manifest in ("{}", '{"v": 2}'):
            raw_conn.execute(
                "INSERT INTO image (ref_registry, ref_repository, ref_tag, manifest) "
                "VALUES ('ghcr.io', 'acme/widget', '1.0.0', ?)",
                (manifest,),
            )

        run_migrations(raw_conn)

        rows = raw_conn.execute("SELECT manifest FROM image").fetchall()
        assert rows == [('{"v": 2}',)]
        with pytest.raises(sqlite3.IntegrityError):
            raw_conn.execute(
                "INSERT INTO image (ref_registry, ref_repository, ref_tag, manifest) "
                "VALUES ('ghcr.io', 'acme/widget', '1.0.0', '{}')"
            )

    def test_wit_interface_dedupe_repoints_links(self, raw_conn: sqlite3.Connection) -> None:
        """Links to a duplicate document survive, pointing at the kept copy."""
        run_migrations(raw_conn, MIGRATIONS[:8])
        raw_conn.execute(
            "INSERT INTO image (id, ref_registry, ref_repository, ref_tag, manifest) "
            "VALUES (1, 'ghcr.io', 'a/b', 'x', '{}'), (2, 'ghcr.io', 'a/b', 'y', '{}')"
        )
        raw_conn.execute(
            "INSERT INTO wit_interface (id, wit_text) VALUES (10, 'world a {}'), (11, 'world a {}')"
        )
        raw_conn.execute(
            "INSERT INTO image_wit_interface (image_id, wit_interface_id) VALUES (1, 10), (2, 11)"
        )

        run_migrations(raw_conn)

        assert raw_conn.execute("SELECT id FROM wit_interface").fetchall() == [(10,)]
        links = raw_conn.execute(
            "SELECT image_id, wit_interface_id FROM image_wit_interface ORDER BY image_id"
        ).fetchall()
        assert links == [(1, 10), (2, 10)]


class TestCatalogOpen:
    """Migrations as seen through SQLiteCatalog."""

    def test_open_reports_rescan_needed(self, raw_conn: sqlite3.Connection, db_path: Path) -> None:
        """Applying an interface-affecting migration asks for a rescan."""
        run_migrations(raw_conn, MIGRATIONS[:4])
        raw_conn.close()
        catalog = SQLiteCatalog(db_path)
        try:
            assert catalog.needs_interface_rescan
            assert catalog.migration_info().current == len(MIGRATIONS)
        finally:
            catalog.close()

    def test_reopen_needs_no_rescan(self, db_path: Path) -> None:
        SQLiteCatalog(db_path).close()
        catalog = SQLiteCatalog(db_path)
        try:
            assert not catalog.needs_interface_rescan
        finally:
            catalog.close()

    def test_open_refuses_newer_catalog(self, raw_conn: sqlite3.Connection, db_path: Path) -> None:
        run_migrations(raw_conn)
        raw_conn.execute("INSERT INTO migrations (version, applied_at) VALUES (99, 'later')")
        raw_conn.close()
        with pytest.raises(SchemaTooNewError):
            SQLiteCatalog(db_path)


class TestConcurrentOpen:
    """Several connections opening one catalog at the same time."""

    def test_versions_applied_meanwhile_are_skipped(
        self, raw_conn: sqlite3.Connection, db_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A version another connection commits after this run was planned is not applied twice."""
        real_applied_versions = migrations_module.get_applied_versions

        def stale_read(conn: sqlite3.Connection) -> set:
            applied = real_applied_versions(conn)
            monkeypatch.setattr(migrations_module, "get_applied_versions", real_applied_versions)
            other = sqlite3.connect(str(db_path), isolation_level=None)
            try:
                run_migrations(other)
            finally:
                other.close()
            return applied

        monkeypatch.setattr(migrations_module, "get_applied_versions", stale_read)

        results = run_migrations(raw_conn)

        assert [r.version for r in results] == [m.version for m in MIGRATIONS]
        assert not any(r.applied for r in results)
        assert _recorded_versions(raw_conn) == list(range(1, len(MIGRATIONS) + 1))
        assert verify_schema(raw_conn)

    def test_parallel_opens_apply_each_version_once(self, db_path: Path) -> None:
        barrier = threading.Barrier(4)

        def open_catalog(_: int) -> list:
            barrier.wait()
            catalog = SQLiteCatalog(db_path)
            try:
                return [r.version for r in catalog.applied_migrations if r.applied]
            finally:
                catalog.close()

        with ThreadPoolExecutor(max_workers=4) as pool:
            applied = list(pool.map(open_catalog, range(4)))

        versions = sorted(v for per_open in applied for v in per_open)
        assert versions == [m.version for m in MIGRATIONS]
        conn = sqlite3.connect(str(db_path))
        try:
            assert _recorded_versions(conn) == list(range(1, len(MIGRATIONS) + 1))
        finally:
            conn.close()
