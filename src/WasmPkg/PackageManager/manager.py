# === NAVMAP v1 ===
# {
#   "module": "WasmPkg.PackageManager.manager",
#   "purpose": "Facade wiring settings, content store, catalog and sync session into outward queries",
#   "sections": [
#     {"id": "stateinfo", "name": "StateInfo", "anchor": "class-stateinfo", "kind": "class"},
#     {"id": "storageusage", "name": "StorageUsage", "anchor": "class-storageusage", "kind": "class"},
#     {"id": "format-size", "name": "format_size", "anchor": "function-format-size", "kind": "function"},
#     {"id": "manager", "name": "Manager", "anchor": "class-manager", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Package manager facade.

:class:`Manager` is what a CLI or TUI talks to.  It owns one content store,
one catalog, one registry transport and one :class:`~.sync.SyncSession`, and
exposes the outward queries (list, search, usage, state) alongside pull, push
and cleanup.

Cleanup follows a fixed order so it can run while pulls are in flight::

    snapshot_time = now
    with store.gc_lock():
        live = catalog.referenced_digests()  # one read snapshot
        store.remove_unreferenced(live, snapshot_time=snapshot_time)
    catalog.prune_wit_interfaces()

Blobs written after ``snapshot_time`` are never removed.  Pulls commit their
catalog rows under the same lock, so the live set either includes a pull's
image or the pull re-checks its blobs after the sweep.  Known packages and
their tags are discovery data that cleanup leaves alone.
"""

from __future__ import annotations

import logging
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from types import TracebackType
from typing import List, Optional, Type

from .catalog.models import ImageEntry, KnownPackage, WitInterfaceUsage
from .catalog.store import SQLiteCatalog
from .errors import Stage, StorageError, UsageError
from .logging_config import setup_logging
from .network.client import OciRegistryClient, RegistryTransport
from .network.credentials import AmbientCredentialStore, CredentialResolver, DockerCredentialStore
from .oci import ImageManifest
from .reference import Reference
from .settings import PackageManagerConfig, PackageManagerSettings, get_settings
from .storage.content_store import ContentStore, GcResult
from .sync import PullResult, PushResult, ReferenceLike, SyncSession

logger = logging.getLogger(__name__)


# ============================================================================
# Result types
# ============================================================================


@dataclass(frozen=True)
class StateInfo:
    """Where the package manager keeps its state."""

    executable: str
    data_dir: Path
    blobs_dir: Path
    metadata_file: Path
    config_file: Path
    migration_current: int
    migration_total: int


@dataclass(frozen=True)
class StorageUsage:
    blob_count: int
    total_bytes: int
    image_count: int
    known_package_count: int
    wit_interface_count: int

    @property
    def total_size(self) -> str:
        return format_size(self.total_bytes)


def format_size(num_bytes: int) -> str:
    """Human readable size with binary units.

    Examples:
        >>> format_size(0)
        '0 B'
        >>> format_size(1536 * 1024)
        '1.50 MB'
    """
    kb = 1024.0
    mb = kb * 1024
    gb = mb * 1024
    if num_bytes >= gb:
        return f"{num_bytes / gb:.2f} GB"
    if num_bytes >= mb:
        return f"{num_bytes / mb:.2f} MB"
    if num_bytes >= kb:
        return f"{num_bytes / kb:.2f} KB"
    return f"{num_bytes} B"


# ============================================================================
# Manager
# ============================================================================


class Manager:
    """Entry point for every package manager operation."""

    def __init__(
        self,
        settings: PackageManagerSettings,
        config: PackageManagerConfig,
        store: ContentStore,
        catalog: SQLiteCatalog,
        transport: RegistryTransport,
        credentials: Optional[AmbientCredentialStore] = None,
    ) -> None:
        self.settings = settings
        self.config = config
        self.store = store
        self.catalog = catalog
        self.transport = transport
        self.session = SyncSession(
            store,
            catalog,
            transport,
            CredentialResolver(config, ambient=credentials),
            max_concurrent_layers=settings.max_concurrent_layers,
            default_registry=settings.default_registry,
            default_tag=settings.default_tag,
        )
        self._owns_transport = False

    @classmethod
    def open(
        cls,
        settings: Optional[PackageManagerSettings] = None,
        config: Optional[PackageManagerConfig] = None,
        transport: Optional[RegistryTransport] = None,
        credentials: Optional[AmbientCredentialStore] = None,
        configure_logging: bool = True,
    ) -> "Manager":
        """Open (creating if needed) the state under ``settings.data_dir``.

        Args:
            settings: Process settings; defaults to :func:`get_settings`.
            config: Registry configuration; defaults to loading
                ``settings.config_file``.
            transport: Registry transport; defaults to an
                :class:`OciRegistryClient` built from ``settings``.
            credentials: Ambient credential store; defaults to the Docker
                CLI configuration.
            configure_logging: Install package log handlers from
                ``settings.log_level`` and ``settings.log_format``.  Embedders
                that own logging pass ``False``.

        Raises:
            StorageError: If the data directory, store or catalog cannot be opened.
            SchemaTooNewError: If the catalog was migrated by a newer build.
            ConfigurationError: If the configuration file is invalid.
        """
        settings = settings or get_settings()
        if configure_logging:
            setup_logging(level=settings.log_level, fmt=settings.log_format)
        if config is None:
            config = PackageManagerConfig.load(settings.config_file)
        try:
            settings.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(
                f"Cannot create data directory {settings.data_dir}: {exc}",
                path=str(settings.data_dir),
                operation="open",
                stage=Stage.STORE,
            ) from exc

        store = ContentStore(settings.blobs_dir)
        try:
            catalog = SQLiteCatalog(settings.metadata_file)
        except BaseException:
            store.close()
            raise

        owns_transport = transport is None
        if transport is None:
            transport = OciRegistryClient(
                timeout=settings.http_timeout,
                retries=settings.http_retries,
                plain_http_registries=settings.plain_http_registries,
            )
        if credentials is None:
            credentials = DockerCredentialStore()

        manager = cls(settings, config, store, catalog, transport, credentials)
        manager._owns_transport = owns_transport
        if catalog.needs_interface_rescan:
            logger.info("Catalog migration requested an interface rescan")
            manager.rescan_interfaces()
        return manager

    # ------------------------------------------------------------------
    # Registry operations
    # ------------------------------------------------------------------

    def pull(self, reference: ReferenceLike) -> PullResult:
        return self.session.pull(reference)

    def push(self, reference: ReferenceLike, source: Optional[ReferenceLike] = None) -> PushResult:
        return self.session.push(reference, source)

    def list_tags(self, reference: ReferenceLike) -> List[str]:
        return self.session.list_tags(reference)

    # ------------------------------------------------------------------
    # Local queries
    # ------------------------------------------------------------------

    def list_images(self) -> List[ImageEntry]:
        return self.catalog.list_images()

    def list_known_packages(self, limit: int = 100) -> List[KnownPackage]:
        return self.catalog.list_known_packages(limit)

    def search_packages(self, query: str, limit: int = 100) -> List[KnownPackage]:
        return self.catalog.search_known_packages(query, limit)

    def list_wit_interfaces(self) -> List[WitInterfaceUsage]:
        return self.catalog.list_wit_interfaces_with_images()

    def delete(self, reference: ReferenceLike) -> int:
        """Forget the local image rows for ``reference``.

        Blobs stay in the content store until the next :meth:`clean`.
        """
        ref: Reference = self.session.parse(reference)
        removed = self.catalog.delete_image(ref)
        if removed:
            self.catalog.prune_wit_interfaces()
        return removed

    def state_info(self) -> StateInfo:
        info = self.catalog.migration_info()
        return StateInfo(
            executable=sys.argv[0] if sys.argv and sys.argv[0] else sys.executable,
            data_dir=self.settings.data_dir,
            blobs_dir=self.settings.blobs_dir,
            metadata_file=self.settings.metadata_file,
            config_file=self.settings.config_file,
            migration_current=info.current,
            migration_total=info.total,
        )

    def storage_usage(self) -> StorageUsage:
        blob_count, total_bytes = self.store.usage()
        counts = self.catalog.counts()
        return StorageUsage(
            blob_count=blob_count,
            total_bytes=total_bytes,
            image_count=counts.images,
            known_package_count=counts.known_packages,
            wit_interface_count=counts.wit_interfaces,
        )

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def clean(self, dry_run: bool = False) -> GcResult:
        """Remove blobs no stored manifest references.

        Args:
            dry_run: Report what would be removed without deleting.

        Returns:
            :class:`GcResult` from the content store.
        """
        snapshot_time = time.time()
        with self.store.gc_lock("clean"):
            live = self.catalog.referenced_digests()
            result = self.store.remove_unreferenced(
                live, dry_run=dry_run, snapshot_time=snapshot_time
            )
        if not dry_run:
            pruned = self.catalog.prune_wit_interfaces()
            if pruned:
                logger.info(f"Pruned {pruned} unlinked interface documents")
        return result

    def rescan_interfaces(self) -> int:
        """Re-extract interfaces for every stored image.

        Runs the same extraction a pull does, so each image gets its WIT
        document, its link to it and its derived interface rows.  Images
        whose manifest or component cannot be parsed, or whose blobs are
        missing or corrupt, end up with no interfaces; the failure is logged
        and the rescan continues.

        Returns:
            Total number of interface rows written.
        """
        total = 0
        for image in self.catalog.list_images():
            try:
                manifest = ImageManifest.parse(image.manifest)
            except UsageError as exc:
                logger.warning(f"Skipping interfaces of image {image.id}: {exc}")
                self.catalog.unlink_interfaces(image.id)
                self.catalog.replace_interfaces(image.id, [])
                continue
            index = self.session.index_interfaces(image.reference(), image.id, manifest)
            total += index.interface_count
        pruned = self.catalog.prune_wit_interfaces()
        logger.info(f"Rescanned interfaces: {total} rows, {pruned} stale documents pruned")
        return total

    def verify_store(self) -> List[str]:
        """Digests whose stored bytes no longer match; see :meth:`ContentStore.verify_all`."""
        self.store.sync_index()
        return self.store.verify_all()

    def close(self) -> None:
        if self._owns_transport and isinstance(self.transport, OciRegistryClient):
            self.transport.close()
        self.catalog.close()
        self.store.close()

    def __enter__(self) -> "Manager":
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.close()


__all__ = ["Manager", "StateInfo", "StorageUsage", "format_size"]
