"""Shared fixtures for the package_manager test suite."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator

import pytest

from tests.package_manager.registry_fakes import FakeRegistry, NoAmbientCredentials
from WasmPkg.PackageManager.catalog.store import SQLiteCatalog
from WasmPkg.PackageManager.logging_config import PACKAGE_LOGGER
from WasmPkg.PackageManager.manager import Manager
from WasmPkg.PackageManager.network.credentials import CredentialResolver
from WasmPkg.PackageManager.settings import PackageManagerConfig, PackageManagerSettings
from WasmPkg.PackageManager.storage.content_store import ContentStore
from WasmPkg.PackageManager.sync import SyncSession


@pytest.fixture(autouse=True)
def package_logger() -> Iterator[logging.Logger]:
    """Restore the package logger after a test, or ``Manager.open``, installs handlers on it."""
    logger = logging.getLogger(PACKAGE_LOGGER)
    handlers = list(logger.handlers)
    level = logger.level
    yield logger
    for handler in list(logger.handlers):
        if handler not in handlers:
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(level)


@pytest.fixture
def settings(tmp_path: Path) -> PackageManagerSettings:
    """Settings rooted in the test's temporary directory."""
    return PackageManagerSettings(
        data_dir=tmp_path / "data",
        config_file=tmp_path / "config" / "config.json",
        max_concurrent_layers=2,
    )


@pytest.fixture
def store(tmp_path: Path) -> Iterator[ContentStore]:
    content_store = ContentStore(tmp_path / "blobs")
    yield content_store
    content_store.close()


@pytest.fixture
def catalog(tmp_path: Path) -> Iterator[SQLiteCatalog]:
    db = SQLiteCatalog(tmp_path / "metadata.db3")
    yield db
    db.close()


@pytest.fixture
def registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def session(store: ContentStore, catalog: SQLiteCatalog, registry: FakeRegistry) -> SyncSession:
    return SyncSession(
        store,
        catalog,
        registry,
        CredentialResolver(PackageManagerConfig(), ambient=NoAmbientCredentials()),
        max_concurrent_layers=2,
    )


@pytest.fixture
def manager(settings: PackageManagerSettings, registry: FakeRegistry) -> Iterator[Manager]:
    opened = Manager.open(
        settings=settings,
        config=PackageManagerConfig(),
        transport=registry,
        credentials=NoAmbientCredentials(),
    )
    yield opened
    opened.close()
