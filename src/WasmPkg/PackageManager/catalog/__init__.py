"""Relational metadata catalog and its migration engine."""

from .migrations import MIGRATIONS, Migration, MigrationInfo, MigrationResult, run_migrations
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
from .store import SQLiteCatalog

__all__ = [
    "MIGRATIONS",
    "Migration",
    "MigrationInfo",
    "MigrationResult",
    "run_migrations",
    "CatalogCounts",
    "ImageEntry",
    "InterfaceEntry",
    "InterfaceType",
    "KnownPackage",
    "KnownPackageTag",
    "TagType",
    "WitInterface",
    "WitInterfaceUsage",
    "SQLiteCatalog",
]
