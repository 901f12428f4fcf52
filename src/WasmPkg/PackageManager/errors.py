# === NAVMAP v1 ===
# {
#   "module": "WasmPkg.PackageManager.errors",
#   "purpose": "Define the exception hierarchy used across storage, catalog, sync, and extraction",
#   "sections": [
#     {"id": "stage", "name": "Stage", "anchor": "STG", "kind": "api"},
#     {"id": "base", "name": "Base Exceptions", "anchor": "BAS", "kind": "api"},
#     {"id": "storage", "name": "Storage & Catalog Errors", "anchor": "STO", "kind": "api"},
#     {"id": "protocol", "name": "Protocol & Auth Errors", "anchor": "PRO", "kind": "api"},
#     {"id": "extraction", "name": "Extraction Errors", "anchor": "EXT", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Exception hierarchy shared across the content store, catalog, and registry sync.

Pulls and pushes are multi-stage pipelines that touch the network, the local
blob store, and the relational catalog.  Every failure raised from this package
derives from :class:`PackageManagerError` and carries the :class:`Stage` it was
raised in, so callers can report *where* a pull or push stopped and decide how
much partial progress is left behind (none, by construction, in the catalog).

Design Notes
------------
- Digest mismatches on read (:class:`CorruptError`) and on fetch
  (:class:`IntegrityError`) are correctness violations and are never retried.
- :class:`ConflictError` is only raised after the single constraint-race retry
  performed by the catalog has also failed.
- :class:`CollaboratorError` wraps failures of external collaborators (network
  transport, credential helper processes) so the state machine can abort cleanly.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Mapping, Optional

__all__ = [
    "Stage",
    "PackageManagerError",
    "ConfigurationError",
    "SchemaTooNewError",
    "SchemaGapError",
    "StorageError",
    "NotFoundError",
    "CorruptError",
    "ConflictError",
    "InvalidReferenceError",
    "UsageError",
    "AuthError",
    "AuthRequiredError",
    "AuthFailedError",
    "IntegrityError",
    "CollaboratorError",
    "ParseFailedError",
]


class Stage(str, Enum):
    """Pipeline stage in which a failure happened."""

    RESOLVE = "resolve"
    AUTH = "auth"
    FETCH = "fetch"
    VERIFY = "verify"
    STORE = "store"
    CATALOG = "catalog"
    EXTRACT = "extract"
    UPLOAD = "upload"


class PackageManagerError(RuntimeError):
    """Base exception for every failure raised by the package manager."""

    default_stage: Optional[Stage] = None

    def __init__(
        self,
        message: str,
        *,
        stage: Optional[Stage] = None,
        details: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage if stage is not None else self.default_stage
        self.details = dict(details or {})

    def __str__(self) -> str:
        if self.stage is None:
            return self.message
        return f"[{self.stage.value}] {self.message}"


class ConfigurationError(PackageManagerError):
    """Raised when settings, registry config files, or on-disk state are unusable."""


class SchemaTooNewError(ConfigurationError):
    """Raised when the catalog records migrations this build does not know about."""

    default_stage = Stage.CATALOG

    def __init__(self, message: str, *, applied_version: int, known_version: int) -> None:
        super().__init__(
            message,
            details={"applied_version": applied_version, "known_version": known_version},
        )
        self.applied_version = applied_version
        self.known_version = known_version


class SchemaGapError(ConfigurationError):
    """Raised when the applied migration versions do not form a prefix of the known sequence."""

    default_stage = Stage.CATALOG


class StorageError(PackageManagerError):
    """Raised when a local storage fault (SQLite or filesystem) cannot be recovered."""

    def __init__(
        self,
        message: str,
        *,
        path: Optional[str] = None,
        operation: Optional[str] = None,
        stage: Optional[Stage] = None,
    ) -> None:
        super().__init__(message, stage=stage, details={"path": path, "operation": operation})
        self.path = path
        self.operation = operation


class NotFoundError(PackageManagerError):
    """Raised when referenced content or a catalog row is absent."""


class CorruptError(PackageManagerError):
    """Raised when stored bytes no longer hash to the digest they are keyed by."""

    default_stage = Stage.STORE

    def __init__(self, message: str, *, digest: str, actual: str, path: Optional[str] = None):
        super().__init__(message, details={"digest": digest, "actual": actual, "path": path})
        self.digest = digest
        self.actual = actual
        self.path = path


class ConflictError(PackageManagerError):
    """Raised when a unique-constraint race survives the single retry."""

    default_stage = Stage.CATALOG


class InvalidReferenceError(PackageManagerError):
    """Raised when a reference string cannot be parsed."""

    default_stage = Stage.RESOLVE


class UsageError(PackageManagerError):
    """Raised when an operation is requested against state that does not allow it."""


class AuthError(PackageManagerError):
    """Base class for credential resolution and registry authentication failures."""

    default_stage = Stage.AUTH


class AuthRequiredError(AuthError):
    """Raised when the registry demands credentials and none were resolved."""


class AuthFailedError(AuthError):
    """Raised when a configured credential helper fails or credentials are rejected."""


class IntegrityError(PackageManagerError):
    """Raised when fetched bytes do not match the manifest-declared digest."""

    default_stage = Stage.VERIFY

    def __init__(self, message: str, *, expected: str, actual: str) -> None:
        super().__init__(message, details={"expected": expected, "actual": actual})
        self.expected = expected
        self.actual = actual


class CollaboratorError(PackageManagerError):
    """Raised when an external collaborator (network, helper process) fails."""

    def __init__(
        self,
        message: str,
        *,
        stage: Optional[Stage] = None,
        status_code: Optional[int] = None,
        url: Optional[str] = None,
    ) -> None:
        super().__init__(message, stage=stage, details={"status_code": status_code, "url": url})
        self.status_code = status_code
        self.url = url


class ParseFailedError(PackageManagerError):
    """Raised when a component's binary structure cannot be read."""

    default_stage = Stage.EXTRACT
