# === NAVMAP v1 ===
# {
#   "module": "WasmPkg.PackageManager",
#   "purpose": "Package initialization for WasmPkg.PackageManager",
#   "sections": [
#     {"id": "getattr", "name": "__getattr__", "anchor": "function-getattr", "kind": "function"},
#     {"id": "dir", "name": "__dir__", "anchor": "function-dir", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Public API for the WebAssembly package manager engine.

The engine pulls WebAssembly components from OCI registries into a local
content-addressed store, records what it has seen in a SQLite catalog, and
extracts a summary of each component's imports and exports.  Most callers
only need :class:`Manager`::

    from WasmPkg.PackageManager import Manager

    with Manager.open() as manager:
        manager.pull("ghcr.io/acme/widget:1.0.0")
"""

from __future__ import annotations

from importlib import import_module
from typing import TYPE_CHECKING, Any, Dict, List

__version__ = "0.1.0"

_EXPORT_MAP: Dict[str, str] = {
    "Manager": ".manager",
    "StateInfo": ".manager",
    "StorageUsage": ".manager",
    "format_size": ".manager",
    "SyncSession": ".sync",
    "PullResult": ".sync",
    "PushResult": ".sync",
    "Reference": ".reference",
    "parse_reference": ".reference",
    "PackageManagerSettings": ".settings",
    "PackageManagerConfig": ".settings",
    "RegistryConfig": ".settings",
    "get_settings": ".settings",
    "setup_logging": ".logging_config",
    "PackageManagerError": ".errors",
    "Stage": ".errors",
}

__all__ = [*_EXPORT_MAP, "__version__"]

if TYPE_CHECKING:  # pragma: no cover - import for static analysis only
    from .errors import PackageManagerError, Stage
    from .logging_config import setup_logging
    from .manager import Manager, StateInfo, StorageUsage, format_size
    from .reference import Reference, parse_reference
    from .settings import PackageManagerConfig, PackageManagerSettings, RegistryConfig, get_settings
    from .sync import PullResult, PushResult, SyncSession


def __getattr__(name: str) -> Any:
    """Lazily import exports so ``import WasmPkg.PackageManager`` stays cheap."""
    module_name = _EXPORT_MAP.get(name)
    if module_name is None:
        raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
    value = getattr(import_module(module_name, __name__), name)
    globals()[name] = value
    return value


def __dir__() -> List[str]:
    return sorted(set(globals()) | set(_EXPORT_MAP))
