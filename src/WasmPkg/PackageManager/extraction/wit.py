# === NAVMAP v1 ===
# {
#   "module": "WasmPkg.PackageManager.extraction.wit",
#   "purpose": "Derive deterministic WIT summaries and interface rows from a stored manifest and its layers",
#   "sections": [
#     {"id": "extractionresult", "name": "ExtractionResult", "anchor": "class-extractionresult", "kind": "class"},
#     {"id": "parse-target", "name": "parse_target", "anchor": "function-parse-target", "kind": "function"},
#     {"id": "render-wit", "name": "render_wit", "anchor": "function-render-wit", "kind": "function"},
#     {"id": "extract-interfaces", "name": "extract_interfaces", "anchor": "function-extract-interfaces", "kind": "function"},
#     {"id": "derive-interfaces", "name": "derive_interfaces", "anchor": "function-derive-interfaces", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Interface extraction.

Given a manifest and a way to load its blobs, produce zero or one WIT
summary documents plus the named import/export rows of the component.

Naming metadata comes, in order of preference, from the wasm OCI config
(``application/vnd.wasm.config.v0+json``, field ``component.target`` such as
``wasi:http/proxy@0.2.0``) and from the component's own ``component-name``
section.  A missing name is not an error; the document is stored with a null
world name.  Only a component that cannot be parsed at all raises
:class:`~WasmPkg.PackageManager.errors.ParseFailedError`.

Output is deterministic: names are de-duplicated and sorted, so re-running
extraction on the same bytes yields byte-identical text and therefore the same
content-addressed ``wit_interface`` row.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from ..errors import ParseFailedError
from ..oci import WASM_CONFIG, ImageManifest
from .decoder import decode_component

logger = logging.getLogger(__name__)

BlobLoader = Callable[[str], bytes]
ManifestLike = Union[ImageManifest, Dict[str, Any]]

WIT_HEADER = "// Inferred component interface"
# wit-component names the world of an unnamed component "root".
DEFAULT_WORLD = "root"


@dataclass(frozen=True)
class ExtractionResult:
    """Structured interface summary of one component."""

    wit_text: str
    world_name: Optional[str]
    package_name: Optional[str]
    imports: List[str] = field(default_factory=list)
    exports: List[str] = field(default_factory=list)

    @property
    def import_count(self) -> int:
        return len(self.imports)

    @property
    def export_count(self) -> int:
        return len(self.exports)

    @property
    def interfaces(self) -> List[Tuple[str, str]]:
        """``(name, "import"|"export")`` rows for the derived ``interface`` table."""
        return [(name, "import") for name in self.imports] + [
            (name, "export") for name in self.exports
        ]


def parse_target(target: str) -> Tuple[Optional[str], Optional[str]]:
    """Split a component target into ``(package_name, world_name)``.

    Examples:
        >>> parse_target("wasi:http/proxy@0.2.0")
        ('wasi:http@0.2.0', 'proxy')
        >>> parse_target("acme:widget")
        ('acme:widget', None)
    """
    target = target.strip()
    if not target:
        return None, None
    base, _, version = target.partition("@")
    suffix = f"@{version}" if version else ""
    if "/" in base:
        package, world = base.rsplit("/", 1)
        return (package + suffix) or None, world or None
    return base + suffix, None


def render_wit(
    world_name: Optional[str],
    package_name: Optional[str],
    imports: List[str],
    exports: List[str],
) -> str:
    """Render the summary document. Inputs must already be sorted and unique."""
    lines = [WIT_HEADER]
    if package_name:
        lines.append(f"package {package_name};")
        lines.append("")
    lines.append(f"world {world_name or DEFAULT_WORLD} {{")
    lines.extend(f"  import {name};" for name in imports)
    lines.extend(f"  export {name};" for name in exports)
    lines.append("}")
    return "\n".join(lines) + "\n"


def _as_manifest(manifest: ManifestLike) -> ImageManifest:
    if isinstance(manifest, ImageManifest):
        return manifest
    return ImageManifest.from_dict(manifest)


def _load_wasm_config(manifest: ImageManifest, load_blob: BlobLoader) -> Dict[str, Any]:
    """The ``component`` object of a wasm OCI config, or ``{}``."""
    config = manifest.config
    if config is None or config.media_type != WASM_CONFIG:
        return {}
    try:
        payload = json.loads(load_blob(config.digest))
    except (ValueError, UnicodeDecodeError) as exc:
        logger.warning(f"Ignoring unreadable wasm config {config.digest}: {exc}")
        return {}
    component = payload.get("component") if isinstance(payload, dict) else None
    return component if isinstance(component, dict) else {}


def _names(value: Any) -> Optional[List[str]]:
    if not isinstance(value, list) or not value:
        return None
    return sorted({str(item) for item in value if str(item)})


def extract_interfaces(
    manifest: ManifestLike, load_blob: BlobLoader
) -> Optional[ExtractionResult]:
    """Extract the interface summary of the first wasm layer.

    Args:
        manifest: Parsed manifest (or its JSON object).
        load_blob: Returns the stored bytes of a digest.

    Returns:
        The summary, or ``None`` if the manifest has no ``application/wasm``
        layer.

    Raises:
        ParseFailedError: If the component structure cannot be read.
    """
    manifest = _as_manifest(manifest)
    wasm_layers = manifest.wasm_layers()
    if not wasm_layers:
        return None

    component_config = _load_wasm_config(manifest, load_blob)
    decoded = decode_component(load_blob(wasm_layers[0].digest))

    package_name, world_name = parse_target(str(component_config.get("target") or ""))
    if world_name is None and decoded.name:
        world_name = decoded.name

    imports = _names(component_config.get("imports"))
    if imports is None:
        imports = sorted({item.name for item in decoded.imports if item.kind != "type"})
    exports = _names(component_config.get("exports"))
    if exports is None:
        exports = sorted({item.name for item in decoded.exports if item.kind != "type"})

    return ExtractionResult(
        wit_text=render_wit(world_name, package_name, imports, exports),
        world_name=world_name,
        package_name=package_name,
        imports=imports,
        exports=exports,
    )


def derive_interfaces(manifest: ManifestLike, load_blob: BlobLoader) -> List[Tuple[str, str]]:
    """``(name, "import"|"export")`` rows for a manifest.

    The wasm config's ``component.imports``/``component.exports`` lists are
    used when present, so rows can be rebuilt without reading the layer.

    Raises:
        ParseFailedError: If the layer has to be decoded and cannot be.
    """
    manifest = _as_manifest(manifest)
    if not manifest.wasm_layers():
        return []
    component_config = _load_wasm_config(manifest, load_blob)
    imports = _names(component_config.get("imports"))
    exports = _names(component_config.get("exports"))
    if imports is not None and exports is not None:
        return [(n, "import") for n in imports] + [(n, "export") for n in exports]
    result = extract_interfaces(manifest, load_blob)
    return result.interfaces if result is not None else []


__all__ = [
    "ExtractionResult",
    "ParseFailedError",
    "parse_target",
    "render_wit",
    "extract_interfaces",
    "derive_interfaces",
]
