# === NAVMAP v1 ===
# {
#   "module": "WasmPkg.PackageManager.oci",
#   "purpose": "OCI media types, digest helpers, and manifest descriptor parsing",
#   "sections": [
#     {"id": "media-types", "name": "Media types", "anchor": "MED", "kind": "constants"},
#     {"id": "digests", "name": "Digest helpers", "anchor": "DIG", "kind": "helpers"},
#     {"id": "descriptor", "name": "Descriptor", "anchor": "class-descriptor", "kind": "class"},
#     {"id": "manifest", "name": "ImageManifest", "anchor": "class-imagemanifest", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""OCI media types and manifest helpers.

Single source of truth for the media types the package manager speaks, the
digest format (``algorithm:hex``) used as the content store key, and a small
typed view over image manifests.
"""

from __future__ import annotations

import hashlib
import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .errors import IntegrityError, UsageError

# ============================================================================
# Media types
# ============================================================================

OCI_IMAGE_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
OCI_IMAGE_INDEX = "application/vnd.oci.image.index.v1+json"
DOCKER_MANIFEST_V2 = "application/vnd.docker.distribution.manifest.v2+json"
DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
OCI_EMPTY_CONFIG = "application/vnd.oci.empty.v1+json"

WASM_LAYER = "application/wasm"
WASM_CONFIG = "application/vnd.wasm.config.v0+json"

MANIFEST_ACCEPT = ", ".join(
    [OCI_IMAGE_MANIFEST, DOCKER_MANIFEST_V2, OCI_IMAGE_INDEX, DOCKER_MANIFEST_LIST]
)
INDEX_MEDIA_TYPES = frozenset({OCI_IMAGE_INDEX, DOCKER_MANIFEST_LIST})

# ============================================================================
# Digest helpers
# ============================================================================

SUPPORTED_ALGORITHMS = {"sha256": 64, "sha512": 128}
DEFAULT_ALGORITHM = "sha256"
_DIGEST_RE = re.compile(r"^(?P<algorithm>[a-z0-9]+(?:[.+_-][a-z0-9]+)*):(?P<hex>[a-f0-9]+)$")


def parse_digest(digest: str) -> Tuple[str, str]:
    """Split ``digest`` into ``(algorithm, hex)``.

    Raises:
        ValueError: If the digest is malformed, uses an unsupported algorithm,
            or has the wrong hex length for its algorithm.
    """
    match = _DIGEST_RE.match(digest or "")
    if not match:
        raise ValueError(f"Invalid digest: {digest!r}")
    algorithm, hex_part = match.group("algorithm"), match.group("hex")
    expected_len = SUPPORTED_ALGORITHMS.get(algorithm)
    if expected_len is None:
        raise ValueError(f"Unsupported digest algorithm: {algorithm}")
    if len(hex_part) != expected_len:
        raise ValueError(f"Invalid {algorithm} digest length: {digest!r}")
    return algorithm, hex_part


def is_valid_digest(digest: str) -> bool:
    try:
        parse_digest(digest)
    except ValueError:
        return False
    return True


def compute_digest(data: bytes, algorithm: str = DEFAULT_ALGORITHM) -> str:
    """Return ``algorithm:hexdigest`` for ``data``."""
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise ValueError(f"Unsupported digest algorithm: {algorithm}")
    return f"{algorithm}:{hashlib.new(algorithm, data).hexdigest()}"


def verify_digest(data: bytes, expected: str) -> str:
    """Hash ``data`` with the algorithm of ``expected`` and compare.

    Returns:
        The (matching) digest.

    Raises:
        IntegrityError: If the bytes hash to something else.
    """
    algorithm, _ = parse_digest(expected)
    actual = compute_digest(data, algorithm)
    if actual != expected:
        raise IntegrityError(
            f"Digest mismatch: expected {expected}, got {actual}",
            expected=expected,
            actual=actual,
        )
    return actual


# ============================================================================
# Manifest model
# ============================================================================


@dataclass(frozen=True)
class Descriptor:
    """A content descriptor from a manifest (config or layer)."""

    media_type: str
    digest: str
    size: int
    annotations: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Descriptor":
        try:
            digest = str(payload["digest"])
            size = int(payload.get("size", 0))
        except (KeyError, TypeError, ValueError) as exc:
            raise UsageError(f"Malformed descriptor: {payload!r}") from exc
        if not is_valid_digest(digest):
            raise UsageError(f"Descriptor has invalid digest: {digest!r}")
        return cls(
            media_type=str(payload.get("mediaType", "")),
            digest=digest,
            size=size,
            annotations=dict(payload.get("annotations") or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "mediaType": self.media_type,
            "digest": self.digest,
            "size": self.size,
        }
        if self.annotations:
            payload["annotations"] = dict(self.annotations)
        return payload


@dataclass(frozen=True)
class ImageManifest:
    """Typed view of an OCI image manifest."""

    media_type: str
    config: Optional[Descriptor]
    layers: List[Descriptor]
    annotations: Dict[str, str] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def parse(cls, text: str) -> "ImageManifest":
        """Parse manifest JSON text.

        Raises:
            UsageError: If the document is not JSON, is an image index, or
                its descriptors are malformed.
        """
        try:
            payload = json.loads(text)
        except (TypeError, ValueError) as exc:
            raise UsageError(f"Manifest is not valid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise UsageError("Manifest must be a JSON object")
        return cls.from_dict(payload)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ImageManifest":
        media_type = str(payload.get("mediaType") or OCI_IMAGE_MANIFEST)
        if media_type in INDEX_MEDIA_TYPES or "manifests" in payload:
            raise UsageError("Image indexes (multi-platform manifests) are not supported")
        config_payload = payload.get("config")
        config = Descriptor.from_dict(config_payload) if isinstance(config_payload, dict) else None
        layers = [Descriptor.from_dict(layer) for layer in payload.get("layers") or []]
        return cls(
            media_type=media_type,
            config=config,
            layers=layers,
            annotations=dict(payload.get("annotations") or {}),
            raw=payload,
        )

    def blob_descriptors(self) -> List[Descriptor]:
        """Every descriptor referenced by the manifest, config first, de-duplicated."""
        seen = set()
        result: List[Descriptor] = []
        candidates = ([self.config] if self.config is not None else []) + list(self.layers)
        for descriptor in candidates:
            if descriptor.digest in seen:
                continue
            seen.add(descriptor.digest)
            result.append(descriptor)
        return result

    def wasm_layers(self) -> List[Descriptor]:
        return [layer for layer in self.layers if layer.media_type == WASM_LAYER]


def referenced_digests(manifest_text: str) -> List[str]:
    """Digests referenced by a stored manifest, or an empty list if it cannot be parsed."""
    try:
        manifest = ImageManifest.parse(manifest_text)
    except UsageError:
        return []
    return [descriptor.digest for descriptor in manifest.blob_descriptors()]


__all__ = [
    "OCI_IMAGE_MANIFEST",
    "OCI_IMAGE_INDEX",
    "DOCKER_MANIFEST_V2",
    "DOCKER_MANIFEST_LIST",
    "OCI_EMPTY_CONFIG",
    "WASM_LAYER",
    "WASM_CONFIG",
    "MANIFEST_ACCEPT",
    "SUPPORTED_ALGORITHMS",
    "DEFAULT_ALGORITHM",
    "parse_digest",
    "is_valid_digest",
    "compute_digest",
    "verify_digest",
    "Descriptor",
    "ImageManifest",
    "referenced_digests",
]
