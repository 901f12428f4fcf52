# === NAVMAP v1 ===
# {
#   "module": "WasmPkg.PackageManager.reference",
#   "purpose": "Parse and normalise OCI-style references into registry, repository, tag and digest",
#   "sections": [
#     {"id": "reference", "name": "Reference", "anchor": "class-reference", "kind": "class"},
#     {"id": "parse-reference", "name": "parse_reference", "anchor": "function-parse-reference", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Reference resolution.

A reference has the shape ``[registry/]repository[:tag|@digest]``.  Parsing
applies the normalisation rules used everywhere else in the package:

- no registry: the default registry (``docker.io`` unless configured);
- no tag and no digest: the default tag ``latest``;
- tag and digest: both are kept, the digest identifies the content;
- single-segment Docker Hub repositories become ``library/<name>``.

Examples:
    >>> parse_reference("ghcr.io/acme/widget:1.0.0").whole()
    'ghcr.io/acme/widget:1.0.0'
    >>> parse_reference("hello").whole()
    'docker.io/library/hello:latest'
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Optional

from .errors import InvalidReferenceError
from .oci import is_valid_digest
from .settings import DEFAULT_REGISTRY, DEFAULT_TAG

DOCKER_HUB_REGISTRIES = frozenset({"docker.io", "index.docker.io", "registry-1.docker.io"})
DOCKER_HUB_API_HOST = "index.docker.io"
# Docker Hub credentials are stored under this historical key, not the hostname.
DOCKER_HUB_CREDENTIAL_KEY = "https://index.docker.io/v1/"

_TAG_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9._-]{0,127}$")
_PATH_COMPONENT_RE = re.compile(r"^[a-z0-9]+(?:(?:\.|_|__|-+)[a-z0-9]+)*$")
_REGISTRY_RE = re.compile(r"^[A-Za-z0-9.-]+(?::[0-9]+)?$|^\[[0-9A-Fa-f:]+\](?::[0-9]+)?$")


@dataclass(frozen=True)
class Reference:
    """A normalised reference to an artifact in a registry."""

    registry: str
    repository: str
    tag: Optional[str] = None
    digest: Optional[str] = None

    def whole(self) -> str:
        """Render the canonical string form."""
        value = f"{self.registry}/{self.repository}"
        if self.tag:
            value += f":{self.tag}"
        if self.digest:
            value += f"@{self.digest}"
        return value

    def target(self) -> str:
        """The manifest reference sent to the registry: the digest if known, else the tag."""
        if self.digest:
            return self.digest
        return self.tag or DEFAULT_TAG

    def resolve_registry(self) -> str:
        """Host used for the Distribution API."""
        if self.registry in DOCKER_HUB_REGISTRIES:
            return DOCKER_HUB_API_HOST
        return self.registry

    def credential_key(self) -> str:
        """Key used to look credentials up in an ambient credential store."""
        return credential_key_for(self.registry)

    def package(self) -> str:
        return f"{self.registry}/{self.repository}"

    def with_digest(self, digest: str) -> "Reference":
        return replace(self, digest=digest)

    def with_tag(self, tag: Optional[str]) -> "Reference":
        return replace(self, tag=tag)

    def __str__(self) -> str:
        return self.whole()


def credential_key_for(registry: str) -> str:
    if registry in DOCKER_HUB_REGISTRIES:
        return DOCKER_HUB_CREDENTIAL_KEY
    return registry


def _looks_like_registry(component: str) -> bool:
    return "." in component or ":" in component or component == "localhost"


def parse_reference(
    value: str,
    *,
    default_registry: str = DEFAULT_REGISTRY,
    default_tag: str = DEFAULT_TAG,
) -> Reference:
    """Parse ``value`` into a normalised :class:`Reference`.

    Args:
        value: Reference string such as ``ghcr.io/acme/widget:1.0.0``.
        default_registry: Registry used when ``value`` names none.
        default_tag: Tag used when ``value`` has neither tag nor digest.

    Returns:
        The parsed reference.

    Raises:
        InvalidReferenceError: If any component violates the OCI grammar.
    """
    text = (value or "").strip()
    if not text:
        raise InvalidReferenceError("Reference is empty")

    remainder, digest = text, None
    if "@" in remainder:
        remainder, digest = remainder.split("@", 1)
        if not is_valid_digest(digest):
            raise InvalidReferenceError(f"Invalid digest in reference {value!r}: {digest!r}")

    tag: Optional[str] = None
    last_slash = remainder.rfind("/")
    last_colon = remainder.rfind(":")
    if last_colon > last_slash:
        remainder, tag = remainder[:last_colon], remainder[last_colon + 1 :]
        if not _TAG_RE.match(tag):
            raise InvalidReferenceError(f"Invalid tag in reference {value!r}: {tag!r}")

    parts = remainder.split("/")
    if len(parts) > 1 and _looks_like_registry(parts[0]):
        registry, path = parts[0], parts[1:]
        if not _REGISTRY_RE.match(registry):
            raise InvalidReferenceError(f"Invalid registry in reference {value!r}: {registry!r}")
    else:
        registry, path = default_registry, parts

    if not path or any(not _PATH_COMPONENT_RE.match(component) for component in path):
        raise InvalidReferenceError(f"Invalid repository in reference {value!r}")

    if registry in DOCKER_HUB_REGISTRIES:
        registry = "docker.io"
        if len(path) == 1:
            path = ["library", path[0]]

    if tag is None and digest is None:
        tag = default_tag

    return Reference(registry=registry, repository="/".join(path), tag=tag, digest=digest)


__all__ = [
    "Reference",
    "parse_reference",
    "credential_key_for",
    "DOCKER_HUB_CREDENTIAL_KEY",
    "DOCKER_HUB_API_HOST",
]
