"""
Catalog Row Types

Frozen dataclasses mirroring the metadata catalog tables, plus the tag
classification rule applied whenever a tag is written.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from ..reference import Reference


# Tag classification

class TagType(str, Enum):
    """Kind of artifact a tag points at, derived from the tag name."""

    RELEASE = "release"
    SIGNATURE = "signature"
    ATTESTATION = "attestation"

    @classmethod
    def classify(cls, tag: str) -> "TagType":
        """Classify ``tag`` by its suffix (cosign ``.sig`` / ``.att`` conventions).

        Examples:
            >>> TagType.classify("sha256-abc.sig")
            <TagType.SIGNATURE: 'signature'>
            >>> TagType.classify("1.0.0")
            <TagType.RELEASE: 'release'>
        """
        if tag.endswith(".sig"):
            return cls.SIGNATURE
        if tag.endswith(".att"):
            return cls.ATTESTATION
        return cls.RELEASE


class InterfaceType(str, Enum):
    IMPORT = "import"
    EXPORT = "export"


# Rows

@dataclass(frozen=True)
class ImageEntry:
    """A fetched or published artifact reference."""
    id: int
    registry: str
    repository: str
    mirror_registry: Optional[str]
    tag: Optional[str]
    digest: Optional[str]
    manifest: str

    def reference(self) -> Reference:
        return Reference(self.registry, self.repository, self.tag, self.digest)


@dataclass(frozen=True)
class KnownPackageTag:
    id: int
    known_package_id: int
    tag: str
    tag_type: TagType
    last_seen_at: str
    created_at: str


@dataclass(frozen=True)
class KnownPackage:
    """A registry/repository pair the user has seen, whether or not it is stored locally."""
    id: int
    registry: str
    repository: str
    description: Optional[str]
    last_seen_at: str
    created_at: str
    tags: List[KnownPackageTag] = field(default_factory=list)

    def reference(self) -> str:
        return f"{self.registry}/{self.repository}"

    def release_tags(self) -> List[str]:
        return [t.tag for t in self.tags if t.tag_type == TagType.RELEASE]


@dataclass(frozen=True)
class WitInterface:
    """Content-addressed interface document, shared by every image producing the same text."""
    id: int
    wit_text: str
    world_name: Optional[str]
    import_count: int
    export_count: int
    package_name: Optional[str]
    created_at: str


@dataclass(frozen=True)
class WitInterfaceUsage:
    interface: WitInterface
    image_references: List[str]


@dataclass(frozen=True)
class InterfaceEntry:
    """Derived row: one named import or export of an image."""
    id: int
    image_id: int
    name: str
    interface_type: InterfaceType
    created_at: str


@dataclass(frozen=True)
class CatalogCounts:
    images: int
    known_packages: int
    known_package_tags: int
    wit_interfaces: int
    interfaces: int


__all__ = [
    "TagType",
    "InterfaceType",
    "ImageEntry",
    "KnownPackage",
    "KnownPackageTag",
    "WitInterface",
    "WitInterfaceUsage",
    "InterfaceEntry",
    "CatalogCounts",
]
