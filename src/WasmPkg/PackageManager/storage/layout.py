"""Filesystem layout for the digest-addressed blob store.

Blobs live under a two-level fan-out keyed by their digest so no single
directory grows hot:

    <blobs_root>/sha256/e3/b0c44298fc1c14...

The layout is a pure function of the digest; nothing else about a blob is
encoded in its path.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator, Optional

from ..oci import SUPPORTED_ALGORITHMS, parse_digest

logger = logging.getLogger(__name__)

INDEX_FILENAME = "index.db3"
GC_LOCK_FILENAME = "gc.lock"
TEMP_SUFFIX = ".partial"


def blob_path(root_dir: Path, digest: str, *, create_parent: bool = False) -> Path:
    """Return the CAS path for ``digest``.

    Example:
        blob_path(Path("/data/blobs"), "sha256:e3b0c442...")
        -> Path("/data/blobs/sha256/e3/b0c442...")

    Args:
        root_dir: Blob store root directory.
        digest: ``algorithm:hex`` digest.
        create_parent: Create the fan-out directory when True.

    Raises:
        ValueError: If ``digest`` is malformed.
    """
    algorithm, hex_part = parse_digest(digest)
    path = Path(root_dir) / algorithm / hex_part[:2] / hex_part[2:]
    if create_parent:
        path.parent.mkdir(parents=True, exist_ok=True)
    return path


def digest_from_path(root_dir: Path, path: Path) -> Optional[str]:
    """Invert :func:`blob_path`; returns ``None`` for files outside the layout."""
    try:
        relative = Path(path).relative_to(root_dir)
    except ValueError:
        return None
    parts = relative.parts
    if len(parts) != 3 or parts[0] not in SUPPORTED_ALGORITHMS:
        return None
    algorithm, prefix, rest = parts
    digest = f"{algorithm}:{prefix}{rest}"
    try:
        parse_digest(digest)
    except ValueError:
        return None
    return digest


def iter_blob_files(root_dir: Path) -> Iterator[Path]:
    """Yield every finished blob file under ``root_dir`` (temp files are skipped)."""
    root = Path(root_dir)
    for algorithm in SUPPORTED_ALGORITHMS:
        algo_dir = root / algorithm
        if not algo_dir.is_dir():
            continue
        for fpath in algo_dir.glob("*/*"):
            if fpath.is_file() and not fpath.name.endswith(TEMP_SUFFIX):
                yield fpath
