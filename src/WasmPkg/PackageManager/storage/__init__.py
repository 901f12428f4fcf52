"""Digest-addressed blob storage."""

from .content_store import ContentStore, GcResult
from .layout import blob_path

__all__ = ["ContentStore", "GcResult", "blob_path"]
