"""
Structured Logging Utilities

This module centralizes logging setup for the package manager. It provides
helpers for masking credentials in structured payloads, a JSON formatter for
machine-readable log lines, and a ``setup_logging`` entry point that installs
console and optional rotating file handlers on the package logger.
"""

from __future__ import annotations

import json
import logging
import sys
import uuid
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Optional

PACKAGE_LOGGER = "WasmPkg.PackageManager"
_MASK = "***masked***"
_SENSITIVE_KEYS = {"authorization", "password", "secret", "token", "identitytoken", "auth"}


def mask_sensitive_data(payload: Dict[str, object]) -> Dict[str, object]:
    """Remove secrets from structured payloads prior to logging.

    Args:
        payload: Arbitrary key-value pairs that may contain registry
            credentials or bearer tokens.

    Returns:
        Copy of the payload where secret fields are replaced with
        `***masked***`. Nested dictionaries are masked recursively.

    Examples:
        >>> mask_sensitive_data({"password": "hunter2", "registry": "ghcr.io"})
        {'password': '***masked***', 'registry': 'ghcr.io'}
    """
    masked: Dict[str, object] = {}
    for key, value in payload.items():
        lower = key.lower()
        if lower in _SENSITIVE_KEYS:
            masked[key] = _MASK
        elif isinstance(value, dict):
            masked[key] = mask_sensitive_data(value)
        elif isinstance(value, str) and value.lower().startswith(("bearer ", "basic ")):
            masked[key] = _MASK
        else:
            masked[key] = value
    return masked


def generate_session_id() -> str:
    """Return a twelve character identifier linking the log lines of one sync session."""
    return uuid.uuid4().hex[:12]


class JSONFormatter(logging.Formatter):
    """Formatter emitting one JSON object per log record."""

    def format(self, record: logging.LogRecord) -> str:
        now = datetime.now(timezone.utc)
        log_obj = {
            "timestamp": now.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "session_id": getattr(record, "session_id", None),
            "reference": getattr(record, "reference", None),
            "stage": getattr(record, "stage", None),
        }
        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            log_obj.update(extra_fields)
        if record.exc_info:
            log_obj["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(mask_sensitive_data(log_obj), default=str)


def setup_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_dir: Optional[Path] = None,
    max_log_size_mb: float = 10.0,
) -> logging.Logger:
    """Configure handlers for the package manager logger.

    Args:
        level: Logging level name.
        fmt: ``"text"`` for human readable console output or ``"json"`` for
            one JSON object per line.
        log_dir: Optional directory receiving a rotating ``wasmpkg.jsonl``
            file that is always JSON formatted.
        max_log_size_mb: Rotation threshold for the file handler.

    Returns:
        The configured package logger. Calling this again replaces the
        handlers installed by the previous call.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(logger.handlers):
        if getattr(handler, "_wasmpkg_managed", False):
            logger.removeHandler(handler)
            handler.close()

    stream_handler = logging.StreamHandler(sys.stderr)
    if fmt == "json":
        stream_handler.setFormatter(JSONFormatter())
    else:
        stream_handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    stream_handler._wasmpkg_managed = True  # type: ignore[attr-defined]
    logger.addHandler(stream_handler)

    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_dir / "wasmpkg.jsonl",
            maxBytes=int(max_log_size_mb * 1024 * 1024),
            backupCount=5,
        )
        file_handler.setFormatter(JSONFormatter())
        file_handler._wasmpkg_managed = True  # type: ignore[attr-defined]
        logger.addHandler(file_handler)

    # filelock is chatty at DEBUG during GC passes
    logging.getLogger("filelock").setLevel(logging.INFO)
    logger.propagate = True
    return logger


__all__ = ["setup_logging", "mask_sensitive_data", "generate_session_id", "JSONFormatter"]
