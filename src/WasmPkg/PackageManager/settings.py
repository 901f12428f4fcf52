# === NAVMAP v1 ===
# {
#   "module": "WasmPkg.PackageManager.settings",
#   "purpose": "Environment settings, per-registry configuration file, and derived state paths",
#   "sections": [
#     {"id": "credentialhelper", "name": "CredentialHelperConfig", "anchor": "class-credentialhelperconfig", "kind": "class"},
#     {"id": "registryconfig", "name": "RegistryConfig", "anchor": "class-registryconfig", "kind": "class"},
#     {"id": "packagemanagerconfig", "name": "PackageManagerConfig", "anchor": "class-packagemanagerconfig", "kind": "class"},
#     {"id": "packagemanagersettings", "name": "PackageManagerSettings", "anchor": "class-packagemanagersettings", "kind": "class"},
#     {"id": "get-settings", "name": "get_settings", "anchor": "function-get-settings", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Configuration for the package manager.

Two layers of configuration exist:

1. :class:`PackageManagerSettings`: process settings read from ``WASM_*``
   environment variables via :mod:`pydantic_settings` (data directory, default
   registry, concurrency, HTTP timeouts, logging).
2. :class:`PackageManagerConfig`: the user's per-registry configuration file
   (``config.json`` under the platform config directory), describing credential
   helpers and anonymous overrides.  JSON is used so the file can be produced by
   password-manager tooling.

Environment variables use the ``WASM_`` prefix::

    WASM_DATA_DIR=/var/lib/wasm  →  data_dir=/var/lib/wasm
    WASM_MAX_CONCURRENT_LAYERS=8 →  max_concurrent_layers=8
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import ClassVar, Dict, List, Literal, Optional, Union

import platformdirs
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

APP_NAME = "wasm"
DEFAULT_REGISTRY = "docker.io"
DEFAULT_TAG = "latest"


# ============================================================================
# Registry configuration file
# ============================================================================


class SplitCredentialHelper(BaseModel):
    """Separate commands producing the username and the password on stdout."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid", frozen=True)

    username: str = Field(description="Command printing the username")
    password: str = Field(description="Command printing the password")


# A bare string is a single command printing the JSON credential document.
CredentialHelperConfig = Union[str, SplitCredentialHelper]


class RegistryConfig(BaseModel):
    """Per-registry authentication settings."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    credential_helper: Optional[CredentialHelperConfig] = Field(
        default=None,
        description="Command(s) producing credentials for this registry, e.g. 'op read ...'",
    )
    anonymous: bool = Field(
        default=False,
        description="Never send credentials to this registry, even if some are available",
    )


class PackageManagerConfig(BaseModel):
    """User configuration persisted as ``config.json``."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    registries: Dict[str, RegistryConfig] = Field(default_factory=dict)

    def get_registry(self, registry: str) -> Optional[RegistryConfig]:
        """Return configuration for ``registry`` or ``None`` when unconfigured."""
        return self.registries.get(registry)

    def set_registry(self, registry: str, config: RegistryConfig) -> None:
        self.registries[registry] = config

    def to_json(self) -> str:
        """Serialise, omitting unset helpers, false flags, and an empty registry map."""
        payload = self.model_dump(mode="json", exclude_defaults=True)
        return json.dumps(payload, indent=2, sort_keys=True)

    @classmethod
    def load_from_path(cls, path: Path) -> "PackageManagerConfig":
        """Read and validate a configuration file.

        Raises:
            ConfigurationError: If the file cannot be read or does not validate.
        """
        try:
            text = Path(path).read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigurationError(f"Failed to read config file {path}: {exc}") from exc
        try:
            return cls.model_validate_json(text)
        except ValidationError as exc:
            raise ConfigurationError(f"Failed to parse config file {path}: {exc}") from exc

    @classmethod
    def load(cls, path: Path) -> "PackageManagerConfig":
        """Load ``path``, writing a default configuration first if it does not exist."""
        path = Path(path)
        if path.exists():
            return cls.load_from_path(path)
        config = cls()
        config.save(path)
        logger.info(f"Created default config at {path}")
        return config

    def save(self, path: Path) -> None:
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(self.to_json(), encoding="utf-8")
        except OSError as exc:
            raise ConfigurationError(f"Failed to write config file {path}: {exc}") from exc


# ============================================================================
# Process settings
# ============================================================================


def _default_data_dir() -> Path:
    return Path(platformdirs.user_data_dir(APP_NAME))


def _default_config_file() -> Path:
    return Path(platformdirs.user_config_dir(APP_NAME)) / "config.json"


class PackageManagerSettings(BaseSettings):
    """Process-level settings resolved from ``WASM_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="WASM_",
        case_sensitive=False,
        extra="ignore",
    )

    data_dir: Path = Field(default_factory=_default_data_dir)
    config_file: Path = Field(default_factory=_default_config_file)
    default_registry: str = Field(default=DEFAULT_REGISTRY)
    default_tag: str = Field(default=DEFAULT_TAG)
    max_concurrent_layers: int = Field(default=4, description="Parallel blob fetches per pull")
    http_timeout: float = Field(default=30.0, description="Per-request timeout in seconds")
    http_retries: int = Field(default=3, description="Attempts for transient transport failures")
    plain_http_registries: List[str] = Field(
        default_factory=lambda: ["localhost", "127.0.0.1"],
        description="Registry hosts (without port) reached over plain HTTP",
    )
    log_level: str = Field(default="INFO")
    log_format: Literal["text", "json"] = Field(default="text")

    @field_validator("max_concurrent_layers", "http_retries")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("http_timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("http_timeout must be > 0")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {v}")
        return level

    @property
    def blobs_dir(self) -> Path:
        return self.data_dir / "blobs"

    @property
    def metadata_file(self) -> Path:
        return self.data_dir / "metadata.db3"


_settings_lock = threading.Lock()
_settings: Optional[PackageManagerSettings] = None


def get_settings() -> PackageManagerSettings:
    """Return the process-wide settings, reading the environment on first use."""
    global _settings
    with _settings_lock:
        if _settings is None:
            _settings = PackageManagerSettings()
        return _settings


def invalidate_settings_cache() -> None:
    """Forget cached settings so the next :func:`get_settings` re-reads the environment."""
    global _settings
    with _settings_lock:
        _settings = None
