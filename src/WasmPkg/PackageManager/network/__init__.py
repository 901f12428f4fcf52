"""Registry transport and credential resolution."""

from .client import ManifestResponse, OciRegistryClient, RegistryTransport
from .credentials import (
    ANONYMOUS,
    CredentialHelper,
    CredentialResolver,
    DockerCredentialStore,
    RegistryAuth,
)

__all__ = [
    "ManifestResponse",
    "OciRegistryClient",
    "RegistryTransport",
    "ANONYMOUS",
    "CredentialHelper",
    "CredentialResolver",
    "DockerCredentialStore",
    "RegistryAuth",
]
