# === NAVMAP v1 ===
# {
#   "module": "WasmPkg.PackageManager.network.credentials",
#   "purpose": "Resolve registry credentials: configured helpers, anonymous overrides, ambient Docker store",
#   "sections": [
#     {"id": "registryauth", "name": "RegistryAuth", "anchor": "class-registryauth", "kind": "class"},
#     {"id": "run-command", "name": "run_command", "anchor": "function-run-command", "kind": "function"},
#     {"id": "credentialhelper", "name": "CredentialHelper", "anchor": "class-credentialhelper", "kind": "class"},
#     {"id": "dockercredentialstore", "name": "DockerCredentialStore", "anchor": "class-dockercredentialstore", "kind": "class"},
#     {"id": "credentialresolver", "name": "CredentialResolver", "anchor": "class-credentialresolver", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Registry credential resolution.

Resolution follows a fixed priority, first match wins:

1. a credential helper configured for the registry;
2. the registry's ``anonymous`` override;
3. the ambient Docker credential store (``$DOCKER_CONFIG/config.json``);
4. anonymous access.

A configured helper that fails, or prints something unparsable, raises
:class:`~WasmPkg.PackageManager.errors.AuthFailedError` instead of silently
falling back to anonymous access.  The ambient store is best effort: any
failure other than an unsupported identity token falls through to anonymous.

Resolved credentials are cached by :class:`CredentialResolver` for its own
lifetime only.  Each sync session owns one resolver, so two sessions in the
same process never share credentials.
"""

from __future__ import annotations

import base64
import json
import logging
import os
import subprocess
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Optional, Protocol, Sequence, Union

from ..errors import AuthFailedError, CollaboratorError, Stage
from ..reference import credential_key_for
from ..settings import PackageManagerConfig, SplitCredentialHelper

logger = logging.getLogger(__name__)

CommandRunner = Callable[..., str]


@dataclass(frozen=True)
class RegistryAuth:
    """Credentials for one registry; both fields ``None`` means anonymous."""

    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    source: str = "anonymous"

    @property
    def anonymous(self) -> bool:
        return self.username is None and self.password is None

    def __repr__(self) -> str:
        if self.anonymous:
            return "RegistryAuth(anonymous)"
        return f"RegistryAuth(username={self.username!r}, password='***', source={self.source!r})"


ANONYMOUS = RegistryAuth()


def run_command(
    command: Union[str, Sequence[str]],
    *,
    input_text: Optional[str] = None,
    timeout: float = 30.0,
) -> str:
    """Run ``command`` and return its stdout.

    A string is run through the shell (helpers are configured as shell
    snippets such as ``op read ...``); a sequence is executed directly.

    Raises:
        CollaboratorError: If the process cannot be started, times out,
            exits non-zero, or prints non UTF-8 output.
    """
    shell = isinstance(command, str)
    label = command if shell else " ".join(command)
    try:
        completed = subprocess.run(
            command,
            shell=shell,
            input=input_text.encode("utf-8") if input_text is not None else None,
            capture_output=True,
            timeout=timeout,
            check=False,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        raise CollaboratorError(f"Failed to run {label!r}: {exc}", stage=Stage.AUTH) from exc
    if completed.returncode != 0:
        stderr = completed.stderr.decode("utf-8", errors="replace").strip()
        raise CollaboratorError(
            f"Command {label!r} exited with status {completed.returncode}: {stderr}",
            stage=Stage.AUTH,
        )
    try:
        return completed.stdout.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise CollaboratorError(f"Command {label!r} output was not UTF-8", stage=Stage.AUTH) from exc


class CredentialHelper:
    """A configured credential helper.

    Either one command printing ``[{"id": "username", "value": ...},
    {"id": "password", "value": ...}]`` or two commands printing the
    username and the password.  ``repr`` shows the commands, never their output.
    """

    def __init__(
        self,
        *,
        json_command: Optional[str] = None,
        username_command: Optional[str] = None,
        password_command: Optional[str] = None,
        runner: CommandRunner = run_command,
    ) -> None:
        if json_command is None and (username_command is None or password_command is None):
            raise ValueError("CredentialHelper needs a JSON command or both split commands")
        self.json_command = json_command
        self.username_command = username_command
        self.password_command = password_command
        self._runner = runner

    @classmethod
    def from_config(
        cls, config: Union[str, SplitCredentialHelper], runner: CommandRunner = run_command
    ) -> "CredentialHelper":
        if isinstance(config, str):
            return cls(json_command=config, runner=runner)
        return cls(
            username_command=config.username, password_command=config.password, runner=runner
        )

    def __repr__(self) -> str:
        if self.json_command is not None:
            return f"CredentialHelper(json={self.json_command!r})"
        return (
            f"CredentialHelper(username={self.username_command!r}, "
            f"password={self.password_command!r})"
        )

    def execute(self) -> RegistryAuth:
        """Run the helper.

        Raises:
            AuthFailedError: If a command fails or its output is malformed.
        """
        if self.json_command is not None:
            return self._execute_json(self.json_command)
        assert self.username_command is not None and self.password_command is not None
        username = self._run(self.username_command, "username").strip()
        password = self._run(self.password_command, "password").strip()
        return RegistryAuth(username=username, password=password, source="helper")

    def _run(self, command: str, what: str) -> str:
        try:
            return self._runner(command)
        except CollaboratorError as exc:
            raise AuthFailedError(f"Failed to execute {what} credential helper: {exc.message}") from exc

    def _execute_json(self, command: str) -> RegistryAuth:
        output = self._run(command, "JSON").strip()
        try:
            fields = json.loads(output)
        except ValueError as exc:
            preview = output[:100] + ("..." if len(output) > 100 else "")
            raise AuthFailedError(
                f"Failed to parse credential helper output as JSON: {preview}"
            ) from exc
        values: Dict[str, str] = {}
        if isinstance(fields, list):
            for item in fields:
                if isinstance(item, dict) and isinstance(item.get("id"), str):
                    values[item["id"]] = str(item.get("value", ""))
        if "username" not in values:
            raise AuthFailedError("Credential helper output missing 'username' field")
        if "password" not in values:
            raise AuthFailedError("Credential helper output missing 'password' field")
        return RegistryAuth(username=values["username"], password=values["password"], source="helper")


class AmbientCredentialStore(Protocol):
    def get(self, server: str) -> Optional[RegistryAuth]:
        ...


class DockerCredentialStore:
    """Read-only view of the Docker CLI credential configuration."""

    def __init__(
        self, config_dir: Optional[Path] = None, runner: CommandRunner = run_command
    ) -> None:
        if config_dir is None:
            env_dir = os.environ.get("DOCKER_CONFIG")
            config_dir = Path(env_dir) if env_dir else Path.home() / ".docker"
        self.config_path = Path(config_dir) / "config.json"
        self._runner = runner

    def _load(self) -> Dict[str, object]:
        try:
            payload = json.loads(self.config_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as exc:
            logger.debug(f"Ignoring unreadable Docker config {self.config_path}: {exc}")
            return {}
        return payload if isinstance(payload, dict) else {}

    def get(self, server: str) -> Optional[RegistryAuth]:
        """Look ``server`` up; returns ``None`` when nothing usable is stored.

        Raises:
            AuthFailedError: If the stored credential is an identity token.
            CollaboratorError: If a credential helper program fails.
        """
        config = self._load()
        cred_helpers = config.get("credHelpers") or {}
        helper = cred_helpers.get(server) if isinstance(cred_helpers, dict) else None
        helper = helper or config.get("credsStore")
        if isinstance(helper, str) and helper:
            auth = self._from_helper(helper, server)
            if auth is not None:
                return auth
        auths = config.get("auths") or {}
        if isinstance(auths, dict):
            entry = auths.get(server) or auths.get(f"https://{server}")
            if isinstance(entry, dict):
                return self._from_auth_entry(entry, server)
        return None

    def _from_helper(self, helper: str, server: str) -> Optional[RegistryAuth]:
        output = self._runner([f"docker-credential-{helper}", "get"], input_text=server)
        try:
            payload = json.loads(output)
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            logger.debug(f"docker-credential-{helper} returned non-JSON output for {server}")
            return None
        username = payload.get("Username")
        secret = payload.get("Secret")
        if username == "<token>":
            raise AuthFailedError(f"Identity tokens from docker-credential-{helper} are not supported")
        if not username or secret is None:
            return None
        return RegistryAuth(username=username, password=secret, source=f"docker-credential-{helper}")

    @staticmethod
    def _from_auth_entry(entry: Dict[str, object], server: str) -> Optional[RegistryAuth]:
        if entry.get("identitytoken"):
            raise AuthFailedError(f"Identity tokens in Docker config are not supported ({server})")
        username, password = entry.get("username"), entry.get("password")
        encoded = entry.get("auth")
        if isinstance(encoded, str) and encoded:
            try:
                decoded = base64.b64decode(encoded).decode("utf-8")
            except (ValueError, UnicodeDecodeError):
                logger.debug(f"Ignoring undecodable auth entry for {server}")
                return None
            username, _, password = decoded.partition(":")
        if not isinstance(username, str) or not isinstance(password, str) or not username:
            return None
        return RegistryAuth(username=username, password=password, source="docker-config")


class CredentialResolver:
    """Applies the fixed resolution order and caches answers per registry."""

    def __init__(
        self,
        config: Optional[PackageManagerConfig] = None,
        ambient: Optional[AmbientCredentialStore] = None,
        runner: CommandRunner = run_command,
    ) -> None:
        self.config = config or PackageManagerConfig()
        self.ambient = ambient
        self._runner = runner
        self._cache: Dict[str, RegistryAuth] = {}
        self._lock = threading.Lock()

    def resolve(self, registry: str) -> RegistryAuth:
        """Return credentials for ``registry``, resolving at most once per resolver.

        Raises:
            AuthFailedError: If a configured helper fails.
        """
        with self._lock:
            cached = self._cache.get(registry)
            if cached is not None:
                return cached
            auth = self._resolve_uncached(registry)
            self._cache[registry] = auth
        logger.debug(f"Resolved credentials for {registry}: {auth!r}")
        return auth

    def _resolve_uncached(self, registry: str) -> RegistryAuth:
        registry_config = self.config.get_registry(registry)
        if registry_config is not None and registry_config.credential_helper is not None:
            helper = CredentialHelper.from_config(registry_config.credential_helper, self._runner)
            return helper.execute()
        if registry_config is not None and registry_config.anonymous:
            return ANONYMOUS
        if self.ambient is not None:
            try:
                auth = self.ambient.get(credential_key_for(registry))
            except CollaboratorError as exc:
                logger.debug(f"Ambient credential lookup failed for {registry}: {exc}")
                auth = None
            if auth is not None:
                return auth
        return ANONYMOUS

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()


__all__ = [
    "RegistryAuth",
    "ANONYMOUS",
    "run_command",
    "CredentialHelper",
    "DockerCredentialStore",
    "CredentialResolver",
]
