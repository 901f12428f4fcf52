# === NAVMAP v1 ===
# {
#   "module": "WasmPkg.PackageManager.network.client",
#   "purpose": "OCI Distribution API client over httpx with bearer-token auth and tenacity retries",
#   "sections": [
#     {"id": "manifestresponse", "name": "ManifestResponse", "anchor": "class-manifestresponse", "kind": "class"},
#     {"id": "registrytransport", "name": "RegistryTransport", "anchor": "class-registrytransport", "kind": "class"},
#     {"id": "retry", "name": "build_retrying", "anchor": "function-build-retrying", "kind": "function"},
#     {"id": "ociregistryclient", "name": "OciRegistryClient", "anchor": "class-ociregistryclient", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""OCI Distribution client.

:class:`RegistryTransport` is the seam the sync protocol talks to; tests swap
in an in-memory fake.  :class:`OciRegistryClient` implements it with
:mod:`httpx`:

- Bearer-token challenges (``WWW-Authenticate: Bearer realm=...``) are
  answered by fetching a token from the realm, using basic auth when
  credentials were resolved.  Tokens are cached per host, scope and user.
- Transient failures (connect/read errors, 429, 5xx) are retried with
  :mod:`tenacity`; once attempts are exhausted they surface as
  :class:`~WasmPkg.PackageManager.errors.CollaboratorError`.
- 404 maps to :class:`~WasmPkg.PackageManager.errors.NotFoundError`, 401 and
  403 to ``AuthRequiredError`` (anonymous) or ``AuthFailedError``.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple

import httpx
import tenacity
from tenacity import RetryCallState, retry_if_exception, retry_if_result

from ..errors import (
    AuthFailedError,
    AuthRequiredError,
    CollaboratorError,
    NotFoundError,
    Stage,
)
from ..oci import MANIFEST_ACCEPT, OCI_IMAGE_MANIFEST
from ..reference import Reference
from .credentials import ANONYMOUS, RegistryAuth

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})
_CHALLENGE_PARAM_RE = re.compile(r'(\w+)="([^"]*)"')
_TAGS_PAGE_SIZE = 100


@dataclass(frozen=True)
class ManifestResponse:
    text: str
    media_type: str
    digest: Optional[str] = None


class RegistryTransport(Protocol):
    """Repository-scoped registry operations consumed by the sync protocol."""

    def get_manifest(self, reference: Reference, auth: RegistryAuth) -> ManifestResponse:
        ...

    def get_blob(self, reference: Reference, digest: str, auth: RegistryAuth) -> bytes:
        ...

    def blob_exists(self, reference: Reference, digest: str, auth: RegistryAuth) -> bool:
        ...

    def put_blob(self, reference: Reference, digest: str, data: bytes, auth: RegistryAuth) -> None:
        ...

    def put_manifest(
        self, reference: Reference, manifest: str, media_type: str, auth: RegistryAuth
    ) -> Optional[str]:
        ...

    def list_tags(self, reference: Reference, auth: RegistryAuth) -> List[str]:
        ...


def _is_transient(exception: BaseException) -> bool:
    return isinstance(
        exception,
        (httpx.ConnectError, httpx.ReadError, httpx.WriteError, httpx.TimeoutException,
         httpx.RemoteProtocolError),
    )


def _before_sleep(retry_state: RetryCallState) -> None:
    next_action = retry_state.next_action
    wait_ms = int(next_action.sleep * 1000) if next_action is not None else 0
    logger.warning(
        f"registry retry attempt={retry_state.attempt_number} wait_ms={wait_ms} "
        f"elapsed_s={retry_state.seconds_since_start:.1f}"
    )


def _return_last_outcome(retry_state: RetryCallState) -> Any:
    assert retry_state.outcome is not None
    return retry_state.outcome.result()


def build_retrying(
    attempts: int,
    *,
    multiplier: float = 0.5,
    max_wait: float = 8.0,
    sleep: Callable[[float], None] = time.sleep,
) -> tenacity.Retrying:
    """Build the retry controller for one registry request.

    Args:
        attempts: Total attempts including the first.
        multiplier: Exponential backoff multiplier in seconds.
        max_wait: Cap on a single wait.
        sleep: Sleep function (tests pass a no-op).

    Returns:
        A :class:`tenacity.Retrying` that returns the last response when
        retryable statuses persist and re-raises the last transport error.
    """
    return tenacity.Retrying(
        retry=retry_if_exception(_is_transient)
        | retry_if_result(lambda response: response.status_code in RETRYABLE_STATUSES),
        stop=tenacity.stop_after_attempt(attempts),
        wait=tenacity.wait_random_exponential(multiplier=multiplier, max=max_wait),
        sleep=sleep,
        before_sleep=_before_sleep,
        retry_error_callback=_return_last_outcome,
        reraise=True,
    )


def _parse_challenge(header: str) -> Tuple[str, Dict[str, str]]:
    scheme, _, rest = header.strip().partition(" ")
    return scheme.lower(), dict(_CHALLENGE_PARAM_RE.findall(rest))


class OciRegistryClient:
    """httpx implementation of :class:`RegistryTransport`."""

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        retries: int = 3,
        plain_http_registries: Sequence[str] = ("localhost", "127.0.0.1"),
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.retries = retries
        self.plain_http_registries = {host.lower() for host in plain_http_registries}
        self._sleep = sleep
        self._tokens: Dict[Tuple[str, str, Optional[str]], str] = {}
        self._tokens_lock = threading.Lock()
        self.client = httpx.Client(
            transport=transport,
            timeout=httpx.Timeout(timeout, connect=min(timeout, 10.0)),
            limits=httpx.Limits(max_connections=16, max_keepalive_connections=8),
            follow_redirects=True,
            headers={"User-Agent": "wasmpkg"},
        )

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _base_url(self, reference: Reference) -> str:
        host = reference.resolve_registry()
        hostname = host.rsplit(":", 1)[0] if not host.startswith("[") else host
        scheme = "http" if hostname.lower() in self.plain_http_registries else "https"
        return f"{scheme}://{host}/v2/{reference.repository}"

    def _send(self, method: str, url: str, stage: Stage, **kwargs: Any) -> httpx.Response:
        retrying = build_retrying(self.retries, sleep=self._sleep)
        try:
            return retrying(self.client.request, method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise CollaboratorError(
                f"{method} {url} failed: {exc}", stage=stage, url=url
            ) from exc

    def _fetch_token(
        self, params: Dict[str, str], scope: str, auth: RegistryAuth, stage: Stage
    ) -> str:
        realm = params.get("realm")
        if not realm:
            raise CollaboratorError("Bearer challenge without realm", stage=stage)
        query = {"scope": params.get("scope") or scope}
        if params.get("service"):
            query["service"] = params["service"]
        basic = None if auth.anonymous else (auth.username or "", auth.password or "")
        response = self._send("GET", realm, stage, params=query, auth=basic)
        if response.status_code in (401, 403):
            raise self._auth_error(auth, f"Token endpoint {realm} rejected the request")
        if response.status_code >= 400:
            raise CollaboratorError(
                f"Token endpoint {realm} returned {response.status_code}",
                stage=stage,
                status_code=response.status_code,
                url=realm,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise CollaboratorError(f"Token endpoint {realm} returned invalid JSON", stage=stage) from exc
        token = payload.get("token") or payload.get("access_token")
        if not token:
            raise CollaboratorError(f"Token endpoint {realm} returned no token", stage=stage)
        return str(token)

    @staticmethod
    def _auth_error(auth: RegistryAuth, message: str) -> Exception:
        if auth.anonymous:
            return AuthRequiredError(f"{message}; credentials are required")
        return AuthFailedError(f"{message}; credentials were rejected")

    def _request(
        self,
        method: str,
        url: str,
        reference: Reference,
        auth: RegistryAuth,
        *,
        stage: Stage,
        push: bool = False,
        headers: Optional[Dict[str, str]] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        scope = f"repository:{reference.repository}:{'pull,push' if push else 'pull'}"
        host = reference.resolve_registry()
        token_key = (host, scope, auth.username)
        request_headers = dict(headers or {})
        with self._tokens_lock:
            token = self._tokens.get(token_key)
        if token:
            request_headers["Authorization"] = f"Bearer {token}"

        response = self._send(method, url, stage, headers=request_headers, **kwargs)
        if response.status_code != 401:
            return response

        scheme, params = _parse_challenge(response.headers.get("WWW-Authenticate", ""))
        if scheme == "bearer":
            token = self._fetch_token(params, scope, auth, stage)
            with self._tokens_lock:
                self._tokens[token_key] = token
            request_headers["Authorization"] = f"Bearer {token}"
            return self._send(method, url, stage, headers=request_headers, **kwargs)
        if scheme == "basic" and not auth.anonymous:
            request_headers.pop("Authorization", None)
            return self._send(
                method,
                url,
                stage,
                headers=request_headers,
                auth=(auth.username or "", auth.password or ""),
                **kwargs,
            )
        return response

    def _check(
        self, response: httpx.Response, auth: RegistryAuth, stage: Stage, what: str
    ) -> httpx.Response:
        status = response.status_code
        if status < 400:
            return response
        url = str(response.request.url) if response.request is not None else None
        if status == 404:
            raise NotFoundError(f"{what} not found", stage=stage, details={"url": url})
        if status in (401, 403):
            raise self._auth_error(auth, f"Registry denied access to {what} ({status})")
        raise CollaboratorError(
            f"Registry returned {status} for {what}", stage=stage, status_code=status, url=url
        )

    # ------------------------------------------------------------------
    # RegistryTransport
    # ------------------------------------------------------------------

    def get_manifest(self, reference: Reference, auth: RegistryAuth = ANONYMOUS) -> ManifestResponse:
        url = f"{self._base_url(reference)}/manifests/{reference.target()}"
        response = self._request(
            "GET", url, reference, auth, stage=Stage.FETCH, headers={"Accept": MANIFEST_ACCEPT}
        )
        self._check(response, auth, Stage.FETCH, f"manifest {reference.whole()}")
        media_type = response.headers.get("Content-Type", OCI_IMAGE_MANIFEST).split(";")[0].strip()
        return ManifestResponse(
            text=response.text,
            media_type=media_type,
            digest=response.headers.get("Docker-Content-Digest"),
        )

    def get_blob(self, reference: Reference, digest: str, auth: RegistryAuth = ANONYMOUS) -> bytes:
        url = f"{self._base_url(reference)}/blobs/{digest}"
        response = self._request("GET", url, reference, auth, stage=Stage.FETCH)
        self._check(response, auth, Stage.FETCH, f"blob {digest}")
        logger.debug(f"Fetched blob {digest} ({len(response.content)} bytes)")
        return response.content

    def blob_exists(self, reference: Reference, digest: str, auth: RegistryAuth = ANONYMOUS) -> bool:
        url = f"{self._base_url(reference)}/blobs/{digest}"
        response = self._request("HEAD", url, reference, auth, stage=Stage.UPLOAD, push=True)
        if response.status_code == 404:
            return False
        self._check(response, auth, Stage.UPLOAD, f"blob {digest}")
        return True

    def put_blob(
        self, reference: Reference, digest: str, data: bytes, auth: RegistryAuth = ANONYMOUS
    ) -> None:
        start_url = f"{self._base_url(reference)}/blobs/uploads/"
        response = self._request("POST", start_url, reference, auth, stage=Stage.UPLOAD, push=True)
        self._check(response, auth, Stage.UPLOAD, f"upload session for {digest}")
        location = response.headers.get("Location")
        if not location:
            raise CollaboratorError(
                "Registry did not return an upload location", stage=Stage.UPLOAD, url=start_url
            )
        upload_url = httpx.URL(start_url).join(location).copy_merge_params({"digest": digest})
        response = self._request(
            "PUT",
            str(upload_url),
            reference,
            auth,
            stage=Stage.UPLOAD,
            push=True,
            headers={"Content-Type": "application/octet-stream"},
            content=data,
        )
        self._check(response, auth, Stage.UPLOAD, f"blob {digest}")
        logger.debug(f"Uploaded blob {digest} ({len(data)} bytes)")

    def put_manifest(
        self,
        reference: Reference,
        manifest: str,
        media_type: str = OCI_IMAGE_MANIFEST,
        auth: RegistryAuth = ANONYMOUS,
    ) -> Optional[str]:
        target = reference.tag or reference.target()
        url = f"{self._base_url(reference)}/manifests/{target}"
        response = self._request(
            "PUT",
            url,
            reference,
            auth,
            stage=Stage.UPLOAD,
            push=True,
            headers={"Content-Type": media_type},
            content=manifest.encode("utf-8"),
        )
        self._check(response, auth, Stage.UPLOAD, f"manifest {reference.whole()}")
        return response.headers.get("Docker-Content-Digest")

    def list_tags(self, reference: Reference, auth: RegistryAuth = ANONYMOUS) -> List[str]:
        """All tags of the repository, following ``Link: <...>; rel="next"`` pages."""
        base = self._base_url(reference)
        url: Optional[str] = f"{base}/tags/list?n={_TAGS_PAGE_SIZE}"
        tags: List[str] = []
        while url:
            response = self._request("GET", url, reference, auth, stage=Stage.FETCH)
            self._check(response, auth, Stage.FETCH, f"tags of {reference.package()}")
            try:
                payload = response.json()
            except ValueError as exc:
                raise CollaboratorError(
                    "Tag list response was not JSON", stage=Stage.FETCH, url=url
                ) from exc
            tags.extend(payload.get("tags") or [])
            next_link = response.links.get("next", {}).get("url")
            url = str(httpx.URL(url).join(next_link)) if next_link else None
        return tags

    def close(self) -> None:
        self.client.close()


__all__ = [
    "ManifestResponse",
    "RegistryTransport",
    "OciRegistryClient",
    "build_retrying",
    "RETRYABLE_STATUSES",
]
