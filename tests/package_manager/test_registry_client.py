"""Tests for the httpx OCI Distribution client."""

from __future__ import annotations

import base64
import json
from typing import Callable, Iterator, List

import httpx
import pytest

from WasmPkg.PackageManager.errors import (
    AuthFailedError,
    AuthRequiredError,
    CollaboratorError,
    NotFoundError,
    Stage,
)
from WasmPkg.PackageManager.network.client import OciRegistryClient, build_retrying
from WasmPkg.PackageManager.network.credentials import ANONYMOUS, RegistryAuth
from WasmPkg.PackageManager.oci import OCI_IMAGE_MANIFEST, compute_digest
from WasmPkg.PackageManager.reference import Reference

WIDGET = Reference("ghcr.io", "acme/widget", tag="1.0.0")
ROBOT = RegistryAuth("robot", "s3cret", "helper")
MANIFEST = json.dumps({"schemaVersion": 2, "mediaType": OCI_IMAGE_MANIFEST, "layers": []})

Handler = Callable[[httpx.Request], httpx.Response]


class Recorder:
    """Wraps a handler and keeps every request it saw."""

    def __init__(self, handler: Handler) -> None:
        self.handler = handler
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)


@pytest.fixture
def make_client() -> Iterator[Callable[[Handler], OciRegistryClient]]:
    clients: List[OciRegistryClient] = []

    def factory(handler: Handler, retries: int = 3) -> OciRegistryClient:
        client = OciRegistryClient(
            transport=httpx.MockTransport(handler), retries=retries, sleep=lambda _: None
        )
        clients.append(client)
        return client

    yield factory
    for client in clients:
        client.close()


class TestManifests:
    """Manifest fetch and upload."""

    def test_get_manifest(self, make_client) -> None:
        digest = compute_digest(MANIFEST.encode())

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url == "https://ghcr.io/v2/acme/widget/manifests/1.0.0"
            assert OCI_IMAGE_MANIFEST in request.headers["Accept"]
            return httpx.Response(
                200,
                text=MANIFEST,
                headers={
                    "Content-Type": f"{OCI_IMAGE_MANIFEST}; charset=utf-8",
                    "Docker-Content-Digest": digest,
                },
            )

        response = make_client(handler).get_manifest(WIDGET, ANONYMOUS)
        assert response.text == MANIFEST
        assert response.media_type == OCI_IMAGE_MANIFEST
        assert response.digest == digest

    def test_plain_http_for_localhost(self, make_client) -> None:
        recorder = Recorder(lambda request: httpx.Response(200, text=MANIFEST))
        make_client(recorder).get_manifest(Reference("localhost:5000", "tools/fmt", "v1"), ANONYMOUS)
        assert str(recorder.requests[0].url).startswith("http://localhost:5000/v2/tools/fmt/")

    def test_missing_manifest_is_not_found(self, make_client) -> None:
        client = make_client(lambda request: httpx.Response(404))
        with pytest.raises(NotFoundError) as excinfo:
            client.get_manifest(WIDGET, ANONYMOUS)
        assert excinfo.value.stage == Stage.FETCH

    def test_put_manifest_returns_digest(self, make_client) -> None:
        digest = compute_digest(MANIFEST.encode())

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "PUT"
            assert request.headers["Content-Type"] == OCI_IMAGE_MANIFEST
            assert request.content == MANIFEST.encode()
            return httpx.Response(201, headers={"Docker-Content-Digest": digest})

        assert make_client(handler).put_manifest(WIDGET, MANIFEST, OCI_IMAGE_MANIFEST, ROBOT) == digest


class TestAuthentication:
    """Challenge handling."""

    def _bearer_registry(self, expected_basic: str = "") -> Recorder:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "auth.ghcr.io":
                if expected_basic:
                    assert request.headers["Authorization"] == f"Basic {expected_basic}"
                assert request.url.params["scope"] == "repository:acme/widget:pull"
                assert request.url.params["service"] == "ghcr.io"
                return httpx.Response(200, json={"token": "tok"})
            if request.headers.get("Authorization") == "Bearer tok":
                return httpx.Response(200, text=MANIFEST)
            return httpx.Response(
                401,
                headers={
                    "WWW-Authenticate": 'Bearer realm="https://auth.ghcr.io/token",service="ghcr.io"'
                },
            )

        return Recorder(handler)

    def test_bearer_token_is_fetched_and_cached(self, make_client) -> None:
        recorder = self._bearer_registry()
        client = make_client(recorder)

        client.get_manifest(WIDGET, ANONYMOUS)
        client.get_manifest(WIDGET, ANONYMOUS)

        token_calls = [r for r in recorder.requests if r.url.host == "auth.ghcr.io"]
        assert len(token_calls) == 1
        assert len(recorder.requests) == 4

    def test_token_request_uses_credentials(self, make_client) -> None:
        expected = base64.b64encode(b"robot:s3cret").decode("ascii")
        client = make_client(self._bearer_registry(expected_basic=expected))
        assert client.get_manifest(WIDGET, ROBOT).text == MANIFEST

    def test_basic_challenge_retries_with_credentials(self, make_client) -> None:
        expected = "Basic " + base64.b64encode(b"robot:s3cret").decode("ascii")

        def handler(request: httpx.Request) -> httpx.Response:
            if request.headers.get("Authorization") == expected:
                return httpx.Response(200, text=MANIFEST)
            return httpx.Response(401, headers={"WWW-Authenticate": 'Basic realm="ghcr"'})

        assert make_client(handler).get_manifest(WIDGET, ROBOT).text == MANIFEST

    def test_anonymous_denial_is_auth_required(self, make_client) -> None:
        client = make_client(lambda request: httpx.Response(401))
        with pytest.raises(AuthRequiredError) as excinfo:
            client.get_manifest(WIDGET, ANONYMOUS)
        assert excinfo.value.stage == Stage.AUTH

    def test_rejected_credentials_are_auth_failed(self, make_client) -> None:
        client = make_client(lambda request: httpx.Response(403))
        with pytest.raises(AuthFailedError):
            client.get_manifest(WIDGET, ROBOT)


class TestRetries:
    """Transient failure handling."""

    def test_transient_status_is_retried(self, make_client) -> None:
        statuses = iter([503, 502, 200])
        recorder = Recorder(lambda request: httpx.Response(next(statuses), text=MANIFEST))
        assert make_client(recorder).get_manifest(WIDGET, ANONYMOUS).text == MANIFEST
        assert len(recorder.requests) == 3

    def test_exhausted_status_is_collaborator_error(self, make_client) -> None:
        recorder = Recorder(lambda request: httpx.Response(503))
        with pytest.raises(CollaboratorError) as excinfo:
            make_client(recorder, retries=2).get_manifest(WIDGET, ANONYMOUS)
        assert excinfo.value.status_code == 503
        assert len(recorder.requests) == 2

    def test_connect_errors_become_collaborator_error(self, make_client) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        recorder = Recorder(handler)
        with pytest.raises(CollaboratorError) as excinfo:
            make_client(recorder, retries=3).get_blob(WIDGET, compute_digest(b"x"), ANONYMOUS)
        assert excinfo.value.stage == Stage.FETCH
        assert len(recorder.requests) == 3

    def test_client_errors_are_not_retried(self, make_client) -> None:
        recorder = Recorder(lambda request: httpx.Response(400))
        with pytest.raises(CollaboratorError):
            make_client(recorder).get_blob(WIDGET, compute_digest(b"x"), ANONYMOUS)
        assert len(recorder.requests) == 1

    def test_build_retrying_returns_last_response(self) -> None:
        calls = []

        def attempt() -> httpx.Response:
            calls.append(1)
            return httpx.Response(429)

        response = build_retrying(2, sleep=lambda _: None)(attempt)
        assert response.status_code == 429
        assert len(calls) == 2


class TestBlobs:
    """Blob fetch, existence and upload."""

    def test_get_blob(self, make_client) -> None:
        digest = compute_digest(b"layer")

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == f"/v2/acme/widget/blobs/{digest}"
            return httpx.Response(200, content=b"layer")

        assert make_client(handler).get_blob(WIDGET, digest, ANONYMOUS) == b"layer"

    def test_blob_exists(self, make_client) -> None:
        present = compute_digest(b"present")

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "HEAD"
            return httpx.Response(200 if request.url.path.endswith(present) else 404)

        client = make_client(handler)
        assert client.blob_exists(WIDGET, present, ROBOT) is True
        assert client.blob_exists(WIDGET, compute_digest(b"absent"), ROBOT) is False

    def test_put_blob_monolithic_upload(self, make_client) -> None:
        digest = compute_digest(b"layer")

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                assert request.url.path == "/v2/acme/widget/blobs/uploads/"
                return httpx.Response(
                    202, headers={"Location": "/v2/acme/widget/blobs/uploads/u1?state=abc"}
                )
            assert request.method == "PUT"
            assert request.url.path == "/v2/acme/widget/blobs/uploads/u1"
            assert request.url.params["state"] == "abc"
            assert request.url.params["digest"] == digest
            assert request.content == b"layer"
            return httpx.Response(201)

        recorder = Recorder(handler)
        make_client(recorder).put_blob(WIDGET, digest, b"layer", ROBOT)
        assert [r.method for r in recorder.requests] == ["POST", "PUT"]

    def test_put_blob_without_location_fails(self, make_client) -> None:
        client = make_client(lambda request: httpx.Response(202))
        with pytest.raises(CollaboratorError) as excinfo:
            client.put_blob(WIDGET, compute_digest(b"layer"), b"layer", ROBOT)
        assert excinfo.value.stage == Stage.UPLOAD


class TestTags:
    """Tag listing."""

    def test_pagination_follows_link_header(self, make_client) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.params.get("last") == "1.1.0":
                return httpx.Response(200, json={"name": "acme/widget", "tags": ["2.0.0"]})
            return httpx.Response(
                200,
                json={"name": "acme/widget", "tags": ["1.0.0", "1.1.0"]},
                headers={"Link": '</v2/acme/widget/tags/list?n=100&last=1.1.0>; rel="next"'},
            )

        assert make_client(handler).list_tags(WIDGET, ANONYMOUS) == ["1.0.0", "1.1.0", "2.0.0"]

    def test_empty_tag_list(self, make_client) -> None:
        client = make_client(lambda request: httpx.Response(200, json={"tags": None}))
        assert client.list_tags(WIDGET, ANONYMOUS) == []
