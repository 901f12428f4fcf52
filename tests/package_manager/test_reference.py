"""Tests for reference parsing and normalisation."""

from __future__ import annotations

import pytest

from WasmPkg.PackageManager.errors import InvalidReferenceError, Stage
from WasmPkg.PackageManager.oci import compute_digest
from WasmPkg.PackageManager.reference import (
    DOCKER_HUB_CREDENTIAL_KEY,
    Reference,
    credential_key_for,
    parse_reference,
)

DIGEST = compute_digest(b"manifest")


class TestParseReference:
    """Grammar and defaults."""

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("ghcr.io/acme/widget:1.0.0", Reference("ghcr.io", "acme/widget", "1.0.0")),
            ("ghcr.io/acme/widget", Reference("ghcr.io", "acme/widget", "latest")),
            ("acme/widget:2", Reference("docker.io", "acme/widget", "2")),
            ("hello", Reference("docker.io", "library/hello", "latest")),
            ("index.docker.io/hello", Reference("docker.io", "library/hello", "latest")),
            ("localhost:5000/tools/fmt:v1", Reference("localhost:5000", "tools/fmt", "v1")),
            ("localhost/fmt", Reference("localhost", "fmt", "latest")),
        ],
    )
    def test_valid_references(self, value: str, expected: Reference) -> None:
        assert parse_reference(value) == expected

    def test_digest_without_tag_gets_no_default_tag(self) -> None:
        """A digest alone identifies the content; no tag is invented."""
        ref = parse_reference(f"ghcr.io/acme/widget@{DIGEST}")
        assert ref.tag is None
        assert ref.digest == DIGEST
        assert ref.target() == DIGEST

    def test_tag_and_digest_are_both_kept(self) -> None:
        ref = parse_reference(f"ghcr.io/acme/widget:1.0.0@{DIGEST}")
        assert ref.tag == "1.0.0"
        assert ref.digest == DIGEST
        assert ref.whole() == f"ghcr.io/acme/widget:1.0.0@{DIGEST}"

    def test_custom_defaults(self) -> None:
        ref = parse_reference("acme/widget", default_registry="ghcr.io", default_tag="stable")
        assert ref == Reference("ghcr.io", "acme/widget", "stable")

    @pytest.mark.parametrize(
        "value",
        [
            "",
            "   ",
            "ghcr.io/Acme/widget",
            "ghcr.io/acme/widget:bad tag",
            "ghcr.io/acme/widget@sha256:1234",
            "ghcr.io/acme//widget",
            "ghcr.io/",
        ],
    )
    def test_invalid_references(self, value: str) -> None:
        with pytest.raises(InvalidReferenceError) as excinfo:
            parse_reference(value)
        assert excinfo.value.stage == Stage.RESOLVE


class TestReference:
    """Derived forms."""

    def test_docker_hub_api_host_and_credential_key(self) -> None:
        ref = parse_reference("hello")
        assert ref.resolve_registry() == "index.docker.io"
        assert ref.credential_key() == DOCKER_HUB_CREDENTIAL_KEY
        assert credential_key_for("ghcr.io") == "ghcr.io"

    def test_with_helpers(self) -> None:
        ref = Reference("ghcr.io", "acme/widget", "1.0.0")
        assert ref.with_digest(DIGEST).whole() == f"ghcr.io/acme/widget:1.0.0@{DIGEST}"
        assert ref.with_tag(None).target() == "latest"
        assert str(ref) == "ghcr.io/acme/widget:1.0.0"
        assert ref.package() == "ghcr.io/acme/widget"
