# === NAVMAP v1 ===
# {
#   "module": "tests.conftest",
#   "purpose": "Shared pytest fixtures for suite",
#   "sections": [
#     {"id": "pytest-configure", "name": "pytest_configure", "anchor": "function-pytest-configure", "kind": "function"},
#     {"id": "isolated-environment", "name": "isolated_environment", "anchor": "function-isolated-environment", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""
Pytest Configuration

Puts ``src`` on ``sys.path``, registers the test strata markers, and keeps
every test away from the developer's real ``WASM_*`` and Docker settings.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Iterator

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers", "unit: mark test as pure unit test (no I/O beyond tmp_path)"
    )
    config.addinivalue_line(
        "markers", "component: mark test as component-level (one subsystem with real SQLite)"
    )
    config.addinivalue_line(
        "markers", "e2e: mark test as end-to-end (pull/push/clean through the Manager)"
    )
    config.addinivalue_line("markers", "property: mark test as property-based (Hypothesis)")


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Strip ``WASM_*`` variables and point Docker config at an empty directory."""
    for key in list(os.environ):
        if key.upper().startswith("WASM_"):
            monkeypatch.delenv(key, raising=False)
    docker_dir = tmp_path / "docker-config"
    docker_dir.mkdir()
    monkeypatch.setenv("DOCKER_CONFIG", str(docker_dir))

    from WasmPkg.PackageManager.settings import invalidate_settings_cache

    invalidate_settings_cache()
    yield
    invalidate_settings_cache()
