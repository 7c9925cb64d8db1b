"""Pytest configuration for repository test runs."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest


def pytest_sessionstart() -> None:
    """Add src directory to sys.path for test imports."""
    project_root = Path(__file__).resolve().parent.parent
    src_path = project_root / "src"
    if str(src_path) not in sys.path:
        sys.path.insert(0, str(src_path))


@pytest.fixture(autouse=True)
def _isolate_serialbox_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Run every test against default runtime configuration."""
    for variable_name in ("SERIALBOX_ARCHIVE", "SERIALBOX_LOG_LEVEL", "SERIALBOX_LEGACY_UPGRADE"):
        monkeypatch.delenv(variable_name, raising=False)
