"""Pytest configuration for repository test runs."""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest


def pytest_sessionstart() -> None:
    """Add src and the project root to sys.path for test imports."""
    project_root = Path(__file__).resolve().parent.parent
    for import_path in (project_root / "src", project_root):
        if str(import_path) not in sys.path:
            sys.path.insert(0, str(import_path))


@pytest.fixture(autouse=True)
def _isolated_runstate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep RUNSTATE_* variables of the calling shell out of tests."""
    for env_key in list(os.environ):
        if env_key.startswith("RUNSTATE_"):
            monkeypatch.delenv(env_key)
