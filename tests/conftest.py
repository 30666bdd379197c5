"""Shared pytest fixtures."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from taskpilot.ai.tools.builtin import build_default_registry
from taskpilot.ai.tools.registry import ToolRegistry


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    root = tmp_path / "workspace"
    (root / "src" / "app").mkdir(parents=True)
    (root / "docs").mkdir()
    (root / "src" / "app" / "settings.py").write_text(
        "DEFAULTS = {}\n\n\ndef load_settings(path):\n    return DEFAULTS\n",
        encoding="utf-8",
    )
    (root / "src" / "app" / "main.py").write_text(
        "from .settings import load_settings\n\nload_settings('x')\n",
        encoding="utf-8",
    )
    (root / "README.md").write_text("# Demo\n\nSee load_settings for details.\n", encoding="utf-8")
    return root


@pytest.fixture
def registry(workspace: Path) -> ToolRegistry:
    return build_default_registry(workspace)


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("TASKPILOT_"):
            monkeypatch.delenv(name, raising=False)
