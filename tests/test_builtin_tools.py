"""Tests for the built-in workspace tools."""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

from taskpilot.ai.tools.builtin import WorkspaceTools, build_default_registry
from taskpilot.ai.tools.registry import ToolRegistry
from taskpilot.ai.tools.types import call_validator


def test_default_registry_exposes_workspace_tools(workspace: Path) -> None:
    registry = build_default_registry(workspace)

    assert registry.list_names() == ["read_file", "list_directory", "search_files", "git_status"]
    assert [spec.category for spec in registry.list_tools()] == ["read", "read", "search", "vcs"]


class TestPathConfinement:
    def test_resolve_inside_root(self, workspace: Path) -> None:
        tools = WorkspaceTools(workspace)
        assert tools.resolve("src/app") == (workspace / "src" / "app").resolve()
        assert tools.resolve(None) == workspace.resolve()

    @pytest.mark.parametrize("path", ["..", "../outside.txt", "src/../../etc/passwd"])
    def test_resolve_refuses_to_escape(self, workspace: Path, path: str) -> None:
        with pytest.raises(ValueError, match="outside the workspace"):
            WorkspaceTools(workspace).resolve(path)

    @pytest.mark.asyncio
    async def test_validator_rejects_escape(self, registry: ToolRegistry) -> None:
        validator = registry.get_tool_validator("read_file")
        outcome = await call_validator(validator, {"path": "../secret.txt"})

        assert not outcome.valid
        assert "outside the workspace" in (outcome.error or "")


class TestReadFile:
    def test_reads_whole_file(self, workspace: Path) -> None:
        content = WorkspaceTools(workspace).read_file({"path": "README.md"})
        assert content.startswith("# Demo")

    def test_reads_line_range(self, workspace: Path) -> None:
        content = WorkspaceTools(workspace).read_file({"path": "src/app/settings.py", "start_line": 4, "end_line": 5})
        assert content == "def load_settings(path):\n    return DEFAULTS"

    @pytest.mark.asyncio
    async def test_missing_file_fails_validation(self, registry: ToolRegistry) -> None:
        validator = registry.get_tool_validator("read_file")
        outcome = await call_validator(validator, {"path": "nope.txt"})
        assert outcome.error == "File not found: nope.txt"

    @pytest.mark.asyncio
    async def test_reversed_range_fails_validation(self, registry: ToolRegistry) -> None:
        validator = registry.get_tool_validator("read_file")
        outcome = await call_validator(validator, {"path": "README.md", "start_line": 3, "end_line": 1})
        assert not outcome.valid

    @pytest.mark.asyncio
    async def test_schema_rejects_unknown_argument(self, registry: ToolRegistry) -> None:
        validator = registry.get_tool_validator("read_file")
        outcome = await call_validator(validator, {"path": "README.md", "mode": "rb"})
        assert not outcome.valid
        assert "mode" in (outcome.error or "")


class TestListDirectory:
    def test_directories_first_with_slash(self, workspace: Path) -> None:
        entries = WorkspaceTools(workspace).list_directory({})
        assert entries == ["docs/", "src/", "README.md"]

    @pytest.mark.asyncio
    async def test_file_path_fails_validation(self, registry: ToolRegistry) -> None:
        validator = registry.get_tool_validator("list_directory")
        outcome = await call_validator(validator, {"path": "README.md"})
        assert outcome.error == "Not a directory: README.md"


class TestSearchFiles:
    def test_finds_matches_with_line_numbers(self, workspace: Path) -> None:
        matches = WorkspaceTools(workspace).search_files({"query": "load_settings"})
        assert matches == [
            "README.md:3: See load_settings for details.",
            "src/app/main.py:1: from .settings import load_settings",
            "src/app/main.py:3: load_settings('x')",
            "src/app/settings.py:4: def load_settings(path):",
        ]

    def test_glob_and_limit(self, workspace: Path) -> None:
        tools = WorkspaceTools(workspace)
        assert tools.search_files({"query": "load_settings", "glob": "*.md"}) == [
            "README.md:3: See load_settings for details."
        ]
        assert len(tools.search_files({"query": "load_settings", "max_results": 2})) == 2

    def test_skips_git_directory(self, workspace: Path) -> None:
        (workspace / ".git").mkdir()
        (workspace / ".git" / "config").write_text("load_settings\n", encoding="utf-8")
        matches = WorkspaceTools(workspace).search_files({"query": "load_settings"})
        assert not any(match.startswith(".git") for match in matches)


@pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")
class TestGitStatus:
    @pytest.mark.asyncio
    async def test_reports_untracked_files(self, workspace: Path) -> None:
        subprocess.run(["git", "init", "-q"], cwd=workspace, check=True)
        output = await WorkspaceTools(workspace).git_status({})
        assert "?? README.md" in output

