"""Built-in workspace tools exposed to the model.

All tools are read-only and confined to a workspace root: any path that
resolves outside the root fails validation before the tool runs.
"""

from __future__ import annotations

import asyncio
import fnmatch
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from .registry import ToolRegistry
from .types import ToolCategory, ToolSpec, ValidationResult

__all__ = [
    "WorkspaceTools",
    "register_builtin_tools",
    "build_default_registry",
    "READ_FILE_SPEC",
    "LIST_DIRECTORY_SPEC",
    "SEARCH_FILES_SPEC",
    "GIT_STATUS_SPEC",
]

LOGGER = logging.getLogger(__name__)

MAX_READ_BYTES = 200_000
MAX_SEARCH_RESULTS = 200
_SKIPPED_DIRS = frozenset({".git", "__pycache__", "node_modules", ".venv", "venv", ".mypy_cache", ".pytest_cache"})


READ_FILE_SPEC = ToolSpec(
    name="read_file",
    description="Read a text file from the workspace. Optionally restrict to a 1-based line range.",
    parameters={
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Path relative to the workspace root."},
            "start_line": {"type": "integer", "minimum": 1},
            "end_line": {"type": "integer", "minimum": 1},
        },
        "required": ["path"],
        "additionalProperties": False,
    },
    category=ToolCategory.READ,
)

LIST_DIRECTORY_SPEC = ToolSpec(
    name="list_directory",
    description="List the entries of a workspace directory. Directories end with '/'.",
    parameters={
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Directory relative to the workspace root.", "default": "."},
        },
        "additionalProperties": False,
    },
    category=ToolCategory.READ,
)

SEARCH_FILES_SPEC = ToolSpec(
    name="search_files",
    description="Search workspace files for a literal substring. Returns path:line: text matches.",
    parameters={
        "type": "object",
        "properties": {
            "query": {"type": "string", "minLength": 1},
            "path": {"type": "string", "default": "."},
            "glob": {"type": "string", "description": "Filename pattern such as '*.py'."},
            "max_results": {"type": "integer", "minimum": 1, "maximum": MAX_SEARCH_RESULTS},
        },
        "required": ["query"],
        "additionalProperties": False,
    },
    category=ToolCategory.SEARCH,
)

GIT_STATUS_SPEC = ToolSpec(
    name="git_status",
    description="Show the git working tree status of the workspace (porcelain format).",
    parameters={"type": "object", "properties": {}, "additionalProperties": False},
    category=ToolCategory.VCS,
)


@dataclass(slots=True)
class WorkspaceTools:
    """Tool handlers bound to a workspace root."""

    root: Path

    def __post_init__(self) -> None:
        self.root = Path(self.root).expanduser().resolve()

    # ------------------------------------------------------------------
    # Path handling
    # ------------------------------------------------------------------
    def resolve(self, relative: str | None) -> Path:
        """Resolve ``relative`` against the root, refusing to escape it."""
        target = (self.root / (relative or ".")).resolve()
        if target != self.root and self.root not in target.parents:
            raise ValueError(f"Path '{relative}' is outside the workspace")
        return target

    def _display(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix() or "."

    def validate_path_argument(self, arguments: Mapping[str, Any], *, key: str = "path") -> ValidationResult:
        value = arguments.get(key, ".")
        if not isinstance(value, str):
            return ValidationResult.fail(f"'{key}' must be a string")
        try:
            self.resolve(value)
        except ValueError as exc:
            return ValidationResult.fail(str(exc))
        return ValidationResult.ok()

    # ------------------------------------------------------------------
    # read_file
    # ------------------------------------------------------------------
    def validate_read_file(self, arguments: Mapping[str, Any]) -> ValidationResult:
        outcome = self.validate_path_argument(arguments)
        if not outcome.valid:
            return outcome
        target = self.resolve(arguments["path"])
        if not target.is_file():
            return ValidationResult.fail(f"File not found: {arguments['path']}")
        start, end = arguments.get("start_line"), arguments.get("end_line")
        if start is not None and end is not None and end < start:
            return ValidationResult.fail("end_line must not be before start_line")
        return ValidationResult.ok()

    def read_file(self, arguments: Mapping[str, Any]) -> str:
        target = self.resolve(arguments["path"])
        data = target.read_bytes()[:MAX_READ_BYTES]
        text = data.decode("utf-8", errors="replace")
        start, end = arguments.get("start_line"), arguments.get("end_line")
        if start is None and end is None:
            return text
        lines = text.splitlines()
        first = max((start or 1) - 1, 0)
        last = end if end is not None else len(lines)
        return "\n".join(lines[first:last])

    # ------------------------------------------------------------------
    # list_directory
    # ------------------------------------------------------------------
    def validate_list_directory(self, arguments: Mapping[str, Any]) -> ValidationResult:
        outcome = self.validate_path_argument(arguments)
        if not outcome.valid:
            return outcome
        if not self.resolve(arguments.get("path", ".")).is_dir():
            return ValidationResult.fail(f"Not a directory: {arguments.get('path', '.')}")
        return ValidationResult.ok()

    def list_directory(self, arguments: Mapping[str, Any]) -> list[str]:
        target = self.resolve(arguments.get("path", "."))
        entries = sorted(target.iterdir(), key=lambda entry: (not entry.is_dir(), entry.name.lower()))
        return [f"{entry.name}/" if entry.is_dir() else entry.name for entry in entries]

    # ------------------------------------------------------------------
    # search_files
    # ------------------------------------------------------------------
    def validate_search_files(self, arguments: Mapping[str, Any]) -> ValidationResult:
        return self.validate_path_argument(arguments)

    def search_files(self, arguments: Mapping[str, Any]) -> list[str]:
        query = str(arguments["query"])
        pattern = arguments.get("glob")
        limit = int(arguments.get("max_results") or 50)
        base = self.resolve(arguments.get("path", "."))
        matches: list[str] = []
        for directory, dirnames, filenames in os.walk(base):
            dirnames[:] = sorted(name for name in dirnames if name not in _SKIPPED_DIRS)
            for filename in sorted(filenames):
                if pattern and not fnmatch.fnmatch(filename, pattern):
                    continue
                path = Path(directory) / filename
                try:
                    text = path.read_text(encoding="utf-8")
                except (UnicodeDecodeError, OSError):
                    continue
                for number, line in enumerate(text.splitlines(), start=1):
                    if query in line:
                        matches.append(f"{self._display(path)}:{number}: {line.strip()}")
                        if len(matches) >= limit:
                            return matches
        return matches

    # ------------------------------------------------------------------
    # git_status
    # ------------------------------------------------------------------
    async def git_status(self, arguments: Mapping[str, Any]) -> str:
        process = await asyncio.create_subprocess_exec(
            "git",
            "status",
            "--porcelain=v1",
            "--branch",
            cwd=str(self.root),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()
        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            raise RuntimeError(message or f"git status exited with code {process.returncode}")
        output = stdout.decode("utf-8", errors="replace").strip()
        return output or "Working tree clean"


def register_builtin_tools(registry: ToolRegistry, workspace: Path | str) -> WorkspaceTools:
    """Register the workspace tools on ``registry`` and return their handler object."""
    tools = WorkspaceTools(Path(workspace))
    registry.register_function(READ_FILE_SPEC, tools.read_file, validator=tools.validate_read_file)
    registry.register_function(LIST_DIRECTORY_SPEC, tools.list_directory, validator=tools.validate_list_directory)
    registry.register_function(SEARCH_FILES_SPEC, tools.search_files, validator=tools.validate_search_files)
    registry.register_function(GIT_STATUS_SPEC, tools.git_status)
    LOGGER.debug("Registered built-in tools rooted at %s", tools.root)
    return tools


def build_default_registry(workspace: Path | str) -> ToolRegistry:
    registry = ToolRegistry()
    register_builtin_tools(registry, workspace)
    return registry
