"""Tool specifications, the registry and the built-in workspace tools."""

from .builtin import WorkspaceTools, build_default_registry, register_builtin_tools
from .registry import (
    DuplicateToolError,
    InvalidToolSpecError,
    ToolNotFoundError,
    ToolRegistration,
    ToolRegistry,
)
from .types import (
    SimpleTool,
    Tool,
    ToolCategory,
    ToolSpec,
    ToolValidator,
    ValidationResult,
    call_validator,
)

__all__ = [
    "Tool",
    "SimpleTool",
    "ToolSpec",
    "ToolCategory",
    "ToolValidator",
    "ValidationResult",
    "call_validator",
    "ToolRegistry",
    "ToolRegistration",
    "DuplicateToolError",
    "ToolNotFoundError",
    "InvalidToolSpecError",
    "WorkspaceTools",
    "register_builtin_tools",
    "build_default_registry",
]
