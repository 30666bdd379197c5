"""Tool system types shared by the registry and the parallel executor.

A tool is anything exposing a :class:`ToolSpec` and an async ``execute``
coroutine. Tools may optionally expose a validator that inspects parsed
arguments before execution; validators can be synchronous or asynchronous.
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Coroutine, Mapping, Protocol, Union, runtime_checkable

__all__ = [
    "ToolSpec",
    "ToolHandler",
    "AsyncToolHandler",
    "ToolValidator",
    "ValidationResult",
    "Tool",
    "SimpleTool",
    "ToolCategory",
    "call_validator",
]


# -----------------------------------------------------------------------------
# Tool Categories
# -----------------------------------------------------------------------------


class ToolCategory:
    """Standard tool categories for organization."""

    READ = "read"
    WRITE = "write"
    SEARCH = "search"
    VCS = "vcs"
    UTILITY = "utility"


# -----------------------------------------------------------------------------
# Tool Specification
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolSpec:
    """Specification for a tool's interface.

    Attributes:
        name: Unique identifier for the tool.
        description: Human-readable description of what the tool does.
        parameters: JSON Schema for the tool's parameters.
        category: Tool category for organization.
    """

    name: str
    description: str
    parameters: Mapping[str, Any] = field(default_factory=dict)
    category: str = ToolCategory.UTILITY

    def to_openai_tool(self) -> dict[str, Any]:
        """Convert to OpenAI tool definition format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": dict(self.parameters) if self.parameters else {
                    "type": "object",
                    "properties": {},
                },
            },
        }


# -----------------------------------------------------------------------------
# Validation
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ValidationResult:
    """Outcome of validating a tool call's arguments."""

    valid: bool
    error: str | None = None

    @classmethod
    def ok(cls) -> ValidationResult:
        return cls(valid=True)

    @classmethod
    def fail(cls, error: str) -> ValidationResult:
        return cls(valid=False, error=error)


ToolValidator = Callable[
    [Mapping[str, Any]],
    Union[ValidationResult, Awaitable[ValidationResult]],
]


async def call_validator(
    validator: ToolValidator,
    arguments: Mapping[str, Any],
) -> ValidationResult:
    """Invoke a sync or async validator and normalize its return value."""
    outcome = validator(arguments)
    if inspect.isawaitable(outcome):
        outcome = await outcome
    if isinstance(outcome, ValidationResult):
        return outcome
    if isinstance(outcome, bool):
        return ValidationResult(valid=outcome, error=None if outcome else "Invalid arguments")
    if isinstance(outcome, Mapping):
        return ValidationResult(
            valid=bool(outcome.get("valid")),
            error=outcome.get("error"),
        )
    raise TypeError(f"Validator returned unsupported type {type(outcome).__name__}")


# -----------------------------------------------------------------------------
# Tool Handler Types
# -----------------------------------------------------------------------------

# Synchronous tool handler
ToolHandler = Callable[[Mapping[str, Any]], Any]

# Asynchronous tool handler
AsyncToolHandler = Callable[[Mapping[str, Any]], Coroutine[Any, Any, Any]]


# -----------------------------------------------------------------------------
# Tool Protocol
# -----------------------------------------------------------------------------


@runtime_checkable
class Tool(Protocol):
    """Protocol for tool implementations.

    Tools can be implemented as classes conforming to this protocol,
    or as simple functions registered with a ToolSpec. A tool that wants
    its arguments checked before execution sets ``validator``.
    """

    @property
    def name(self) -> str:
        """Get the tool's unique name."""
        ...

    @property
    def spec(self) -> ToolSpec:
        """Get the tool's specification."""
        ...

    @property
    def validator(self) -> ToolValidator | None:
        """Optional argument validator run before execution."""
        ...

    async def execute(self, arguments: Mapping[str, Any]) -> Any:
        """Execute the tool with the given arguments.

        Raises:
            Exception: If tool execution fails.
        """
        ...


# -----------------------------------------------------------------------------
# Simple Tool Implementation
# -----------------------------------------------------------------------------


@dataclass
class SimpleTool:
    """Simple tool implementation wrapping a callable.

    Example:
        def my_handler(args: dict) -> str:
            return f"Hello, {args.get('name', 'World')}!"

        tool = SimpleTool(
            spec=ToolSpec(name="greet", description="Greet someone"),
            handler=my_handler,
        )
    """

    spec: ToolSpec
    handler: ToolHandler | AsyncToolHandler
    validator: ToolValidator | None = None
    _is_async: bool = field(init=False, default=False)

    def __post_init__(self) -> None:
        self._is_async = inspect.iscoroutinefunction(self.handler)

    @property
    def name(self) -> str:
        """Get the tool's name from its spec."""
        return self.spec.name

    async def execute(self, arguments: Mapping[str, Any]) -> Any:
        """Execute the tool handler; sync handlers run in a worker thread."""
        if self._is_async:
            return await self.handler(arguments)  # type: ignore[misc]
        result = await asyncio.to_thread(self.handler, arguments)
        if inspect.isawaitable(result):
            return await result
        return result
