"""Tool registry consumed by the filter and the parallel executor.

Tools are validated once when they are registered: the name must be a
usable identifier and the parameter schema must itself be a valid JSON
Schema. At run time the registry is treated as read-only.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from jsonschema.exceptions import SchemaError
from jsonschema.validators import validator_for

from .types import (
    AsyncToolHandler,
    SimpleTool,
    Tool,
    ToolHandler,
    ToolSpec,
    ToolValidator,
    ValidationResult,
    call_validator,
)

__all__ = [
    "ToolRegistry",
    "ToolRegistration",
    "DuplicateToolError",
    "ToolNotFoundError",
    "InvalidToolSpecError",
]

LOGGER = logging.getLogger(__name__)

_TOOL_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_\-]*$")
MAX_SCHEMA_ERRORS = 5


# -----------------------------------------------------------------------------
# Exceptions
# -----------------------------------------------------------------------------


class DuplicateToolError(Exception):
    """Raised when attempting to register a tool with a name that already exists."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' is already registered")


class ToolNotFoundError(Exception):
    """Raised when a requested tool is not found in the registry."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' not found")


class InvalidToolSpecError(Exception):
    """Raised when a tool's specification is rejected at registration time."""

    def __init__(self, name: str, reason: str) -> None:
        self.name = name
        self.reason = reason
        super().__init__(f"Tool '{name}' has an invalid specification: {reason}")


# -----------------------------------------------------------------------------
# Tool Registration
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class ToolRegistration:
    """Record of a registered tool.

    Attributes:
        name: Tool name.
        tool: The tool implementation.
        spec: Tool specification.
        schema_validator: Compiled JSON Schema validator for the parameters.
        metadata: Additional registration metadata.
    """

    name: str
    tool: Tool
    spec: ToolSpec
    schema_validator: Any = None
    metadata: dict[str, Any] = field(default_factory=dict)


# -----------------------------------------------------------------------------
# Tool Registry
# -----------------------------------------------------------------------------


class ToolRegistry:
    """Registry for managing tool registrations.

    Example:
        registry = ToolRegistry()
        registry.register_function(
            spec=ToolSpec(name="greet", description="Greet"),
            handler=lambda args: f"Hello, {args['name']}!",
        )

        if registry.has_tool("greet"):
            result = await registry.execute("greet", {"name": "World"})
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolRegistration] = {}

    def register(
        self,
        tool: Tool,
        *,
        allow_override: bool = False,
        metadata: Mapping[str, Any] | None = None,
    ) -> ToolRegistration:
        """Register a tool implementation.

        Raises:
            DuplicateToolError: If the name is taken and allow_override is False.
            InvalidToolSpecError: If the name or parameter schema is unusable.
        """
        spec = tool.spec
        name = tool.name
        if name != spec.name:
            raise InvalidToolSpecError(name, f"name does not match spec name '{spec.name}'")
        if not _TOOL_NAME_RE.match(name or ""):
            raise InvalidToolSpecError(name, "name must be an identifier")
        if name in self._tools and not allow_override:
            raise DuplicateToolError(name)

        registration = ToolRegistration(
            name=name,
            tool=tool,
            spec=spec,
            schema_validator=_compile_schema(name, spec.parameters),
            metadata=dict(metadata) if metadata else {},
        )
        self._tools[name] = registration
        LOGGER.debug("Registered tool: %s", name)
        return registration

    def register_function(
        self,
        spec: ToolSpec,
        handler: ToolHandler | AsyncToolHandler,
        *,
        validator: ToolValidator | None = None,
        allow_override: bool = False,
        metadata: Mapping[str, Any] | None = None,
    ) -> ToolRegistration:
        """Register a function as a tool.

        Args:
            spec: Tool specification.
            handler: Function to handle tool calls (sync or async).
            validator: Optional argument validator (sync or async).
            allow_override: If True, allows overriding existing registration.
            metadata: Additional metadata.
        """
        tool = SimpleTool(spec=spec, handler=handler, validator=validator)
        return self.register(tool, allow_override=allow_override, metadata=metadata)

    def unregister(self, name: str) -> bool:
        """Unregister a tool by name; returns False if it was not registered."""
        if name in self._tools:
            del self._tools[name]
            LOGGER.debug("Unregistered tool: %s", name)
            return True
        return False

    def get(self, name: str) -> Tool | None:
        """Get a tool by name, or None."""
        registration = self._tools.get(name)
        return registration.tool if registration is not None else None

    def get_required(self, name: str) -> Tool:
        """Get a tool by name, raising ToolNotFoundError if absent."""
        tool = self.get(name)
        if tool is None:
            raise ToolNotFoundError(name)
        return tool

    def has_tool(self, name: str) -> bool:
        """Check if a tool is registered."""
        return name in self._tools

    def get_tool_validator(self, name: str) -> ToolValidator | None:
        """Return the validator for ``name``, or None when the tool has none.

        The returned validator checks the arguments against the declared
        parameter schema first and then defers to the tool's own validator.
        """
        registration = self._tools.get(name)
        if registration is None:
            return None
        custom = getattr(registration.tool, "validator", None)
        schema_validator = registration.schema_validator
        if custom is None and schema_validator is None:
            return None

        async def validate(arguments: Mapping[str, Any]) -> ValidationResult:
            if schema_validator is not None:
                outcome = _check_schema(schema_validator, arguments)
                if not outcome.valid:
                    return outcome
            if custom is not None:
                return await call_validator(custom, arguments)
            return ValidationResult.ok()

        return validate

    async def execute(self, name: str, arguments: Mapping[str, Any]) -> Any:
        """Execute a registered tool.

        Raises:
            ToolNotFoundError: If the tool is not registered.
            Exception: Whatever the tool raises.
        """
        tool = self.get_required(name)
        return await tool.execute(arguments)

    def list_tools(self) -> list[ToolSpec]:
        """List all registered tool specifications."""
        return [registration.spec for registration in self._tools.values()]

    def list_names(self) -> list[str]:
        """List all registered tool names."""
        return list(self._tools)

    def get_openai_tools(
        self,
        *,
        filter_names: Sequence[str] | None = None,
    ) -> list[dict[str, Any]]:
        """Get tool definitions in OpenAI format."""
        tools: list[dict[str, Any]] = []
        for registration in self._tools.values():
            if filter_names is not None and registration.name not in filter_names:
                continue
            tools.append(registration.spec.to_openai_tool())
        return tools

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools


# -----------------------------------------------------------------------------
# Schema helpers
# -----------------------------------------------------------------------------


def _compile_schema(name: str, schema: Mapping[str, Any] | None) -> Any:
    if not schema:
        return None
    validator_cls = validator_for(schema)
    try:
        validator_cls.check_schema(schema)
    except SchemaError as exc:
        raise InvalidToolSpecError(name, exc.message) from exc
    return validator_cls(dict(schema))


def _check_schema(validator: Any, arguments: Mapping[str, Any]) -> ValidationResult:
    messages: list[str] = []
    errors = sorted(validator.iter_errors(dict(arguments)), key=lambda e: list(e.absolute_path))
    for issue in errors:
        path = ".".join(str(part) for part in issue.absolute_path)
        messages.append(f"{path}: {issue.message}" if path else issue.message)
        if len(messages) >= MAX_SCHEMA_ERRORS:
            break
    if not messages:
        return ValidationResult.ok()
    return ValidationResult.fail("; ".join(messages))
