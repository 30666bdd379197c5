"""Filter candidate tool calls before execution."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Protocol

from .types import FilterResult, ToolCall, ToolResult

__all__ = ["filter_valid_tool_calls", "UNKNOWN_TOOL_MESSAGE", "ToolLookup"]

LOGGER = logging.getLogger(__name__)

UNKNOWN_TOOL_MESSAGE = (
    "This tool does not exist. Please use only the tools that are available in the system."
)


class ToolLookup(Protocol):
    def has_tool(self, name: str) -> bool:
        ...


def filter_valid_tool_calls(calls: Iterable[ToolCall | None], registry: ToolLookup | None) -> FilterResult:
    """Split calls into executable ones and error results.

    * Calls without an id or function name are dropped silently, as are
      repeats of an id already seen in the batch.
    * The malformed-notation sentinel becomes one result carrying the parse error.
    * Calls naming an unregistered tool get :data:`UNKNOWN_TOOL_MESSAGE`.
      Passing ``registry=None`` disables this check.

    Valid calls keep their input order.
    """
    valid: list[ToolCall] = []
    errors: list[ToolResult] = []
    seen: set[str] = set()
    for call in calls:
        if call is None or not call.id:
            continue
        if call.id in seen:
            LOGGER.debug("Dropping repeated tool call id %s", call.id)
            continue
        name = (call.function.name or "").strip() if call.function is not None else ""
        if not name:
            LOGGER.debug("Dropping tool call %s without a function name", call.id)
            continue
        seen.add(call.id)
        if call.is_malformed_sentinel:
            errors.append(ToolResult(tool_call_id=call.id, name=name, content=_sentinel_error(call)))
            continue
        if registry is not None and not registry.has_tool(name):
            LOGGER.info("Rejecting call to unknown tool %r", name)
            errors.append(ToolResult(tool_call_id=call.id, name=name, content=UNKNOWN_TOOL_MESSAGE))
            continue
        valid.append(call)
    return FilterResult(valid_tool_calls=tuple(valid), error_results=tuple(errors))


def _sentinel_error(call: ToolCall) -> str:
    arguments: Any = call.function.arguments
    error = arguments.get("error") if isinstance(arguments, dict) else None
    return f"Error: {error or 'Tool call could not be parsed.'}"
