"""Concurrent, failure-isolated execution of filtered tool calls.

Execution runs in two fan-out/fan-in phases. First every call is validated
concurrently; then every call that passed runs concurrently. A failure in
one call never affects its siblings: it becomes that call's
:class:`ToolResult`. Results are returned with validation failures first,
followed by execution outcomes in input order.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

from ..tools.types import ToolValidator, ValidationResult, call_validator
from .cancellation import CancellationToken, is_cancelled
from .types import ToolCall, ToolResult

__all__ = [
    "ExecutorConfig",
    "ToolExecutionError",
    "ToolRuntime",
    "ConversationStateSink",
    "ResultDisplaySink",
    "ParallelToolExecutor",
    "execute_tools_directly",
    "format_tool_result_content",
    "parse_tool_arguments",
    "apply_result_to_sinks",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Exceptions
# -----------------------------------------------------------------------------


class ToolExecutionError(Exception):
    """Raised by tools that want to report a failure with context."""

    def __init__(
        self,
        message: str,
        tool_name: str = "",
        cause: Exception | None = None,
    ) -> None:
        self.tool_name = tool_name
        self.cause = cause
        super().__init__(message)


# -----------------------------------------------------------------------------
# Collaborator protocols
# -----------------------------------------------------------------------------


@runtime_checkable
class ToolRuntime(Protocol):
    """The registry surface the executor relies on."""

    def get_tool_validator(self, name: str) -> ToolValidator | None:
        ...

    async def execute(self, name: str, arguments: Mapping[str, Any]) -> Any:
        ...


@runtime_checkable
class ConversationStateSink(Protocol):
    """Folds each tool result back into the conversation state."""

    def update_after_tool_execution(self, call: ToolCall, content: str) -> Any:
        ...


@runtime_checkable
class ResultDisplaySink(Protocol):
    """Shows a tool result to the user."""

    def display(self, call: ToolCall, result: ToolResult) -> Any:
        ...


# -----------------------------------------------------------------------------
# Executor Configuration
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ExecutorConfig:
    """Configuration for the parallel executor.

    Attributes:
        default_timeout: Per-call timeout in seconds; None disables it.
        log_arguments: Whether to log tool arguments (may contain sensitive data).
        log_results: Whether to log tool results.
    """

    default_timeout: float | None = 30.0
    log_arguments: bool = False
    log_results: bool = False


# -----------------------------------------------------------------------------
# Helper Functions
# -----------------------------------------------------------------------------


def format_tool_result_content(result: Any) -> str:
    """Format a tool result for inclusion in a message."""
    if result is None:
        return "null"
    if isinstance(result, str):
        return result
    if isinstance(result, bool):
        return "true" if result else "false"
    if isinstance(result, (int, float)):
        return str(result)
    if isinstance(result, (dict, list)):
        try:
            return json.dumps(result, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            return str(result)
    if hasattr(result, "to_dict") and callable(result.to_dict):
        try:
            return json.dumps(result.to_dict(), ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            pass
    return str(result)


def parse_tool_arguments(arguments: str | Mapping[str, Any] | None) -> dict[str, Any]:
    """Parse tool arguments, accepting a mapping or a JSON object string.

    Raises:
        ValueError: If arguments cannot be parsed.
    """
    if arguments is None:
        return {}
    if isinstance(arguments, Mapping):
        return dict(arguments)
    if not arguments or arguments.strip() in ("", "{}"):
        return {}
    try:
        parsed = json.loads(arguments)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in tool arguments: {e}") from e
    if not isinstance(parsed, dict):
        raise ValueError(f"Arguments must be a JSON object, got {type(parsed).__name__}")
    return parsed


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _error_text(exc: BaseException) -> str:
    return str(exc) if str(exc) else type(exc).__name__


# -----------------------------------------------------------------------------
# Phases
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class _Checked:
    call: ToolCall
    arguments: dict[str, Any]
    error: str | None = None


async def _validate(call: ToolCall, registry: ToolRuntime) -> _Checked:
    try:
        arguments = parse_tool_arguments(call.function.arguments)
    except ValueError as exc:
        return _Checked(call, {}, f"Invalid arguments: {exc}")

    getter = getattr(registry, "get_tool_validator", None)
    validator = getter(call.function.name) if callable(getter) else None
    if validator is None:
        return _Checked(call, arguments)
    try:
        outcome = await call_validator(validator, arguments)
    except Exception as exc:
        LOGGER.warning("Validator for %s raised: %s", call.function.name, exc)
        outcome = ValidationResult.fail(_error_text(exc))
    if outcome.valid:
        return _Checked(call, arguments)
    return _Checked(call, arguments, outcome.error or "Invalid arguments")


async def _run(
    checked: _Checked,
    registry: ToolRuntime,
    cancel_token: CancellationToken | None,
    timeout_seconds: float | None,
    config: ExecutorConfig,
) -> ToolResult:
    call = checked.call
    name = call.function.name
    if is_cancelled(cancel_token):
        return ToolResult(call.id, name, f"Cancelled: {name} was not run because the operation was cancelled")

    if config.log_arguments:
        LOGGER.debug("Executing tool %s (call_id=%s) with arguments: %s", name, call.id, checked.arguments)
    else:
        LOGGER.debug("Executing tool %s (call_id=%s)", name, call.id)

    start = time.perf_counter()
    try:
        if timeout_seconds is not None and timeout_seconds > 0:
            raw = await asyncio.wait_for(registry.execute(name, checked.arguments), timeout=timeout_seconds)
        else:
            raw = await registry.execute(name, checked.arguments)
    except asyncio.TimeoutError:
        LOGGER.warning("Tool %s timed out after %.1fs", name, timeout_seconds)
        return ToolResult(call.id, name, f"Error: Tool execution timed out after {timeout_seconds}s")
    except Exception as exc:
        LOGGER.warning("Tool %s failed: %s", name, _error_text(exc))
        return ToolResult(call.id, name, f"Error: {_error_text(exc)}")

    content = format_tool_result_content(raw)
    elapsed_ms = (time.perf_counter() - start) * 1000
    if config.log_results:
        LOGGER.debug("Tool %s completed in %.1fms: %s", name, elapsed_ms, content[:200])
    else:
        LOGGER.debug("Tool %s completed in %.1fms", name, elapsed_ms)
    return ToolResult(call.id, name, content)


async def apply_result_to_sinks(
    call: ToolCall,
    result: ToolResult,
    state_sink: ConversationStateSink | None,
    display_sink: ResultDisplaySink | None,
) -> None:
    """Record a result in the conversation state, then display it."""
    if state_sink is not None:
        await _maybe_await(state_sink.update_after_tool_execution(call, result.content))
    if display_sink is not None:
        await _maybe_await(display_sink.display(call, result))


# -----------------------------------------------------------------------------
# Public entry points
# -----------------------------------------------------------------------------


async def execute_tools_directly(
    calls: Sequence[ToolCall],
    registry: ToolRuntime,
    state_sink: ConversationStateSink | None,
    display_sink: ResultDisplaySink | None,
    *,
    cancel_token: CancellationToken | None = None,
    timeout_seconds: float | None = None,
    config: ExecutorConfig | None = None,
) -> list[ToolResult]:
    """Validate and execute ``calls`` concurrently.

    Args:
        calls: Filtered calls, all naming registered tools.
        registry: Supplies validators and runs tools.
        state_sink: Receives ``update_after_tool_execution`` per result.
        display_sink: Receives ``display`` per result.
        cancel_token: Calls not yet started when it fires report "Cancelled".
        timeout_seconds: Optional per-call timeout; falls back to ``config.default_timeout``.
        config: Logging options and the fallback timeout.

    Returns:
        One result per call: validation failures first, then execution
        outcomes in input order.
    """
    if not calls:
        return []
    config = config or ExecutorConfig(default_timeout=timeout_seconds)
    if timeout_seconds is None:
        timeout_seconds = config.default_timeout

    checked = await asyncio.gather(*(_validate(call, registry) for call in calls))
    failed = [item for item in checked if item.error is not None]
    runnable = [item for item in checked if item.error is None]

    results: list[tuple[ToolCall, ToolResult]] = [
        (item.call, ToolResult(item.call.id, item.call.function.name, f"Validation failed: {item.error}"))
        for item in failed
    ]
    for item in failed:
        LOGGER.info("Validation failed for %s: %s", item.call.function.name, item.error)

    executed = await asyncio.gather(
        *(_run(item, registry, cancel_token, timeout_seconds, config) for item in runnable)
    )
    results.extend((item.call, result) for item, result in zip(runnable, executed))

    for call, result in results:
        await apply_result_to_sinks(call, result, state_sink, display_sink)
    return [result for _, result in results]


class ParallelToolExecutor:
    """Executes tool calls against a registry with a fixed configuration.

    Example:
        executor = ParallelToolExecutor(registry, state_sink=conversation)
        results = await executor.run(filtered.valid_tool_calls)
    """

    def __init__(
        self,
        registry: ToolRuntime,
        config: ExecutorConfig | None = None,
        *,
        state_sink: ConversationStateSink | None = None,
        display_sink: ResultDisplaySink | None = None,
    ) -> None:
        self._registry = registry
        self._config = config or ExecutorConfig()
        self._state_sink = state_sink
        self._display_sink = display_sink

    @property
    def registry(self) -> ToolRuntime:
        return self._registry

    @property
    def config(self) -> ExecutorConfig:
        return self._config

    async def run(
        self,
        calls: Sequence[ToolCall],
        *,
        cancel_token: CancellationToken | None = None,
        timeout_seconds: float | None = None,
    ) -> list[ToolResult]:
        timeout = timeout_seconds if timeout_seconds is not None else self._config.default_timeout
        return await execute_tools_directly(
            calls,
            self._registry,
            self._state_sink,
            self._display_sink,
            cancel_token=cancel_token,
            timeout_seconds=timeout,
            config=self._config,
        )
