"""Fallback tool-call extraction for models without native function calling.

:func:`extract_tool_calls` turns assistant text into :class:`ToolCall`
records and the prose that remains once the calls are removed.
:func:`process_xml_tool_calls` wraps it for the execution loop: native
calls bypass extraction and every produced call is forwarded to the
``on_tool_call`` callback in parse order.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Collection, Iterable, Protocol, runtime_checkable

from .tool_call_parser import (
    ParsedBlock,
    detect_malformed_notation,
    normalize_whitespace,
    parse_embedded_tool_calls,
    parse_json_tool_blocks,
    parse_xml_tool_blocks,
    parsed_tool_call_id,
    strip_think_tags,
)
from .types import (
    MALFORMED_CALL_ID,
    MALFORMED_CALL_NAME,
    ExtractionResult,
    NormalizedResponse,
    ToolCall,
    ToolFunction,
)

__all__ = [
    "ToolCallCallbacks",
    "extract_tool_calls",
    "process_xml_tool_calls",
    "malformed_sentinel",
    "resolve_tool_names",
]

LOGGER = logging.getLogger(__name__)


@runtime_checkable
class ToolCallCallbacks(Protocol):
    """Receives each extracted call before it is filtered or executed."""

    def on_tool_call(self, call: ToolCall) -> None:
        ...


def malformed_sentinel(error: str) -> ToolCall:
    """Build the synthetic call that carries a notation error to the filter."""
    return ToolCall(
        id=MALFORMED_CALL_ID,
        function=ToolFunction(name=MALFORMED_CALL_NAME, arguments={"error": error}),
    )


def resolve_tool_names(tools: Any) -> frozenset[str]:
    """Accept a registry (``list_names()``), a mapping or an iterable of names."""
    if tools is None:
        return frozenset()
    list_names = getattr(tools, "list_names", None)
    if callable(list_names):
        return frozenset(list_names())
    if isinstance(tools, str):
        return frozenset({tools})
    return frozenset(str(name) for name in tools)


def extract_tool_calls(content: str | None, tool_names: Collection[str]) -> ExtractionResult:
    """Extract tool calls from raw assistant text.

    Args:
        content: Assistant text, possibly with embedded tool calls.
        tool_names: Names of the tools currently registered.

    Returns:
        The calls found (or a single malformed-notation sentinel) and the
        cleaned prose. When nothing is registered, the text is empty, or
        nothing (calls or reasoning blocks) was removed, the content comes
        back untouched.
    """
    text = content or ""
    if not text or not tool_names:
        return ExtractionResult(tool_calls=(), cleaned_content=text)

    visible = strip_think_tags(text)
    error = detect_malformed_notation(visible, tool_names)
    if error is not None:
        LOGGER.info("Malformed tool call notation: %s", error)
        return ExtractionResult(
            tool_calls=(malformed_sentinel(error),),
            cleaned_content="",
            malformed_error=error,
        )

    calls: list[ToolCall] = []
    remaining = visible
    removed = visible != text
    # Each notation is removed before the next is searched so blocks are not counted twice.
    for finder in (
        parse_embedded_tool_calls,
        lambda source: parse_xml_tool_blocks(source, tool_names),
        lambda source: parse_json_tool_blocks(source, tool_names),
    ):
        blocks = finder(remaining)
        if not blocks:
            continue
        for block in blocks:
            if block.name:
                calls.append(_block_to_call(block, len(calls)))
        remaining = _remove_spans(remaining, (block.span for block in blocks))
        removed = True

    if not removed:
        return ExtractionResult(tool_calls=(), cleaned_content=text)
    if calls:
        LOGGER.debug("Extracted %d tool call(s) from text", len(calls))
    return ExtractionResult(tool_calls=tuple(calls), cleaned_content=normalize_whitespace(remaining))


def process_xml_tool_calls(
    response: NormalizedResponse | str | None,
    tools: Any,
    callbacks: ToolCallCallbacks | Callable[[ToolCall], Any] | None = None,
) -> ExtractionResult:
    """Extract calls from a model response and forward each to ``callbacks``.

    Native tool calls on a :class:`NormalizedResponse` bypass extraction.
    """
    if isinstance(response, NormalizedResponse):
        if response.has_native_tool_calls:
            result = ExtractionResult(tool_calls=response.native_tool_calls, cleaned_content=response.content)
        else:
            result = extract_tool_calls(response.content, resolve_tool_names(tools))
    else:
        result = extract_tool_calls(response or "", resolve_tool_names(tools))

    notify = _resolve_callback(callbacks)
    if notify is not None:
        for call in result.tool_calls:
            notify(call)
    return result


def _resolve_callback(callbacks: Any) -> Callable[[ToolCall], Any] | None:
    if callbacks is None:
        return None
    handler = getattr(callbacks, "on_tool_call", None)
    if callable(handler):
        return handler
    if callable(callbacks):
        return callbacks
    return None


def _block_to_call(block: ParsedBlock, index: int) -> ToolCall:
    return ToolCall(
        id=parsed_tool_call_id(block.name, index),
        function=ToolFunction(name=block.name, arguments=block.arguments),
    )


def _remove_spans(text: str, spans: Iterable[tuple[int, int]]) -> str:
    pieces: list[str] = []
    cursor = 0
    for start, end in sorted(spans):
        if start < cursor:
            continue
        pieces.append(text[cursor:start])
        cursor = end
    pieces.append(text[cursor:])
    return "".join(pieces)
