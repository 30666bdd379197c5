"""Reduce heterogeneous model output to a :class:`NormalizedResponse`.

Model clients return anything from a plain string to an OpenAI SDK
``ChatCompletion``. Everything downstream only needs the assistant text and
any native tool calls, so this module flattens the shapes once.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Mapping, Sequence

from .types import NormalizedResponse, ToolCall, ToolFunction

__all__ = ["normalize_response", "normalize_native_tool_calls", "coerce_content_text"]

LOGGER = logging.getLogger(__name__)


def normalize_response(raw: Any) -> NormalizedResponse:
    """Normalize a raw model response.

    Args:
        raw: String, ``None``, mapping, ChatCompletion-shaped mapping,
            pydantic model (anything with ``model_dump``), list, or primitive.

    Returns:
        The assistant text and native tool calls, with ``raw`` preserved.
    """
    if raw is None:
        return NormalizedResponse(content="", raw=raw)
    if isinstance(raw, str):
        return NormalizedResponse(content=raw, raw=raw)

    payload: Any = raw
    if not isinstance(raw, (Mapping, list, tuple)) and callable(getattr(raw, "model_dump", None)):
        try:
            payload = raw.model_dump()
        except Exception:  # pragma: no cover - third-party model_dump failures
            LOGGER.debug("model_dump() failed for %s", type(raw).__name__, exc_info=True)
            return NormalizedResponse(content=str(raw), raw=raw)

    if isinstance(payload, Mapping):
        message = _select_message(payload)
        content = coerce_content_text(message.get("content"))
        calls = normalize_native_tool_calls(message.get("tool_calls"))
        return NormalizedResponse(content=content, native_tool_calls=calls, raw=raw)

    if isinstance(payload, (list, tuple)):
        return NormalizedResponse(content=coerce_content_text(payload), raw=raw)

    return NormalizedResponse(content=str(payload), raw=raw)


def _select_message(payload: Mapping[str, Any]) -> Mapping[str, Any]:
    choices = payload.get("choices")
    if isinstance(choices, Sequence) and not isinstance(choices, str) and choices:
        first = choices[0]
        if isinstance(first, Mapping):
            message = first.get("message") or first.get("delta")
            if isinstance(message, Mapping):
                return message
    message = payload.get("message")
    if isinstance(message, Mapping):
        return message
    return payload


def coerce_content_text(content: Any) -> str:
    """Flatten message content (string, parts list or primitive) into text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, Mapping):
        text = content.get("text")
        if isinstance(text, str):
            return text
        return json.dumps(dict(content), ensure_ascii=False)
    if isinstance(content, (list, tuple)):
        parts = [coerce_content_text(part) for part in content]
        return "\n".join(part for part in parts if part)
    return str(content)


def normalize_native_tool_calls(entries: Any) -> tuple[ToolCall, ...]:
    """Convert OpenAI-shaped ``tool_calls`` into :class:`ToolCall` records.

    Argument strings that parse as a JSON object become mappings; anything
    else is preserved verbatim so the executor can report it.
    """
    if not entries or not isinstance(entries, Sequence) or isinstance(entries, str):
        return ()
    calls: list[ToolCall] = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, Mapping) and callable(getattr(entry, "model_dump", None)):
            entry = entry.model_dump()
        if not isinstance(entry, Mapping):
            continue
        function = entry.get("function")
        if not isinstance(function, Mapping):
            function = {"name": entry.get("name"), "arguments": entry.get("arguments")}
        name = str(function.get("name") or "")
        call_id = entry.get("id") or f"call_{name or 'unknown'}_{index}_{uuid.uuid4().hex[:8]}"
        calls.append(
            ToolCall(
                id=str(call_id),
                function=ToolFunction(name=name, arguments=_decode_arguments(function.get("arguments"))),
            )
        )
    return tuple(calls)


def _decode_arguments(arguments: Any) -> Mapping[str, Any] | str:
    if arguments is None:
        return {}
    if isinstance(arguments, Mapping):
        return dict(arguments)
    text = str(arguments)
    if not text.strip():
        return {}
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return text
    if isinstance(parsed, dict):
        return parsed
    return text
