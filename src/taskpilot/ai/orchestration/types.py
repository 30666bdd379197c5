"""Core type definitions for the tool-call pipeline.

These immutable dataclasses flow from the response normalizer through the
extractor and filter into the parallel executor, and back into the
conversation as tool messages.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Literal, Mapping, Sequence

from openai.types.chat import ChatCompletionMessageParam

__all__ = [
    "Message",
    "MessageRole",
    "ToolFunction",
    "ToolCall",
    "ToolResult",
    "NormalizedResponse",
    "ExtractionResult",
    "FilterResult",
    "MALFORMED_CALL_ID",
    "MALFORMED_CALL_NAME",
]

# Sentinel emitted by the extractor when the notation cannot be parsed.
MALFORMED_CALL_ID = "malformed_xml_validation"
MALFORMED_CALL_NAME = "__xml_validation_error__"


# -----------------------------------------------------------------------------
# Message Type
# -----------------------------------------------------------------------------

MessageRole = Literal["system", "user", "assistant", "tool"]


@dataclass(slots=True, frozen=True)
class Message:
    """Immutable chat message.

    Attributes:
        role: The role of the message sender.
        content: The text content of the message.
        name: Optional name for tool messages.
        tool_call_id: ID linking tool result to its call.
        tool_calls: Tool calls made by the assistant, in OpenAI wire shape.
        metadata: Additional metadata (not sent to model).
    """

    role: MessageRole
    content: str
    name: str | None = None
    tool_call_id: str | None = None
    tool_calls: tuple[Mapping[str, Any], ...] | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def to_chat_param(self) -> ChatCompletionMessageParam:
        """Convert to OpenAI's ChatCompletionMessageParam format."""
        payload: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.name is not None and self.role != "tool":
            payload["name"] = self.name
        if self.tool_call_id is not None:
            payload["tool_call_id"] = self.tool_call_id
        if self.tool_calls is not None:
            payload["tool_calls"] = list(self.tool_calls)
        return payload  # type: ignore[return-value]

    @classmethod
    def system(cls, content: str, **metadata: Any) -> Message:
        return cls(role="system", content=content, metadata=metadata)

    @classmethod
    def user(cls, content: str, **metadata: Any) -> Message:
        return cls(role="user", content=content, metadata=metadata)

    @classmethod
    def assistant(
        cls,
        content: str,
        tool_calls: Sequence[Mapping[str, Any]] | None = None,
        **metadata: Any,
    ) -> Message:
        return cls(
            role="assistant",
            content=content,
            tool_calls=tuple(tool_calls) if tool_calls else None,
            metadata=metadata,
        )

    @classmethod
    def tool(
        cls,
        content: str,
        tool_call_id: str,
        name: str | None = None,
        **metadata: Any,
    ) -> Message:
        return cls(
            role="tool",
            content=content,
            tool_call_id=tool_call_id,
            name=name,
            metadata=metadata,
        )


# -----------------------------------------------------------------------------
# Tool calls
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolFunction:
    """Name and arguments of a requested tool invocation.

    ``arguments`` is a mapping when produced by the extractor; native calls
    may carry the raw JSON string sent by the model.
    """

    name: str
    arguments: Mapping[str, Any] | str = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class ToolCall:
    """A single tool invocation requested by the model."""

    id: str
    function: ToolFunction

    @property
    def name(self) -> str:
        return self.function.name

    @property
    def is_malformed_sentinel(self) -> bool:
        return self.id == MALFORMED_CALL_ID and self.function.name == MALFORMED_CALL_NAME

    def to_openai_dict(self) -> dict[str, Any]:
        """Serialize for an assistant message's ``tool_calls`` list."""
        arguments = self.function.arguments
        if not isinstance(arguments, str):
            arguments = json.dumps(dict(arguments), ensure_ascii=False)
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.function.name, "arguments": arguments},
        }

    @classmethod
    def create(cls, call_id: str, name: str, arguments: Mapping[str, Any] | str | None = None) -> ToolCall:
        return cls(id=call_id, function=ToolFunction(name=name, arguments=arguments if arguments is not None else {}))


@dataclass(slots=True, frozen=True)
class ToolResult:
    """Outcome of a tool call, destined for the conversation."""

    tool_call_id: str
    name: str
    content: str
    role: Literal["tool"] = "tool"

    def to_message(self) -> Message:
        return Message.tool(self.content, tool_call_id=self.tool_call_id, name=self.name)


# -----------------------------------------------------------------------------
# Pipeline stage outputs
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class NormalizedResponse:
    """Model output reduced to text plus any native tool calls."""

    content: str
    native_tool_calls: tuple[ToolCall, ...] = ()
    raw: Any = None

    @property
    def has_native_tool_calls(self) -> bool:
        return bool(self.native_tool_calls)


@dataclass(slots=True, frozen=True)
class ExtractionResult:
    """Tool calls recovered from text and the prose left behind."""

    tool_calls: tuple[ToolCall, ...]
    cleaned_content: str
    malformed_error: str | None = None

    @property
    def malformed(self) -> bool:
        return self.malformed_error is not None


@dataclass(slots=True, frozen=True)
class FilterResult:
    """Calls cleared for execution plus results for the ones rejected."""

    valid_tool_calls: tuple[ToolCall, ...]
    error_results: tuple[ToolResult, ...]
