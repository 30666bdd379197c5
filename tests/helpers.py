"""Shared test helpers and stub classes.

Import from here instead of duplicating fakes in individual test files.
"""

from __future__ import annotations

import json
from typing import Any, Sequence

from taskpilot.ai.orchestration.types import Message, ToolCall, ToolResult
from taskpilot.ai.planning.context import PlanCallbacks


class FakeClient:
    """Model client that replays scripted responses.

    Each entry is returned as-is, raised when it is an exception, or called
    with the conversation when it is callable.

    Example:
        from tests.helpers import FakeClient, completion

        client = FakeClient([completion("All done.")])
    """

    def __init__(self, responses: Sequence[Any] = ()) -> None:
        self._responses = list(responses)
        self.conversations: list[list[Message]] = []
        self.tools: list[Sequence[dict[str, Any]]] = []

    def queue(self, *responses: Any) -> None:
        self._responses.extend(responses)

    async def send(self, conversation: Sequence[Message], tools: Sequence[dict[str, Any]]) -> Any:
        self.conversations.append(list(conversation))
        self.tools.append(tools)
        if not self._responses:
            raise AssertionError("FakeClient ran out of scripted responses")
        response = self._responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            return response(conversation)
        return response

    @property
    def calls(self) -> int:
        return len(self.conversations)


class RecordingStateSink:
    def __init__(self) -> None:
        self.updates: list[tuple[str, str]] = []

    def update_after_tool_execution(self, call: ToolCall, content: str) -> None:
        self.updates.append((call.id, content))


class RecordingDisplaySink:
    """Async display sink; the executor must await it."""

    def __init__(self) -> None:
        self.displayed: list[ToolResult] = []

    async def display(self, call: ToolCall, result: ToolResult) -> None:
        self.displayed.append(result)


class RecordingCallbacks(PlanCallbacks):
    def __init__(self) -> None:
        self.events: list[tuple[str, Any]] = []

    def on_plan_created(self, plan):  # type: ignore[no-untyped-def]
        self.events.append(("plan_created", plan.id))

    def on_task_started(self, task):  # type: ignore[no-untyped-def]
        self.events.append(("task_started", task.id))

    def on_task_finished(self, task, result):  # type: ignore[no-untyped-def]
        self.events.append(("task_finished", (task.id, result.success)))

    def on_tool_call(self, call):  # type: ignore[no-untyped-def]
        self.events.append(("tool_call", call.name))

    def on_replan(self, reason):  # type: ignore[no-untyped-def]
        self.events.append(("replan", reason))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]


def native_call(call_id: str, name: str, arguments: str = "{}") -> dict[str, Any]:
    return {"id": call_id, "type": "function", "function": {"name": name, "arguments": arguments}}


def completion(content: str | None = None, tool_calls: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    """ChatCompletion-shaped payload, as produced by ``model_dump()``."""
    message: dict[str, Any] = {"role": "assistant", "content": content}
    if tool_calls:
        message["tool_calls"] = tool_calls
    return {"choices": [{"index": 0, "message": message, "finish_reason": "stop"}]}


def plan_reply(*tasks: dict[str, Any]) -> dict[str, Any]:
    """A decomposition answer wrapping ``tasks`` in a fenced JSON block."""
    return completion("```json\n" + json.dumps(list(tasks)) + "\n```")
