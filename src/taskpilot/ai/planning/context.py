"""Explicit dependencies shared by plan creation, task execution and the controller."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, Sequence, runtime_checkable

from ..orchestration.cancellation import CancellationToken
from ..orchestration.types import Message, ToolCall, ToolResult
from ..tools.registry import ToolRegistry
from .task_store import TaskStore
from .types import PlanningConfig, Task, TaskPlan, TaskResult

__all__ = ["ModelClient", "PlanCallbacks", "PlanContext"]


@runtime_checkable
class ModelClient(Protocol):
    """Anything that can send a conversation to a model."""

    async def send(self, conversation: Sequence[Message], tools: Sequence[dict[str, Any]]) -> Any:
        ...


class PlanCallbacks:
    """Hooks for surfacing progress; every method is a no-op by default."""

    def on_plan_created(self, plan: TaskPlan) -> None:
        pass

    def on_task_started(self, task: Task) -> None:
        pass

    def on_task_finished(self, task: Task, result: TaskResult) -> None:
        pass

    def on_assistant_message(self, task: Task, content: str) -> None:
        pass

    def on_tool_call(self, call: ToolCall) -> None:
        pass

    def display(self, call: ToolCall, result: ToolResult) -> None:
        pass

    def on_replan(self, reason: str) -> None:
        pass


@dataclass(slots=True)
class PlanContext:
    """Everything one plan run needs."""

    client: ModelClient
    registry: ToolRegistry
    store: TaskStore = field(default_factory=TaskStore)
    config: PlanningConfig = field(default_factory=PlanningConfig)
    cancel_token: CancellationToken | None = None
    callbacks: PlanCallbacks = field(default_factory=PlanCallbacks)
    system_prompt: str | None = None
