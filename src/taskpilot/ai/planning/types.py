"""Data model for task plans.

Tasks and plans are mutable records owned by the
:class:`~taskpilot.ai.planning.task_store.TaskStore`; everything handed to
callers outside the store is a snapshot. Results, analyses, events and
configuration are frozen.
"""

from __future__ import annotations

import copy
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Sequence

__all__ = [
    "TaskStatus",
    "PlanStatus",
    "TaskType",
    "Complexity",
    "ReplanStrategyName",
    "TaskDefinition",
    "TaskContext",
    "TaskResult",
    "Task",
    "TaskPlan",
    "TaskSummary",
    "AccumulatedContext",
    "StatusSummary",
    "QueryAnalysis",
    "PlanningConfig",
    "PlanEventType",
    "PlanEvent",
    "ConfigurationError",
    "TERMINAL_STATUSES",
]


class ConfigurationError(Exception):
    """Raised when planning or application settings are out of range."""

    def __init__(self, message: str, field_name: str | None = None) -> None:
        self.field_name = field_name
        super().__init__(message)


# -----------------------------------------------------------------------------
# Enumerations
# -----------------------------------------------------------------------------


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    BLOCKED = "blocked"
    SKIPPED = "skipped"


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.BLOCKED, TaskStatus.SKIPPED})


class PlanStatus(str, Enum):
    PLANNING = "planning"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskType(str, Enum):
    QUESTION = "question"
    IMPLEMENTATION = "implementation"
    DEBUGGING = "debugging"
    REFACTORING = "refactoring"
    RESEARCH = "research"
    OTHER = "other"


class Complexity(str, Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


class ReplanStrategyName(str, Enum):
    SKIP_BLOCKED = "skip_blocked"
    RETRY_FAILED = "retry_failed"


# -----------------------------------------------------------------------------
# Tasks
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class TaskDefinition:
    """What a task should accomplish, before it has any runtime state."""

    id: str
    title: str
    description: str = ""
    acceptance_criteria: tuple[str, ...] = ()
    dependencies: tuple[str, ...] = ()
    required_tools: tuple[str, ...] = ()

    @classmethod
    def create(
        cls,
        id: str,
        title: str,
        description: str = "",
        *,
        acceptance_criteria: Sequence[str] = (),
        dependencies: Sequence[str] = (),
        required_tools: Sequence[str] = (),
    ) -> TaskDefinition:
        return cls(
            id=id,
            title=title,
            description=description,
            acceptance_criteria=tuple(acceptance_criteria),
            dependencies=tuple(dependencies),
            required_tools=tuple(required_tools),
        )


@dataclass(slots=True)
class TaskContext:
    """Knowledge gathered while a task runs."""

    files_read: list[str] = field(default_factory=list)
    files_modified: list[str] = field(default_factory=list)
    discoveries: list[str] = field(default_factory=list)
    decisions: list[str] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class TaskResult:
    """Outcome of one task.

    Attributes:
        success: Whether the acceptance criteria were met.
        summary: One-paragraph account of what happened.
        output: Full final assistant text, when any.
        error: Failure reason; None on success.
        pass_to_next: Facts later tasks should know about.
        cancelled: True when the user cancelled rather than the task failing.
    """

    success: bool
    summary: str
    output: str | None = None
    error: str | None = None
    pass_to_next: tuple[str, ...] = ()
    cancelled: bool = False

    @classmethod
    def failure(cls, error: str, summary: str = "Task failed", *, output: str | None = None) -> TaskResult:
        return cls(success=False, summary=summary, error=error, output=output)

    @classmethod
    def cancellation(cls) -> TaskResult:
        return cls(success=False, summary="Task cancelled", error="Operation was cancelled", cancelled=True)


@dataclass(slots=True)
class Task:
    """A task definition plus its runtime state."""

    definition: TaskDefinition
    status: TaskStatus = TaskStatus.PENDING
    result: TaskResult | None = None
    context: TaskContext = field(default_factory=TaskContext)
    started_at: float | None = None
    completed_at: float | None = None
    attempts: int = 0

    @property
    def id(self) -> str:
        return self.definition.id

    @property
    def title(self) -> str:
        return self.definition.title

    @property
    def description(self) -> str:
        return self.definition.description

    @property
    def acceptance_criteria(self) -> tuple[str, ...]:
        return self.definition.acceptance_criteria

    @property
    def dependencies(self) -> tuple[str, ...]:
        return self.definition.dependencies

    @property
    def required_tools(self) -> tuple[str, ...]:
        return self.definition.required_tools

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def snapshot(self) -> Task:
        return copy.deepcopy(self)


@dataclass(slots=True)
class TaskPlan:
    """An ordered set of tasks working towards one goal."""

    id: str
    original_goal: str
    tasks: list[Task]
    execution_order: list[str]
    created_at: float = field(default_factory=time.time)
    status: PlanStatus = PlanStatus.PLANNING

    def task(self, task_id: str) -> Task | None:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def ordered_tasks(self) -> list[Task]:
        by_id = {task.id: task for task in self.tasks}
        return [by_id[task_id] for task_id in self.execution_order if task_id in by_id]

    def snapshot(self) -> TaskPlan:
        return copy.deepcopy(self)


# -----------------------------------------------------------------------------
# Aggregates
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class TaskSummary:
    task_id: str
    title: str
    summary: str


@dataclass(slots=True, frozen=True)
class AccumulatedContext:
    """Everything learned by the completed tasks of a plan."""

    original_goal: str = ""
    discoveries: tuple[str, ...] = ()
    decisions: tuple[str, ...] = ()
    files_read: tuple[str, ...] = ()
    files_modified: tuple[str, ...] = ()
    task_summaries: tuple[TaskSummary, ...] = ()


@dataclass(slots=True, frozen=True)
class StatusSummary:
    total: int = 0
    pending: int = 0
    in_progress: int = 0
    completed: int = 0
    failed: int = 0
    blocked: int = 0
    skipped: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "pending": self.pending,
            "in_progress": self.in_progress,
            "completed": self.completed,
            "failed": self.failed,
            "blocked": self.blocked,
            "skipped": self.skipped,
        }


@dataclass(slots=True, frozen=True)
class QueryAnalysis:
    """Heuristic read of a user goal, used to shape the planning prompt."""

    task_type: TaskType
    required_context: tuple[str, ...] = ()
    complexity: Complexity = Complexity.SIMPLE


# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class PlanningConfig:
    """Knobs for plan creation, execution and replanning.

    Attributes:
        enabled: Whether goals are decomposed into plans at all.
        max_tasks: Upper bound on tasks in a generated plan.
        max_replans: Retries allowed per task by the retry strategy.
        max_steps_per_task: Model round-trips before a task is failed.
        replan_strategy: ``skip_blocked`` or ``retry_failed``.
        retry_backoff_seconds: Base delay for retry backoff (doubles per attempt).
        tool_timeout_seconds: Per tool-call timeout; None disables it.
        clear_on_finish: Clear the Task Store once a run ends.
    """

    enabled: bool = True
    max_tasks: int = 20
    max_replans: int = 2
    max_steps_per_task: int = 10
    replan_strategy: ReplanStrategyName = ReplanStrategyName.SKIP_BLOCKED
    retry_backoff_seconds: float = 1.0
    tool_timeout_seconds: float | None = 30.0
    clear_on_finish: bool = True

    def __post_init__(self) -> None:
        if self.max_tasks < 1:
            raise ConfigurationError("max_tasks must be at least 1", "max_tasks")
        if self.max_replans < 0:
            raise ConfigurationError("max_replans must not be negative", "max_replans")
        if self.max_steps_per_task < 1:
            raise ConfigurationError("max_steps_per_task must be at least 1", "max_steps_per_task")
        if self.retry_backoff_seconds < 0:
            raise ConfigurationError("retry_backoff_seconds must not be negative", "retry_backoff_seconds")
        if self.tool_timeout_seconds is not None and self.tool_timeout_seconds <= 0:
            raise ConfigurationError("tool_timeout_seconds must be positive", "tool_timeout_seconds")
        try:
            strategy = ReplanStrategyName(self.replan_strategy)
        except ValueError as exc:
            raise ConfigurationError(
                f"Unknown replan strategy '{self.replan_strategy}'", "replan_strategy"
            ) from exc
        object.__setattr__(self, "replan_strategy", strategy)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> PlanningConfig:
        known = {name for name in cls.__dataclass_fields__}
        return cls(**{key: value for key, value in data.items() if key in known})


# -----------------------------------------------------------------------------
# Events
# -----------------------------------------------------------------------------


class PlanEventType(str, Enum):
    PLAN_CREATED = "plan_created"
    PLAN_UPDATED = "plan_updated"
    TASK_STARTED = "task_started"
    TASK_COMPLETED = "task_completed"
    TASK_FAILED = "task_failed"
    TASK_BLOCKED = "task_blocked"
    TASK_SKIPPED = "task_skipped"
    TASK_RESET = "task_reset"
    PLAN_COMPLETED = "plan_completed"
    PLAN_FAILED = "plan_failed"
    REPLANNING = "replanning"
    PLAN_CLEARED = "plan_cleared"


@dataclass(slots=True, frozen=True)
class PlanEvent:
    """Notification of a Task Store change.

    Listeners re-read state through ``TaskStore.get_plan()``; the event only
    says what changed.
    """

    type: PlanEventType
    plan_id: str | None
    task_id: str | None = None
    status: TaskStatus | PlanStatus | None = None
    error: str | None = None
    epoch: int = 0
