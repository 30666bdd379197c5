"""Task Store: the single owner of plan and task state.

Every status change goes through the transition methods below, which
enforce the allowed transitions:

============  =============  ===========================================
From          To             Operation
============  =============  ===========================================
pending       in_progress    :meth:`TaskStore.mark_in_progress`
in_progress   completed      :meth:`TaskStore.mark_completed`
in_progress   failed         :meth:`TaskStore.mark_failed`
pending       blocked        cascade when a dependency fails, is blocked
                             or is skipped
pending,      skipped        :meth:`TaskStore.mark_skipped`
blocked
failed,       pending        :meth:`TaskStore.reset_task`
blocked
============  =============  ===========================================

A mutation and the events it produces happen inside one critical section:
events are queued while the mutation (including cascades) is applied and
delivered only once the store is consistent again. Listeners are
read-only; a listener that tries to mutate the store gets
:class:`ListenerMutationError`.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
import uuid
from contextlib import contextmanager
from typing import Callable, Iterable, Iterator, Sequence

from .types import (
    AccumulatedContext,
    PlanEvent,
    PlanEventType,
    PlanStatus,
    StatusSummary,
    Task,
    TaskDefinition,
    TaskPlan,
    TaskResult,
    TaskStatus,
    TaskSummary,
)

__all__ = [
    "TaskStore",
    "PlanListener",
    "TaskStoreError",
    "InvalidTransitionError",
    "PlanNotInitializedError",
    "TaskNotFoundError",
    "ListenerMutationError",
    "InvalidPlanError",
]

LOGGER = logging.getLogger(__name__)

PlanListener = Callable[[PlanEvent], None]

# Dependency states that make a pending task unrunnable.
_BLOCKING_STATUSES = frozenset({TaskStatus.FAILED, TaskStatus.BLOCKED, TaskStatus.SKIPPED})


# -----------------------------------------------------------------------------
# Exceptions
# -----------------------------------------------------------------------------


class TaskStoreError(Exception):
    """Base class for Task Store errors."""


class InvalidTransitionError(TaskStoreError):
    """Raised when a task is not in a state the requested transition allows."""

    def __init__(self, task_id: str, current: TaskStatus, target: TaskStatus) -> None:
        self.task_id = task_id
        self.current = current
        self.target = target
        super().__init__(f"Task '{task_id}' cannot move from {current.value} to {target.value}")


class PlanNotInitializedError(TaskStoreError):
    """Raised when an operation needs a plan and none exists."""

    def __init__(self, operation: str = "") -> None:
        self.operation = operation
        suffix = f" (during {operation})" if operation else ""
        super().__init__(f"No plan has been created{suffix}")


class TaskNotFoundError(TaskStoreError):
    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"Task '{task_id}' not found in the current plan")


class ListenerMutationError(TaskStoreError):
    """Raised when a plan listener tries to change the store."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"Plan listeners must not mutate the Task Store (attempted {operation})")


class InvalidPlanError(TaskStoreError):
    """Raised when task definitions do not form a valid plan."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Invalid plan: {reason}")


# -----------------------------------------------------------------------------
# Task Store
# -----------------------------------------------------------------------------


class TaskStore:
    """Owns the current :class:`TaskPlan` and enforces task transitions.

    Callers only ever receive snapshots; the live plan never leaves the
    store.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._plan: TaskPlan | None = None
        self._listeners: list[PlanListener] = []
        self._emitting = False
        self._epoch = 0
        self._last_finished_id: str | None = None

    # ------------------------------------------------------------------
    # Plan lifecycle
    # ------------------------------------------------------------------
    def create_plan(
        self,
        original_goal: str,
        definitions: Sequence[TaskDefinition],
        order: Sequence[str] | None = None,
    ) -> TaskPlan:
        """Create and activate a plan, replacing any existing one.

        Args:
            original_goal: The user goal the plan works towards.
            definitions: Tasks in the order they were produced.
            order: Explicit execution order; defaults to a dependency
                respecting topological order.

        Raises:
            InvalidPlanError: On duplicate ids, unknown dependencies,
                dependency cycles, or an ``order`` that is not a
                permutation of the task ids.
        """
        with self._mutation("create_plan") as events:
            if not definitions:
                raise InvalidPlanError("a plan needs at least one task")
            _check_definitions(definitions, known=())
            sorted_ids = _topological_order(definitions)
            if order is not None:
                order = list(order)
                if sorted(order) != sorted(d.id for d in definitions):
                    raise InvalidPlanError("execution order must be a permutation of the task ids")
                execution_order = order
            else:
                execution_order = sorted_ids

            if self._plan is not None:
                self._epoch += 1
            self._plan = TaskPlan(
                id=f"plan-{uuid.uuid4().hex[:12]}",
                original_goal=original_goal,
                tasks=[Task(definition=definition) for definition in definitions],
                execution_order=execution_order,
                status=PlanStatus.EXECUTING,
            )
            self._last_finished_id = None
            events.append(self._event(PlanEventType.PLAN_CREATED, status=PlanStatus.EXECUTING))
            LOGGER.info("Created plan %s with %d task(s)", self._plan.id, len(definitions))
            return self._plan.snapshot()

    def clear(self) -> None:
        """Drop the current plan. Later operations raise PlanNotInitializedError."""
        with self._mutation("clear") as events:
            if self._plan is None:
                return
            events.append(self._event(PlanEventType.PLAN_CLEARED))
            LOGGER.debug("Cleared plan %s", self._plan.id)
            self._plan = None
            self._last_finished_id = None
            self._epoch += 1

    def add_tasks(self, definitions: Sequence[TaskDefinition]) -> None:
        """Append tasks to the plan and recompute the execution order."""
        with self._mutation("add_tasks") as events:
            plan = self._require_plan("add_tasks")
            existing = [task.definition for task in plan.tasks]
            _check_definitions(definitions, known=existing)
            plan.execution_order = _topological_order([*existing, *definitions])
            plan.tasks.extend(Task(definition=definition) for definition in definitions)
            if plan.status in (PlanStatus.COMPLETED, PlanStatus.FAILED):
                plan.status = PlanStatus.EXECUTING
            events.append(self._event(PlanEventType.PLAN_UPDATED, status=plan.status))

    def remove_task(self, task_id: str) -> None:
        """Remove a task that is not running; dependents forget the dependency."""
        with self._mutation("remove_task") as events:
            plan = self._require_plan("remove_task")
            task = self._require_task(task_id)
            if task.status is TaskStatus.IN_PROGRESS:
                raise InvalidTransitionError(task_id, task.status, TaskStatus.SKIPPED)
            plan.tasks = [item for item in plan.tasks if item.id != task_id]
            plan.execution_order = [item for item in plan.execution_order if item != task_id]
            for other in plan.tasks:
                if task_id in other.dependencies:
                    other.definition = dataclasses.replace(
                        other.definition,
                        dependencies=tuple(dep for dep in other.dependencies if dep != task_id),
                    )
            events.append(self._event(PlanEventType.PLAN_UPDATED, status=plan.status))
            self._check_plan_completion(events)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    @property
    def epoch(self) -> int:
        """Incremented whenever a plan is replaced or cleared."""
        return self._epoch

    def get_plan(self) -> TaskPlan | None:
        with self._lock:
            return self._plan.snapshot() if self._plan is not None else None

    def get_task(self, task_id: str) -> Task:
        with self._lock:
            self._require_plan("get_task")
            return self._require_task(task_id).snapshot()

    def get_next_task(self) -> Task | None:
        """First pending task in execution order whose dependencies all completed."""
        with self._lock:
            plan = self._require_plan("get_next_task")
            for task in plan.ordered_tasks():
                if task.status is not TaskStatus.PENDING:
                    continue
                if all(self._dependency_status(dep) is TaskStatus.COMPLETED for dep in task.dependencies):
                    return task.snapshot()
            return None

    def has_next_task(self) -> bool:
        return self.get_next_task() is not None

    @property
    def last_finished_task(self) -> Task | None:
        """The task most recently marked completed or failed."""
        with self._lock:
            if self._plan is None or self._last_finished_id is None:
                return None
            task = self._plan.task(self._last_finished_id)
            return task.snapshot() if task is not None else None

    def get_status_summary(self) -> StatusSummary:
        with self._lock:
            if self._plan is None:
                return StatusSummary()
            counts = {status: 0 for status in TaskStatus}
            for task in self._plan.tasks:
                counts[task.status] += 1
            return StatusSummary(
                total=len(self._plan.tasks),
                pending=counts[TaskStatus.PENDING],
                in_progress=counts[TaskStatus.IN_PROGRESS],
                completed=counts[TaskStatus.COMPLETED],
                failed=counts[TaskStatus.FAILED],
                blocked=counts[TaskStatus.BLOCKED],
                skipped=counts[TaskStatus.SKIPPED],
            )

    def get_accumulated_context(self) -> AccumulatedContext:
        """Merge the context of every completed task, in execution order."""
        with self._lock:
            if self._plan is None:
                return AccumulatedContext()
            discoveries: list[str] = []
            decisions: list[str] = []
            files_read: list[str] = []
            files_modified: list[str] = []
            summaries: list[TaskSummary] = []
            for task in self._plan.ordered_tasks():
                if task.status is not TaskStatus.COMPLETED:
                    continue
                discoveries.extend(task.context.discoveries)
                decisions.extend(task.context.decisions)
                _extend_unique(files_read, task.context.files_read)
                _extend_unique(files_modified, task.context.files_modified)
                if task.result is not None:
                    summaries.append(TaskSummary(task.id, task.title, task.result.summary))
            return AccumulatedContext(
                original_goal=self._plan.original_goal,
                discoveries=tuple(discoveries),
                decisions=tuple(decisions),
                files_read=tuple(files_read),
                files_modified=tuple(files_modified),
                task_summaries=tuple(summaries),
            )

    def get_dependency_results(self, task_id: str) -> list[TaskResult]:
        with self._lock:
            self._require_plan("get_dependency_results")
            task = self._require_task(task_id)
            results: list[TaskResult] = []
            for dep_id in task.dependencies:
                dependency = self._plan.task(dep_id) if self._plan else None
                if dependency is not None and dependency.result is not None:
                    results.append(dependency.result)
            return results

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def mark_in_progress(self, task_id: str) -> Task:
        with self._mutation("mark_in_progress") as events:
            task = self._transition(task_id, {TaskStatus.PENDING}, TaskStatus.IN_PROGRESS)
            task.started_at = time.time()
            task.completed_at = None
            task.attempts += 1
            events.append(self._event(PlanEventType.TASK_STARTED, task_id, TaskStatus.IN_PROGRESS))
            return task.snapshot()

    def mark_completed(self, task_id: str, result: TaskResult) -> Task:
        with self._mutation("mark_completed") as events:
            task = self._transition(task_id, {TaskStatus.IN_PROGRESS}, TaskStatus.COMPLETED)
            task.completed_at = time.time()
            task.result = result
            self._last_finished_id = task_id
            events.append(self._event(PlanEventType.TASK_COMPLETED, task_id, TaskStatus.COMPLETED))
            self._check_plan_completion(events)
            return task.snapshot()

    def mark_failed(self, task_id: str, error: str | TaskResult) -> Task:
        """Fail a running task and block everything that depends on it."""
        with self._mutation("mark_failed") as events:
            task = self._transition(task_id, {TaskStatus.IN_PROGRESS}, TaskStatus.FAILED)
            result = error if isinstance(error, TaskResult) else TaskResult.failure(error)
            task.completed_at = time.time()
            task.result = result
            self._last_finished_id = task_id
            events.append(
                self._event(PlanEventType.TASK_FAILED, task_id, TaskStatus.FAILED, error=result.error)
            )
            self._block_dependents(task_id, events)
            self._check_plan_completion(events)
            return task.snapshot()

    def mark_skipped(self, task_id: str, reason: str | None = None) -> Task:
        with self._mutation("mark_skipped") as events:
            task = self._transition(task_id, {TaskStatus.PENDING, TaskStatus.BLOCKED}, TaskStatus.SKIPPED)
            summary = f"Skipped: {reason}" if reason else "Skipped"
            task.result = TaskResult(success=False, summary=summary, error=reason)
            events.append(self._event(PlanEventType.TASK_SKIPPED, task_id, TaskStatus.SKIPPED, error=reason))
            self._block_dependents(task_id, events)
            self._check_plan_completion(events)
            return task.snapshot()

    def reset_task(self, task_id: str) -> Task:
        """Return a failed or blocked task to pending so it can run again.

        Dependents that were blocked only because of this task are reset too.
        """
        with self._mutation("reset_task") as events:
            plan = self._require_plan("reset_task")
            task = self._transition(task_id, {TaskStatus.FAILED, TaskStatus.BLOCKED}, TaskStatus.PENDING)
            self._reset_fields(task)
            events.append(self._event(PlanEventType.TASK_RESET, task_id, TaskStatus.PENDING))
            self._unblock_dependents(task_id, events)
            if plan.status in (PlanStatus.COMPLETED, PlanStatus.FAILED):
                plan.status = PlanStatus.EXECUTING
                events.append(self._event(PlanEventType.PLAN_UPDATED, status=plan.status))
            return task.snapshot()

    def record_replanning(self, reason: str) -> None:
        """Announce that the replanner is about to reshape the plan."""
        with self._mutation("record_replanning") as events:
            self._require_plan("record_replanning")
            events.append(self._event(PlanEventType.REPLANNING, error=reason))

    # ------------------------------------------------------------------
    # Task context
    # ------------------------------------------------------------------
    def add_discovery(self, task_id: str, discovery: str) -> None:
        with self._mutation("add_discovery"):
            self._require_plan("add_discovery")
            self._require_task(task_id).context.discoveries.append(discovery)

    def add_decision(self, task_id: str, decision: str) -> None:
        with self._mutation("add_decision"):
            self._require_plan("add_decision")
            self._require_task(task_id).context.decisions.append(decision)

    def add_file_read(self, task_id: str, path: str) -> None:
        with self._mutation("add_file_read"):
            self._require_plan("add_file_read")
            _extend_unique(self._require_task(task_id).context.files_read, [path])

    def add_file_modified(self, task_id: str, path: str) -> None:
        with self._mutation("add_file_modified"):
            self._require_plan("add_file_modified")
            _extend_unique(self._require_task(task_id).context.files_modified, [path])

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------
    def subscribe(self, listener: PlanListener) -> Callable[[], None]:
        """Register ``listener``; returns a callable that unsubscribes it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    @contextmanager
    def _mutation(self, operation: str) -> Iterator[list[PlanEvent]]:
        with self._lock:
            if self._emitting:
                raise ListenerMutationError(operation)
            events: list[PlanEvent] = []
            yield events
            self._emit(events)

    def _emit(self, events: Iterable[PlanEvent]) -> None:
        listeners = list(self._listeners)
        self._emitting = True
        try:
            for event in events:
                for listener in listeners:
                    try:
                        listener(event)
                    except Exception:
                        LOGGER.exception("Plan listener failed handling %s", event.type.value)
        finally:
            self._emitting = False

    def _event(
        self,
        event_type: PlanEventType,
        task_id: str | None = None,
        status: TaskStatus | PlanStatus | None = None,
        *,
        error: str | None = None,
    ) -> PlanEvent:
        plan_id = self._plan.id if self._plan is not None else None
        return PlanEvent(
            type=event_type,
            plan_id=plan_id,
            task_id=task_id,
            status=status,
            error=error,
            epoch=self._epoch,
        )

    def _require_plan(self, operation: str) -> TaskPlan:
        if self._plan is None:
            raise PlanNotInitializedError(operation)
        return self._plan

    def _require_task(self, task_id: str) -> Task:
        plan = self._require_plan("task lookup")
        task = plan.task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def _dependency_status(self, task_id: str) -> TaskStatus | None:
        task = self._plan.task(task_id) if self._plan is not None else None
        return task.status if task is not None else None

    def _transition(self, task_id: str, allowed: set[TaskStatus], target: TaskStatus) -> Task:
        self._require_plan(f"transition to {target.value}")
        task = self._require_task(task_id)
        if task.status not in allowed:
            raise InvalidTransitionError(task_id, task.status, target)
        LOGGER.debug("Task %s: %s -> %s", task_id, task.status.value, target.value)
        task.status = target
        return task

    @staticmethod
    def _reset_fields(task: Task) -> None:
        task.result = None
        task.started_at = None
        task.completed_at = None

    def _block_dependents(self, task_id: str, events: list[PlanEvent]) -> None:
        plan = self._plan
        if plan is None:
            return
        for task in plan.ordered_tasks():
            if task.status is TaskStatus.PENDING and task_id in task.dependencies:
                reason = f'Dependency "{task_id}" did not complete'
                task.status = TaskStatus.BLOCKED
                task.result = TaskResult(success=False, summary=f"Blocked: {reason}", error=reason)
                events.append(self._event(PlanEventType.TASK_BLOCKED, task.id, TaskStatus.BLOCKED, error=reason))
                self._block_dependents(task.id, events)

    def _unblock_dependents(self, task_id: str, events: list[PlanEvent]) -> None:
        plan = self._plan
        if plan is None:
            return
        for task in plan.ordered_tasks():
            if task.status is not TaskStatus.BLOCKED or task_id not in task.dependencies:
                continue
            if any(self._dependency_status(dep) in _BLOCKING_STATUSES for dep in task.dependencies):
                continue
            task.status = TaskStatus.PENDING
            self._reset_fields(task)
            events.append(self._event(PlanEventType.TASK_RESET, task.id, TaskStatus.PENDING))
            self._unblock_dependents(task.id, events)

    def _check_plan_completion(self, events: list[PlanEvent]) -> None:
        plan = self._plan
        if plan is None:
            return
        if any(task.status in (TaskStatus.PENDING, TaskStatus.IN_PROGRESS) for task in plan.tasks):
            return
        failed = any(task.status in (TaskStatus.FAILED, TaskStatus.BLOCKED) for task in plan.tasks)
        status = PlanStatus.FAILED if failed else PlanStatus.COMPLETED
        if plan.status is status:
            return
        plan.status = status
        if failed:
            events.append(
                self._event(PlanEventType.PLAN_FAILED, status=status, error="One or more tasks failed")
            )
        else:
            events.append(self._event(PlanEventType.PLAN_COMPLETED, status=status))


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def _extend_unique(target: list[str], items: Iterable[str]) -> None:
    for item in items:
        if item not in target:
            target.append(item)


def _check_definitions(definitions: Sequence[TaskDefinition], known: Sequence[TaskDefinition]) -> None:
    seen = {definition.id for definition in known}
    for definition in definitions:
        if not definition.id:
            raise InvalidPlanError("every task needs an id")
        if definition.id in seen:
            raise InvalidPlanError(f"duplicate task id '{definition.id}'")
        seen.add(definition.id)
    for definition in definitions:
        for dep in definition.dependencies:
            if dep not in seen:
                raise InvalidPlanError(f"task '{definition.id}' depends on unknown task '{dep}'")
            if dep == definition.id:
                raise InvalidPlanError(f"task '{definition.id}' depends on itself")


def _topological_order(definitions: Sequence[TaskDefinition]) -> list[str]:
    """Depth-first order that keeps input order wherever dependencies allow."""
    by_id = {definition.id: definition for definition in definitions}
    order: list[str] = []
    state: dict[str, str] = {}

    def visit(task_id: str, trail: tuple[str, ...]) -> None:
        mark = state.get(task_id)
        if mark == "done":
            return
        if mark == "visiting":
            cycle = " -> ".join((*trail, task_id))
            raise InvalidPlanError(f"dependency cycle {cycle}")
        state[task_id] = "visiting"
        for dep in by_id[task_id].dependencies:
            if dep in by_id:
                visit(dep, (*trail, task_id))
        state[task_id] = "done"
        order.append(task_id)

    for definition in definitions:
        visit(definition.id, ())
    return order
