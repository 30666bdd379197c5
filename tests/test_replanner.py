"""Tests for replanning strategies."""

from __future__ import annotations

import pytest

from taskpilot.ai.planning.replanner import (
    RetryFailedStrategy,
    SkipBlockedStrategy,
    create_replan_strategy,
    should_replan,
    simple_replan,
)
from taskpilot.ai.planning.task_store import TaskStore
from taskpilot.ai.planning.types import (
    PlanEvent,
    PlanEventType,
    PlanningConfig,
    TaskDefinition,
    TaskResult,
    TaskStatus,
)


@pytest.fixture
def store() -> TaskStore:
    store = TaskStore()
    store.create_plan(
        "goal",
        [
            TaskDefinition.create("A", "Task A"),
            TaskDefinition.create("B", "Task B", dependencies=["A"]),
            TaskDefinition.create("C", "Task C"),
        ],
    )
    return store


def _fail(store: TaskStore, task_id: str, error: str | TaskResult = "bad") -> None:
    store.mark_in_progress(task_id)
    store.mark_failed(task_id, error)


class TestShouldReplan:
    def test_no_plan(self) -> None:
        assert should_replan(TaskStore()) is False

    def test_healthy_plan(self, store: TaskStore) -> None:
        store.mark_in_progress("A")
        store.mark_completed("A", TaskResult(success=True, summary="ok"))
        assert should_replan(store) is False

    def test_after_failure(self, store: TaskStore) -> None:
        _fail(store, "A")
        assert should_replan(store) is True


class TestSkipBlocked:
    def test_blocked_tasks_are_skipped(self, store: TaskStore) -> None:
        events: list[PlanEvent] = []
        store.subscribe(events.append)
        _fail(store, "A")

        decision = simple_replan(store)

        assert decision.can_proceed is True
        assert decision.tasks_skipped == 1
        assert decision.tasks_retried == 0
        assert store.get_task("B").status is TaskStatus.SKIPPED
        assert PlanEventType.REPLANNING in [event.type for event in events]

    def test_cannot_proceed_without_pending_tasks(self, store: TaskStore) -> None:
        store.mark_in_progress("C")
        store.mark_completed("C", TaskResult(success=True, summary="ok"))
        _fail(store, "A")

        decision = SkipBlockedStrategy().apply(store)

        assert decision.can_proceed is False
        assert store.has_next_task() is False

    def test_no_plan(self) -> None:
        assert simple_replan(TaskStore()).can_proceed is False


class TestRetryFailed:
    def test_failed_task_is_requeued_with_backoff(self, store: TaskStore) -> None:
        strategy = RetryFailedStrategy(max_replans=2, backoff_seconds=0.5)

        _fail(store, "A")
        first = strategy.apply(store)
        assert first.tasks_retried == 1
        assert first.delay_seconds == 0.5
        assert store.get_task("A").status is TaskStatus.PENDING
        assert store.get_task("B").status is TaskStatus.PENDING

        _fail(store, "A")
        second = strategy.apply(store)
        assert second.tasks_retried == 1
        assert second.delay_seconds == 1.0

    def test_falls_back_to_skipping_when_exhausted(self, store: TaskStore) -> None:
        strategy = RetryFailedStrategy(max_replans=1, backoff_seconds=0)
        _fail(store, "A")
        assert strategy.apply(store).tasks_retried == 1
        _fail(store, "A")

        decision = strategy.apply(store)

        assert decision.tasks_retried == 0
        assert decision.tasks_skipped == 1
        assert store.get_task("A").status is TaskStatus.FAILED
        assert decision.can_proceed is True

    def test_cancelled_tasks_are_not_retried(self, store: TaskStore) -> None:
        _fail(store, "A", TaskResult.cancellation())
        decision = RetryFailedStrategy(max_replans=3).apply(store)
        assert decision.tasks_retried == 0


@pytest.mark.parametrize(
    ("name", "expected"),
    [("skip_blocked", SkipBlockedStrategy), ("retry_failed", RetryFailedStrategy)],
)
def test_create_replan_strategy(name: str, expected: type) -> None:
    strategy = create_replan_strategy(PlanningConfig(replan_strategy=name, max_replans=4))  # type: ignore[arg-type]
    assert isinstance(strategy, expected)
    if isinstance(strategy, RetryFailedStrategy):
        assert strategy.max_replans == 4
