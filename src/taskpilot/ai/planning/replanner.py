"""Replanning policy applied after a task fails or tasks become blocked."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from .task_store import TaskStore
from .types import PlanningConfig, ReplanStrategyName, TaskStatus

__all__ = [
    "ReplanDecision",
    "ReplanStrategy",
    "SkipBlockedStrategy",
    "RetryFailedStrategy",
    "should_replan",
    "simple_replan",
    "create_replan_strategy",
]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ReplanDecision:
    """What the replanner did and whether the run can continue.

    Attributes:
        can_proceed: True when a pending task remains.
        tasks_skipped: Blocked tasks moved to skipped.
        tasks_retried: Failed tasks returned to pending.
        delay_seconds: Back-off the controller should wait before continuing.
    """

    can_proceed: bool
    tasks_skipped: int = 0
    tasks_retried: int = 0
    delay_seconds: float = 0.0


@runtime_checkable
class ReplanStrategy(Protocol):
    def apply(self, store: TaskStore) -> ReplanDecision:
        ...


def should_replan(store: TaskStore) -> bool:
    """True when the last finished task failed or any task is blocked."""
    if store.get_plan() is None:
        return False
    last = store.last_finished_task
    if last is not None and last.status is TaskStatus.FAILED:
        return True
    return store.get_status_summary().blocked > 0


def _skip_blocked(store: TaskStore) -> int:
    plan = store.get_plan()
    if plan is None:
        return 0
    skipped = 0
    for task in plan.ordered_tasks():
        # Earlier skips may already have cascaded; re-read the live status.
        if store.get_task(task.id).status is TaskStatus.BLOCKED:
            store.mark_skipped(task.id, "blocked by a task that did not complete")
            skipped += 1
    return skipped


class SkipBlockedStrategy:
    """Skip every blocked task and carry on with whatever is still pending."""

    def apply(self, store: TaskStore) -> ReplanDecision:
        if store.get_plan() is None:
            return ReplanDecision(can_proceed=False)
        store.record_replanning("skipping blocked tasks")
        skipped = _skip_blocked(store)
        can_proceed = store.get_status_summary().pending > 0
        LOGGER.info("Replan: skipped %d task(s), can proceed: %s", skipped, can_proceed)
        return ReplanDecision(can_proceed=can_proceed, tasks_skipped=skipped)


class RetryFailedStrategy:
    """Re-queue the failed task with exponential back-off.

    A task is retried while it has run at most ``max_replans`` times; after
    that the strategy falls back to skipping blocked tasks.
    """

    def __init__(self, max_replans: int = 2, backoff_seconds: float = 1.0) -> None:
        self.max_replans = max_replans
        self.backoff_seconds = backoff_seconds

    def apply(self, store: TaskStore) -> ReplanDecision:
        if store.get_plan() is None:
            return ReplanDecision(can_proceed=False)
        retried = 0
        delay = 0.0
        last = store.last_finished_task
        if (
            last is not None
            and last.status is TaskStatus.FAILED
            and not (last.result is not None and last.result.cancelled)
            and last.attempts <= self.max_replans
        ):
            store.record_replanning(f"retrying task {last.id}")
            store.reset_task(last.id)
            retried = 1
            delay = self.backoff_seconds * (2 ** (last.attempts - 1))
            LOGGER.info("Replan: retrying %s (attempt %d) after %.1fs", last.id, last.attempts + 1, delay)
        else:
            store.record_replanning("retries exhausted; skipping blocked tasks")

        skipped = _skip_blocked(store)
        can_proceed = store.get_status_summary().pending > 0
        return ReplanDecision(
            can_proceed=can_proceed,
            tasks_skipped=skipped,
            tasks_retried=retried,
            delay_seconds=delay,
        )


def simple_replan(store: TaskStore) -> ReplanDecision:
    """Skip blocked tasks; the run can proceed iff a pending task remains."""
    return SkipBlockedStrategy().apply(store)


def create_replan_strategy(config: PlanningConfig) -> ReplanStrategy:
    if config.replan_strategy is ReplanStrategyName.RETRY_FAILED:
        return RetryFailedStrategy(config.max_replans, config.retry_backoff_seconds)
    return SkipBlockedStrategy()
