"""Drive a goal from analysis through planning, execution and replanning."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from ..orchestration.cancellation import OperationCancelledError, is_cancelled
from .context import PlanContext
from .context_synthesizer import summarize_plan
from .query_analyzer import analyze_query
from .replanner import ReplanStrategy, create_replan_strategy, should_replan
from .task_decomposer import create_fallback_plan, create_task_plan
from .task_executor import execute_task
from .task_store import TaskStoreError
from .types import ConfigurationError, PlanStatus, QueryAnalysis, TaskPlan, TaskResult

__all__ = ["PlanController", "PlanRunResult"]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class PlanRunResult:
    """Outcome of one :meth:`PlanController.run`.

    Attributes:
        goal: The user goal.
        plan: Final snapshot of the plan, or None if none was created.
        analysis: Heuristic classification of the goal.
        results: Task results keyed by task id, in execution order.
        summary: Markdown summary of the run.
        cancelled: The user cancelled the run.
        halted: The run stopped early because of an error.
        halt_reason: Why the run halted.
        replans: How many times the replan strategy was applied.
    """

    goal: str
    plan: TaskPlan | None = None
    analysis: QueryAnalysis | None = None
    results: dict[str, TaskResult] = field(default_factory=dict)
    summary: str = ""
    cancelled: bool = False
    halted: bool = False
    halt_reason: str | None = None
    replans: int = 0

    @property
    def success(self) -> bool:
        return (
            not self.cancelled
            and not self.halted
            and self.plan is not None
            and self.plan.status is PlanStatus.COMPLETED
        )


class PlanController:
    """Runs goals against a :class:`PlanContext`.

    Example:
        controller = PlanController(PlanContext(client=client, registry=registry))
        outcome = await controller.run("Explain how settings are loaded")
        print(outcome.summary)
    """

    def __init__(self, context: PlanContext, strategy: ReplanStrategy | None = None) -> None:
        self._context = context
        self._strategy = strategy or create_replan_strategy(context.config)

    @property
    def context(self) -> PlanContext:
        return self._context

    async def run(self, goal: str) -> PlanRunResult:
        """Plan and execute ``goal``.

        Task Store and configuration errors are logged and reported through
        :attr:`PlanRunResult.halt_reason` rather than raised.
        """
        context = self._context
        store = context.store
        outcome = PlanRunResult(goal=goal)
        try:
            outcome.analysis = analyze_query(goal)
            LOGGER.info(
                "Goal classified as %s (%s)",
                outcome.analysis.task_type.value,
                outcome.analysis.complexity.value,
            )
            if context.config.enabled:
                await create_task_plan(goal, outcome.analysis, context)
            else:
                plan = store.create_plan(goal, create_fallback_plan(goal, context.registry.list_names()))
                context.callbacks.on_plan_created(plan)
            await self._execute_plan(outcome)
        except OperationCancelledError:
            LOGGER.info("Run cancelled before a plan was created")
            outcome.cancelled = True
        except (TaskStoreError, ConfigurationError) as exc:
            LOGGER.error("Plan run halted: %s", exc)
            outcome.halted = True
            outcome.halt_reason = str(exc)
        finally:
            outcome.plan = store.get_plan()
            if outcome.plan is not None:
                outcome.summary = summarize_plan(outcome.plan)
            if context.config.clear_on_finish:
                store.clear()
        return outcome

    async def _execute_plan(self, outcome: PlanRunResult) -> None:
        context = self._context
        store = context.store
        token = context.cancel_token
        while store.has_next_task():
            if is_cancelled(token):
                outcome.cancelled = True
                return
            task = store.get_next_task()
            if task is None:
                break
            result = await execute_task(task, context)
            outcome.results[task.id] = result
            context.callbacks.on_task_finished(store.get_task(task.id), result)
            if result.cancelled:
                outcome.cancelled = True
                return

            if not should_replan(store):
                continue
            reason = result.error or "blocked tasks"
            context.callbacks.on_replan(reason)
            decision = self._strategy.apply(store)
            outcome.replans += 1
            if decision.delay_seconds > 0:
                await self._backoff(decision.delay_seconds)
            if not decision.can_proceed:
                LOGGER.info("No runnable tasks remain after replanning")
                return

    async def _backoff(self, seconds: float) -> None:
        token = self._context.cancel_token
        if token is None:
            await asyncio.sleep(seconds)
            return
        try:
            await asyncio.wait_for(token.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
