"""Goal decomposition, task execution and replanning."""

from .context import ModelClient, PlanCallbacks, PlanContext
from .context_synthesizer import generate_plan_summary, summarize_plan
from .controller import PlanController, PlanRunResult
from .query_analyzer import analyze_query
from .replanner import (
    ReplanDecision,
    ReplanStrategy,
    RetryFailedStrategy,
    SkipBlockedStrategy,
    create_replan_strategy,
    should_replan,
    simple_replan,
)
from .task_decomposer import create_task_plan
from .task_executor import execute_task
from .task_store import (
    InvalidPlanError,
    InvalidTransitionError,
    ListenerMutationError,
    PlanNotInitializedError,
    TaskNotFoundError,
    TaskStore,
    TaskStoreError,
)
from .types import (
    Complexity,
    ConfigurationError,
    PlanEvent,
    PlanEventType,
    PlanningConfig,
    PlanStatus,
    QueryAnalysis,
    ReplanStrategyName,
    Task,
    TaskDefinition,
    TaskPlan,
    TaskResult,
    TaskStatus,
    TaskType,
)

__all__ = [
    "ModelClient",
    "PlanCallbacks",
    "PlanContext",
    "PlanController",
    "PlanRunResult",
    "analyze_query",
    "create_task_plan",
    "execute_task",
    "should_replan",
    "simple_replan",
    "create_replan_strategy",
    "ReplanDecision",
    "ReplanStrategy",
    "SkipBlockedStrategy",
    "RetryFailedStrategy",
    "generate_plan_summary",
    "summarize_plan",
    "TaskStore",
    "TaskStoreError",
    "InvalidTransitionError",
    "PlanNotInitializedError",
    "TaskNotFoundError",
    "ListenerMutationError",
    "InvalidPlanError",
    "Complexity",
    "ConfigurationError",
    "PlanEvent",
    "PlanEventType",
    "PlanningConfig",
    "PlanStatus",
    "QueryAnalysis",
    "ReplanStrategyName",
    "Task",
    "TaskDefinition",
    "TaskPlan",
    "TaskResult",
    "TaskStatus",
    "TaskType",
]
