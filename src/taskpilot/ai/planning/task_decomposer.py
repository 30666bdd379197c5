"""Break a user goal into a plan of small, dependent tasks.

The model is asked for a JSON array of tasks with index-based
dependencies. Anything unusable (an empty reply, invalid JSON, a model
error) falls back to a single task covering the whole goal, so a plan is
always created unless the user cancels.
"""

from __future__ import annotations

import json
import logging
import re
import time
from typing import Any, Sequence

from ..orchestration.cancellation import OperationCancelledError
from ..orchestration.response_normalizer import normalize_response
from ..orchestration.types import Message
from .context import PlanContext
from .types import PlanningConfig, QueryAnalysis, TaskDefinition, TaskPlan

__all__ = [
    "create_task_plan",
    "decompose_query",
    "build_decomposition_prompt",
    "parse_decomposition_response",
    "create_fallback_plan",
]

LOGGER = logging.getLogger(__name__)

PLANNER_SYSTEM_PROMPT = "You are a task planning assistant that outputs JSON."

_JSON_FENCE_RE = re.compile(r"```(?:json)?\s*(?P<body>[\s\S]*?)```", re.IGNORECASE)
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(value: int) -> str:
    digits: list[str] = []
    while True:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
        if value == 0:
            return "".join(reversed(digits))


def _task_id(index: int, stamp: str) -> str:
    return f"task-{index + 1}-{stamp}"


def build_decomposition_prompt(
    query: str,
    analysis: QueryAnalysis,
    config: PlanningConfig,
    tool_names: Sequence[str],
) -> str:
    context_line = (
        f"- Mentioned Context: {', '.join(analysis.required_context)}\n" if analysis.required_context else ""
    )
    tools = ", ".join(tool_names) if tool_names else "(none)"
    return f"""Break the user's request into small, atomic tasks.

## User Request
{query}

## Analysis
- Task Type: {analysis.task_type.value}
- Complexity: {analysis.complexity.value}
{context_line}
## Instructions

Break this request into discrete tasks (at most {config.max_tasks}). Each task should:

1. Be completable in isolation with focused context
2. Have clear, verifiable acceptance criteria
3. List any dependencies on earlier tasks (by 0-based task index)
4. Name the tools it will likely need

Available tools: {tools}

Keep information gathering (reading, searching) separate from presenting results.

## Output Format

Respond with a JSON array of tasks:

```json
[
  {{
    "title": "Short descriptive title",
    "description": "Detailed description of what to do",
    "acceptanceCriteria": ["Criterion 1", "Criterion 2"],
    "dependencies": [],
    "requiredTools": ["tool1"]
  }}
]
```

## Rules

1. Tasks are ordered so dependencies come before dependent tasks
2. Dependencies are 0-based indices of earlier tasks: if task 2 depends on task 1, use [1]
3. A task does ONE thing
4. The last task presents results or answers the user
5. Maximum {config.max_tasks} tasks total
"""


def parse_decomposition_response(
    response: str,
    *,
    max_tasks: int,
    tool_names: Sequence[str] = (),
    stamp: str | None = None,
) -> list[TaskDefinition] | None:
    """Turn the model's JSON array into task definitions.

    Items without a title or description are dropped. Dependencies that do
    not point at an earlier, kept task are discarded, which rules out
    cycles. Returns None when nothing usable was found.
    """
    match = _JSON_FENCE_RE.search(response or "")
    payload = match.group("body").strip() if match else (response or "").strip()
    try:
        parsed = json.loads(payload)
    except json.JSONDecodeError as exc:
        LOGGER.warning("Failed to parse decomposition response: %s", exc)
        return None
    if not isinstance(parsed, list):
        LOGGER.warning("Decomposition response is not a JSON array")
        return None

    stamp = stamp or _base36(int(time.time() * 1000))
    known_tools = set(tool_names)
    index_to_id: dict[int, str] = {}
    definitions: list[TaskDefinition] = []
    for index, item in enumerate(parsed):
        if len(definitions) >= max_tasks:
            LOGGER.info("Plan truncated to %d task(s)", max_tasks)
            break
        if not isinstance(item, dict):
            continue
        title = item.get("title")
        description = item.get("description")
        if not isinstance(title, str) or not title.strip():
            LOGGER.debug("Task %d missing title", index)
            continue
        if not isinstance(description, str) or not description.strip():
            LOGGER.debug("Task %d missing description", index)
            continue

        task_id = _task_id(len(definitions), stamp)
        dependencies: list[str] = []
        for dep in _as_list(item.get("dependencies")):
            dep_index = _as_index(dep)
            if dep_index is None or dep_index >= index:
                continue
            dep_id = index_to_id.get(dep_index)
            if dep_id is not None and dep_id not in dependencies:
                dependencies.append(dep_id)

        required = [str(tool) for tool in _as_list(item.get("requiredTools", item.get("required_tools")))]
        if known_tools:
            required = [tool for tool in required if tool in known_tools]

        definitions.append(
            TaskDefinition.create(
                task_id,
                title.strip(),
                description.strip(),
                acceptance_criteria=[
                    str(entry)
                    for entry in _as_list(item.get("acceptanceCriteria", item.get("acceptance_criteria")))
                ],
                dependencies=dependencies,
                required_tools=required,
            )
        )
        index_to_id[index] = task_id

    return definitions or None


def create_fallback_plan(query: str, tool_names: Sequence[str] = ()) -> list[TaskDefinition]:
    """A single task that covers the whole request."""
    stamp = _base36(int(time.time() * 1000))
    title = f"Complete: {query[:50]}{'...' if len(query) > 50 else ''}"
    return [
        TaskDefinition.create(
            _task_id(0, stamp),
            title,
            query,
            acceptance_criteria=["Task completed successfully"],
            required_tools=list(tool_names),
        )
    ]


async def decompose_query(
    query: str,
    analysis: QueryAnalysis,
    context: PlanContext,
) -> tuple[list[TaskDefinition], bool]:
    """Ask the model for a task breakdown.

    Returns:
        The task definitions and whether the fallback plan was used.

    Raises:
        OperationCancelledError: If cancelled before or during the request.
    """
    token = context.cancel_token
    if token is not None:
        token.raise_if_cancelled("planning")

    tool_names = context.registry.list_names()
    prompt = build_decomposition_prompt(query, analysis, context.config, tool_names)
    conversation = [Message.system(PLANNER_SYSTEM_PROMPT), Message.user(prompt)]
    try:
        raw = await context.client.send(conversation, [])
    except OperationCancelledError:
        raise
    except Exception as exc:
        LOGGER.error("Error during query decomposition: %s", exc)
        return create_fallback_plan(query, tool_names), True

    if token is not None:
        token.raise_if_cancelled("planning")

    content = normalize_response(raw).content
    if not content.strip():
        LOGGER.warning("Empty response from the model during decomposition")
        return create_fallback_plan(query, tool_names), True

    definitions = parse_decomposition_response(
        content, max_tasks=context.config.max_tasks, tool_names=tool_names
    )
    if definitions is None:
        return create_fallback_plan(query, tool_names), True
    return definitions, False


async def create_task_plan(query: str, analysis: QueryAnalysis, context: PlanContext) -> TaskPlan:
    """Decompose ``query`` and register the resulting plan in the Task Store."""
    definitions, used_fallback = await decompose_query(query, analysis, context)
    if used_fallback:
        LOGGER.info("Using single-task fallback plan")
    plan = context.store.create_plan(query, definitions)
    context.callbacks.on_plan_created(plan)
    return plan


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, list):
        return value
    return []


def _as_index(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None
