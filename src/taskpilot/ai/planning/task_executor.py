"""Run a single task to completion with a focused conversation.

Each task gets a fresh conversation seeded with only the context it needs:
its own definition, the original goal, what earlier tasks discovered and
decided, and the results of its dependencies. The loop alternates model
turns and tool execution until the model answers without requesting
tools, or the step budget runs out.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Mapping

from ..orchestration.cancellation import OperationCancelledError, is_cancelled
from ..orchestration.response_normalizer import normalize_response
from ..orchestration.tool_executor import apply_result_to_sinks, execute_tools_directly
from ..orchestration.tool_filter import filter_valid_tool_calls
from ..orchestration.tool_processor import process_xml_tool_calls
from ..orchestration.types import Message, ToolCall
from .context import PlanContext
from .task_store import TaskStore
from .types import AccumulatedContext, Task, TaskResult

__all__ = [
    "execute_task",
    "build_task_prompt",
    "extract_context_from_response",
    "ExtractedContext",
    "TaskConversation",
    "DEFAULT_TASK_SYSTEM_PROMPT",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_TASK_SYSTEM_PROMPT = (
    "You are a coding assistant working through a plan one task at a time. "
    "Use the available tools to inspect the workspace. When the task is done, "
    "reply without calling tools and include a '## Summary' section, plus "
    "'## Discoveries', '## Decisions' or '## Pass to Next' bullet lists when useful."
)

READ_TOOLS = frozenset({"read_file", "search_files", "list_directory"})
WRITE_TOOLS = frozenset({"create_file", "write_file", "insert_lines", "replace_lines", "delete_lines"})
_FAILED_PREFIXES = ("Error:", "Validation failed:", "Cancelled:")

_SECTION_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"^#+\s*(discover|finding|learned)", re.IGNORECASE), "discoveries"),
    (re.compile(r"^#+\s*(decision|chose|decided)", re.IGNORECASE), "decisions"),
    (re.compile(r"^#+\s*(pass|next|subsequent|future)", re.IGNORECASE), "pass_to_next"),
    (re.compile(r"^#+\s*(summary|accomplished|completed)", re.IGNORECASE), "summary"),
)
_BULLET_RE = re.compile(r"^[-*•]\s*(.+)")
MAX_FALLBACK_SUMMARY = 200


# -----------------------------------------------------------------------------
# Prompt
# -----------------------------------------------------------------------------


def build_task_prompt(task: Task, accumulated: AccumulatedContext, previous: list[TaskResult]) -> str:
    criteria = "\n".join(f"- [ ] {item}" for item in task.acceptance_criteria) or "- Complete the task successfully"
    sections = [
        f"## Current Task\n**Title:** {task.title}\n**Description:** {task.description}",
        f"## Acceptance Criteria\n{criteria}",
        f"## Original Goal\n{accumulated.original_goal}",
    ]
    if accumulated.discoveries:
        sections.append("## Key Discoveries So Far\n" + "\n".join(f"- {item}" for item in accumulated.discoveries))
    if accumulated.decisions:
        sections.append("## Decisions Made\n" + "\n".join(f"- {item}" for item in accumulated.decisions))
    if previous:
        lines = []
        for result in previous:
            lines.append(f"- {result.summary}")
            lines.extend(f"  - {note}" for note in result.pass_to_next)
        sections.append("## Previous Task Results\n" + "\n".join(lines))
    sections.append(
        "## Instructions\n"
        "Complete the current task. Focus ONLY on this specific task.\n"
        "Do not proceed to other tasks - just complete this one.\n"
        "Keep your response brief and focused on the task at hand."
    )
    return "\n\n".join(sections)


# -----------------------------------------------------------------------------
# Response context
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ExtractedContext:
    discoveries: tuple[str, ...]
    decisions: tuple[str, ...]
    pass_to_next: tuple[str, ...]
    summary: str


def extract_context_from_response(response: str) -> ExtractedContext:
    """Pull bullet lists and the summary out of the model's final answer."""
    buckets: dict[str, list[str]] = {"discoveries": [], "decisions": [], "pass_to_next": []}
    summary_parts: list[str] = []
    section = ""
    for line in (response or "").splitlines():
        stripped = line.strip()
        matched = next((name for pattern, name in _SECTION_PATTERNS if pattern.match(stripped)), None)
        if matched is not None:
            section = matched
            continue
        if stripped.startswith("#"):
            section = ""
            continue
        bullet = _BULLET_RE.match(stripped)
        if bullet and section in buckets:
            text = bullet.group(1).strip()
            if text:
                buckets[section].append(text)
        if section == "summary" and stripped:
            summary_parts.append(stripped)

    summary = " ".join(summary_parts)
    if not summary:
        first_paragraph = (response or "").strip().split("\n\n")[0]
        summary = first_paragraph[:MAX_FALLBACK_SUMMARY] or "Task completed"
    return ExtractedContext(
        discoveries=tuple(buckets["discoveries"]),
        decisions=tuple(buckets["decisions"]),
        pass_to_next=tuple(buckets["pass_to_next"]),
        summary=summary,
    )


# -----------------------------------------------------------------------------
# Conversation state
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class TaskConversation:
    """Conversation for one task; doubles as the executor's state sink."""

    store: TaskStore
    task_id: str
    messages: list[Message] = field(default_factory=list)

    def update_after_tool_execution(self, call: ToolCall, content: str) -> None:
        self.messages.append(Message.tool(content, tool_call_id=call.id, name=call.function.name))
        if not content.startswith(_FAILED_PREFIXES):
            self._track_files(call)

    def _track_files(self, call: ToolCall) -> None:
        arguments = call.function.arguments
        if not isinstance(arguments, Mapping):
            return
        path = arguments.get("path", arguments.get("filename"))
        if not isinstance(path, str) or not path:
            return
        name = call.function.name
        if name in READ_TOOLS:
            self.store.add_file_read(self.task_id, path)
        elif name in WRITE_TOOLS:
            self.store.add_file_modified(self.task_id, path)


# -----------------------------------------------------------------------------
# Execution loop
# -----------------------------------------------------------------------------


def _cancel(context: PlanContext, task_id: str) -> TaskResult:
    result = TaskResult.cancellation()
    LOGGER.info("Task %s cancelled", task_id)
    context.store.mark_failed(task_id, result)
    return result


def _fail(context: PlanContext, task_id: str, error: str, output: str | None = None) -> TaskResult:
    result = TaskResult.failure(error, output=output)
    LOGGER.warning("Task %s failed: %s", task_id, error)
    context.store.mark_failed(task_id, result)
    return result


async def execute_task(task: Task, context: PlanContext) -> TaskResult:
    """Execute ``task`` and record its outcome in the Task Store.

    The task is moved to in_progress first. A reply without tool calls
    completes it; model errors and an exhausted step budget fail it;
    cancellation fails it with a cancelled result.

    Raises:
        TaskStoreError: If the task is not pending or the plan is gone.
    """
    store = context.store
    started = store.mark_in_progress(task.id)
    context.callbacks.on_task_started(started)

    accumulated = store.get_accumulated_context()
    prompt = build_task_prompt(started, accumulated, store.get_dependency_results(task.id))
    conversation = TaskConversation(store=store, task_id=task.id)
    conversation.messages.append(Message.system(context.system_prompt or DEFAULT_TASK_SYSTEM_PROMPT))
    conversation.messages.append(Message.user(prompt))

    tools_payload = context.registry.get_openai_tools()
    token = context.cancel_token
    final_response: str | None = None

    for step in range(1, context.config.max_steps_per_task + 1):
        if is_cancelled(token):
            return _cancel(context, task.id)

        LOGGER.debug("Task %s step %d", task.id, step)
        try:
            raw = await context.client.send(list(conversation.messages), tools_payload)
        except OperationCancelledError:
            return _cancel(context, task.id)
        except Exception as exc:
            return _fail(context, task.id, f"Model request failed: {exc}")

        if is_cancelled(token):
            return _cancel(context, task.id)

        normalized = normalize_response(raw)
        extraction = process_xml_tool_calls(normalized, context.registry, context.callbacks)
        filtered = filter_valid_tool_calls(extraction.tool_calls, context.registry)
        # Only calls that will get a tool message may appear on the assistant turn.
        answered = {call.id for call in filtered.valid_tool_calls}
        answered.update(result.tool_call_id for result in filtered.error_results)
        by_id: dict[str, ToolCall] = {}
        for call in extraction.tool_calls:
            if call.id in answered and call.id not in by_id:
                by_id[call.id] = call
        if not by_id:
            final_response = extraction.cleaned_content
            conversation.messages.append(Message.assistant(final_response))
            break

        conversation.messages.append(
            Message.assistant(
                extraction.cleaned_content,
                tool_calls=[call.to_openai_dict() for call in by_id.values()],
            )
        )
        if extraction.cleaned_content:
            context.callbacks.on_assistant_message(started, extraction.cleaned_content)

        for error_result in filtered.error_results:
            await apply_result_to_sinks(
                by_id[error_result.tool_call_id], error_result, conversation, context.callbacks
            )

        await execute_tools_directly(
            list(filtered.valid_tool_calls),
            context.registry,
            conversation,
            context.callbacks,
            cancel_token=token,
            timeout_seconds=context.config.tool_timeout_seconds,
        )
    else:
        return _fail(
            context,
            task.id,
            f"Step budget of {context.config.max_steps_per_task} exhausted before the task finished",
        )

    extracted = extract_context_from_response(final_response or "")
    for discovery in extracted.discoveries:
        store.add_discovery(task.id, discovery)
    for decision in extracted.decisions:
        store.add_decision(task.id, decision)

    result = TaskResult(
        success=True,
        summary=extracted.summary,
        output=final_response,
        pass_to_next=extracted.pass_to_next,
    )
    store.mark_completed(task.id, result)
    LOGGER.info("Task %s completed", task.id)
    return result
