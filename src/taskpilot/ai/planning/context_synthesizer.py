"""Markdown summary of a finished plan."""

from __future__ import annotations

from typing import Sequence

from .types import Task, TaskPlan, TaskStatus

__all__ = ["generate_plan_summary", "summarize_plan"]

MAX_SUMMARY_DISCOVERIES = 5


def generate_plan_summary(
    original_goal: str,
    completed_tasks: Sequence[Task],
    failed_tasks: Sequence[Task],
    skipped_tasks: Sequence[Task] = (),
) -> str:
    lines: list[str] = ["## Summary", "", f"**Goal:** {original_goal}", ""]

    if completed_tasks:
        lines.append(f"### Completed Tasks ({len(completed_tasks)})")
        for task in completed_tasks:
            summary = task.result.summary if task.result and task.result.summary else "Done"
            lines.append(f"- **{task.title}**: {summary}")
        lines.append("")

    if failed_tasks:
        lines.append(f"### Failed Tasks ({len(failed_tasks)})")
        for task in failed_tasks:
            error = task.result.error if task.result and task.result.error else "Failed"
            lines.append(f"- **{task.title}**: {error}")
        lines.append("")

    if skipped_tasks:
        lines.append(f"### Skipped Tasks ({len(skipped_tasks)})")
        for task in skipped_tasks:
            lines.append(f"- **{task.title}**")
        lines.append("")

    discoveries: list[str] = []
    for task in completed_tasks:
        for discovery in task.context.discoveries:
            if discovery not in discoveries:
                discoveries.append(discovery)
    if discoveries:
        lines.append("### Key Discoveries")
        lines.extend(f"- {discovery}" for discovery in discoveries[:MAX_SUMMARY_DISCOVERIES])
        lines.append("")

    modified: list[str] = []
    for task in completed_tasks:
        for path in task.context.files_modified:
            if path not in modified:
                modified.append(path)
    if modified:
        lines.append("### Files Modified")
        lines.extend(f"- {path}" for path in modified)

    return "\n".join(lines).rstrip() + "\n"


def summarize_plan(plan: TaskPlan) -> str:
    """Summary of ``plan`` with tasks grouped by outcome, in execution order."""
    ordered = plan.ordered_tasks()
    return generate_plan_summary(
        plan.original_goal,
        [task for task in ordered if task.status is TaskStatus.COMPLETED],
        [task for task in ordered if task.status in (TaskStatus.FAILED, TaskStatus.BLOCKED)],
        [task for task in ordered if task.status is TaskStatus.SKIPPED],
    )
