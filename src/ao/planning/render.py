"""Render task plans as prompt text for the proposer and for humans."""

from __future__ import annotations

from typing import List, Sequence

from .schema import PlanItem, TaskPlan

PLAN_PROMPT = """## Completed Tasks
{completed}

## Remaining Tasks
{remaining}

## Current Task
{current}"""


def _format_item(item: PlanItem, *, include_summary: bool) -> str:
    line = f"{item.index}. {item.text}"
    if include_summary and item.summary:
        line = f"{line}\n   Summary: {item.summary}"
    return line


def format_plan_prompt(
    items: Sequence[PlanItem],
    *,
    use_last_completed: bool = False,
    include_summaries: bool = False,
) -> str:
    """Format plan items into the completed/remaining/current prompt block.

    ``use_last_completed`` makes the most recently completed item the current
    one, which is what the verification step asks about.
    """
    ordered = sorted(items, key=lambda item: item.index)
    completed = [item for item in ordered if item.completed]
    remaining = [item for item in ordered if not item.completed]
    if use_last_completed:
        current = completed[-1] if completed else None
    else:
        current = remaining[0] if remaining else None

    return PLAN_PROMPT.format(
        completed="\n".join(_format_item(item, include_summary=include_summaries) for item in completed)
        or "No completed tasks.",
        remaining="\n".join(_format_item(item, include_summary=False) for item in remaining)
        or "No remaining tasks.",
        current=current.text if current else "No current task.",
    )


def format_plan_items(items: Sequence[PlanItem]) -> str:
    """Tagged one-line-per-item listing used when reporting a plan change."""
    return "\n".join(
        f'<plan-item completed="{str(item.completed).lower()}" index="{item.index}">{item.text}</plan-item>'
        for item in sorted(items, key=lambda item: item.index)
    )


def format_task_plan(plan: TaskPlan) -> str:
    """Return a human readable overview of every task and its active revision."""
    if not plan.tasks:
        return "No tasks."
    lines: List[str] = []
    for task in plan.tasks:
        marker = "*" if task.task_index == plan.active_task_index else " "
        state = "done" if task.completed else "open"
        title = task.title or task.request
        lines.append(f"{marker} Task {task.task_index} [{state}] {title} ({task.id})")
        lines.append(f"    revisions: {len(task.revisions)} (active {task.active_revision_index})")
        if task.pull_request_number is not None:
            lines.append(f"    pull request: #{task.pull_request_number}")
        if 0 <= task.active_revision_index < len(task.revisions):
            for item in task.revisions[task.active_revision_index].items:
                check = "x" if item.completed else " "
                lines.append(f"    [{check}] {item.index}. {item.text}")
        if task.summary:
            lines.append(f"    summary: {task.summary}")
    return "\n".join(lines)


__all__ = ["PLAN_PROMPT", "format_plan_items", "format_plan_prompt", "format_task_plan"]
