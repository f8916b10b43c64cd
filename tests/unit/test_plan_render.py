from __future__ import annotations

from ao.planning.render import format_plan_prompt, format_task_plan
from ao.planning.schema import PlanItem, TaskPlan
from ao.planning.store import complete_item, create_task, get_active_task, set_pull_request_number


def _items() -> list[PlanItem]:
    return [
        PlanItem(index=0, text="Read the code", completed=True, summary="Found the parser"),
        PlanItem(index=1, text="Patch the parser", completed=True),
        PlanItem(index=2, text="Add tests"),
        PlanItem(index=3, text="Update docs"),
    ]


def test_plan_prompt_lists_sections_and_current_item() -> None:
    prompt = format_plan_prompt(_items())

    assert "## Completed Tasks\n0. Read the code\n1. Patch the parser" in prompt
    assert "## Remaining Tasks\n2. Add tests\n3. Update docs" in prompt
    assert prompt.endswith("## Current Task\nAdd tests")
    assert "Summary:" not in prompt


def test_plan_prompt_use_last_completed_picks_highest_completed_index() -> None:
    prompt = format_plan_prompt(_items(), use_last_completed=True, include_summaries=True)

    assert prompt.endswith("## Current Task\nPatch the parser")
    assert "Summary: Found the parser" in prompt


def test_plan_prompt_without_items() -> None:
    prompt = format_plan_prompt([])

    assert "No completed tasks." in prompt
    assert "No remaining tasks." in prompt
    assert "No current task." in prompt


def test_task_plan_overview_marks_active_task_and_progress() -> None:
    plan = create_task(None, "Fix bug", "Bug fix", ["A", "B"])
    plan = complete_item(plan, get_active_task(plan).id, 0)
    plan = set_pull_request_number(plan, 3)

    overview = format_task_plan(plan)

    assert overview.startswith("* Task 0 [open] Bug fix")
    assert "pull request: #3" in overview
    assert "[x] 0. A" in overview
    assert "[ ] 1. B" in overview
    assert format_task_plan(TaskPlan()) == "No tasks."
