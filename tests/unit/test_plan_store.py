from __future__ import annotations

import pytest

from ao.errors import EmptyPlanError, InvalidStateError, NotFoundError
from ao.planning.schema import PlanAuthor, PlanItem, TaskPlan
from ao.planning.store import (
    add_review_items,
    complete_item,
    complete_task,
    create_task,
    get_active_items,
    get_active_task,
    get_completed_items,
    get_current_item,
    get_pull_request_number,
    get_remaining_items,
    revise_active_task,
    revise_task,
    set_pull_request_number,
    validate_plan,
)


def _plan_with_items(*items: str) -> TaskPlan:
    return create_task(None, "Add a feature", "Feature", list(items))


def test_create_task_appends_initial_revision_and_activates_it() -> None:
    plan = _plan_with_items("A", "B")
    task = get_active_task(plan)

    assert len(plan.tasks) == 1
    assert plan.active_task_index == 0
    assert task.task_index == 0
    assert len(task.revisions) == 1
    assert task.revisions[0].revision_index == 0
    assert [item.index for item in get_active_items(plan)] == [0, 1]
    assert not any(item.completed for item in get_active_items(plan))


def test_create_task_keeps_previous_tasks_and_records_parent() -> None:
    first = _plan_with_items("A")
    parent_id = get_active_task(first).id
    second = create_task(first, "Follow up", "Follow up", ["C"], parent_task_id=parent_id)

    assert len(second.tasks) == 2
    assert second.active_task_index == 1
    assert get_active_task(second).parent_task_id == parent_id
    assert len(first.tasks) == 1


def test_revise_task_appends_revision_and_leaves_old_one_untouched() -> None:
    plan = _plan_with_items("A", "B")
    task_id = get_active_task(plan).id
    revised = revise_task(plan, task_id, ["C"], PlanAuthor.USER)
    task = get_active_task(revised)

    assert len(task.revisions) == 2
    assert task.active_revision_index == 1
    assert task.revisions[1].revision_index == 1
    assert task.revisions[1].created_by is PlanAuthor.USER
    assert [item.text for item in task.revisions[0].items] == ["A", "B"]


def test_revise_task_carries_completed_items_forward() -> None:
    plan = _plan_with_items("A", "B")
    task_id = get_active_task(plan).id
    plan = complete_item(plan, task_id, 0, "done A")
    revised = revise_active_task(plan, ["X", "Y"])

    items = get_active_items(revised)
    assert [(item.index, item.text, item.completed) for item in items] == [
        (0, "A", True),
        (1, "X", False),
        (2, "Y", False),
    ]


def test_revise_task_unknown_task_is_not_found() -> None:
    plan = _plan_with_items("A")
    with pytest.raises(NotFoundError):
        revise_task(plan, "missing", ["B"])


def test_revisions_cannot_introduce_completed_items() -> None:
    plan = _plan_with_items("A")
    with pytest.raises(InvalidStateError):
        revise_active_task(plan, [PlanItem(index=0, text="B", completed=True)])


def test_complete_item_touches_only_active_revision() -> None:
    plan = _plan_with_items("A", "B")
    task_id = get_active_task(plan).id
    plan = revise_task(plan, task_id, ["A", "B"])
    plan = complete_item(plan, task_id, 1, "finished")

    task = get_active_task(plan)
    assert not any(item.completed for item in task.revisions[0].items)
    completed = get_completed_items(plan)
    assert [(item.index, item.summary) for item in completed] == [(1, "finished")]


def test_complete_item_sequence_writes_do_not_clobber_each_other() -> None:
    plan = _plan_with_items("A", "B")
    task_id = get_active_task(plan).id

    after_a = complete_item(plan, task_id, 0)
    after_b = complete_item(after_a, task_id, 1)

    assert [item.completed for item in get_active_items(after_b)] == [True, True]
    assert [item.completed for item in get_active_items(after_a)] == [True, False]
    assert [item.completed for item in get_active_items(plan)] == [False, False]


def test_complete_item_keeps_summary_when_omitted() -> None:
    plan = _plan_with_items("A")
    task_id = get_active_task(plan).id
    plan = complete_item(plan, task_id, 0, "first")
    plan = complete_item(plan, task_id, 0)
    assert get_active_items(plan)[0].summary == "first"


def test_complete_item_unknown_index_is_not_found() -> None:
    plan = _plan_with_items("A")
    with pytest.raises(NotFoundError):
        complete_item(plan, get_active_task(plan).id, 7)


def test_complete_item_out_of_range_active_revision_is_invalid() -> None:
    plan = _plan_with_items("A")
    task = get_active_task(plan)
    broken = plan.model_copy(update={"tasks": [task.model_copy(update={"active_revision_index": 3})]})
    with pytest.raises(InvalidStateError):
        complete_item(broken, task.id, 0)


def test_complete_task_sets_completion_fields() -> None:
    plan = _plan_with_items("A")
    task_id = get_active_task(plan).id
    plan = complete_task(plan, task_id, "all good")
    task = get_active_task(plan)

    assert task.completed
    assert task.completed_at is not None
    assert task.summary == "all good"


def test_empty_plan_queries_raise_empty_plan() -> None:
    with pytest.raises(EmptyPlanError):
        get_active_task(TaskPlan())
    with pytest.raises(EmptyPlanError):
        get_active_items(TaskPlan())
    assert get_pull_request_number(TaskPlan()) is None


def test_current_and_remaining_items_follow_index_order() -> None:
    plan = _plan_with_items("A", "B", "C")
    task_id = get_active_task(plan).id
    plan = complete_item(plan, task_id, 1)

    assert get_current_item(plan).index == 0
    assert [item.index for item in get_remaining_items(plan)] == [0, 2]

    plan = complete_item(plan, task_id, 0)
    plan = complete_item(plan, task_id, 2)
    assert get_current_item(plan) is None


def test_add_review_items_appends_after_existing_items() -> None:
    plan = _plan_with_items("A", "B")
    task_id = get_active_task(plan).id
    plan = complete_item(plan, task_id, 0)
    plan = add_review_items(plan, ["Fix lint"])

    task = get_active_task(plan)
    assert len(task.revisions) == 2
    assert [(item.index, item.text, item.completed) for item in get_active_items(plan)] == [
        (0, "A", True),
        (1, "B", False),
        (2, "Fix lint", False),
    ]


def test_pull_request_number_round_trips_on_active_task() -> None:
    plan = _plan_with_items("A")
    assert get_pull_request_number(plan) is None
    plan = set_pull_request_number(plan, 12)
    assert get_pull_request_number(plan) == 12


def test_validate_plan_rejects_bad_task_index() -> None:
    plan = _plan_with_items("A")
    task = get_active_task(plan)
    broken = plan.model_copy(update={"tasks": [task.model_copy(update={"task_index": 4})]})
    with pytest.raises(InvalidStateError):
        validate_plan(broken)
