"""Pure functions that derive new task plans from existing ones.

Every operation returns a fresh :class:`TaskPlan`; the input plan is never
modified.  Plans can therefore be persisted as a single document replacement
after each mutation.
"""

from __future__ import annotations

import uuid
from typing import Iterable, List, Optional, Sequence, Union

from ..errors import EmptyPlanError, InvalidStateError, NotFoundError
from .schema import PlanAuthor, PlanItem, PlanRevision, Task, TaskPlan, utc_now

ItemSpec = Union[str, PlanItem]


def _pending_items(items: Iterable[ItemSpec], *, start: int = 0) -> List[PlanItem]:
    """Normalise ``items`` into fresh, uncompleted plan items numbered from ``start``."""
    normalised: List[PlanItem] = []
    for offset, item in enumerate(items):
        if isinstance(item, PlanItem):
            if item.completed:
                raise InvalidStateError(
                    f"Plan revisions cannot introduce completed items (item {item.index}: {item.text!r})"
                )
            text = item.text
        else:
            text = str(item)
        normalised.append(PlanItem(index=start + offset, text=text))
    return normalised


def _task_position(plan: TaskPlan, task_id: str) -> int:
    for position, task in enumerate(plan.tasks):
        if task.id == task_id:
            return position
    raise NotFoundError(f"Task not found: {task_id}")


def _replace_task(plan: TaskPlan, position: int, task: Task) -> TaskPlan:
    tasks = list(plan.tasks)
    tasks[position] = task
    return plan.model_copy(update={"tasks": tasks})


def _active_revision(task: Task) -> PlanRevision:
    if not 0 <= task.active_revision_index < len(task.revisions):
        raise InvalidStateError(
            f"Task {task.id} has active revision index {task.active_revision_index} "
            f"but only {len(task.revisions)} revision(s)"
        )
    return task.revisions[task.active_revision_index]


def _append_revision(task: Task, items: List[PlanItem], created_by: PlanAuthor) -> Task:
    revision = PlanRevision(
        revision_index=len(task.revisions),
        items=items,
        created_by=created_by,
    )
    return task.model_copy(
        update={
            "revisions": [*task.revisions, revision],
            "active_revision_index": revision.revision_index,
        }
    )


# ----------------------------------------------------------------- mutations
def create_task(
    plan: Optional[TaskPlan],
    request: str,
    title: str,
    items: Sequence[ItemSpec],
    *,
    parent_task_id: Optional[str] = None,
    created_by: PlanAuthor = PlanAuthor.AGENT,
) -> TaskPlan:
    """Append a new task with an initial revision and make it active."""
    base = plan or TaskPlan()
    revision = PlanRevision(
        revision_index=0,
        items=_pending_items(items),
        created_by=created_by,
    )
    task = Task(
        id=str(uuid.uuid4()),
        task_index=len(base.tasks),
        request=request,
        title=title,
        revisions=[revision],
        active_revision_index=0,
        parent_task_id=parent_task_id,
    )
    return base.model_copy(
        update={"tasks": [*base.tasks, task], "active_task_index": task.task_index}
    )


def revise_task(
    plan: TaskPlan,
    task_id: str,
    new_items: Sequence[ItemSpec],
    created_by: PlanAuthor = PlanAuthor.AGENT,
) -> TaskPlan:
    """Append a revision holding ``new_items`` to the named task.

    Completed items of the currently active revision are carried over first,
    unchanged; the new items are numbered after them.
    """
    position = _task_position(plan, task_id)
    task = plan.tasks[position]
    carried = sorted(
        (item for item in _active_revision(task).items if item.completed),
        key=lambda item: item.index,
    )
    start = carried[-1].index + 1 if carried else 0
    items = [*carried, *_pending_items(new_items, start=start)]
    return _replace_task(plan, position, _append_revision(task, items, created_by))


def revise_active_task(
    plan: TaskPlan,
    new_items: Sequence[ItemSpec],
    created_by: PlanAuthor = PlanAuthor.AGENT,
) -> TaskPlan:
    """Revise the active task; see :func:`revise_task`."""
    return revise_task(plan, get_active_task(plan).id, new_items, created_by)


def add_review_items(plan: TaskPlan, new_items: Sequence[ItemSpec]) -> TaskPlan:
    """Append reviewer-requested items after the existing ones in a new revision."""
    task = get_active_task(plan)
    current = _active_revision(task).items
    completed = sorted((item for item in current if item.completed), key=lambda item: item.index)
    remaining = sorted((item for item in current if not item.completed), key=lambda item: item.index)
    items: List[PlanItem] = list(completed)
    start = completed[-1].index + 1 if completed else 0
    items.extend(_pending_items([*remaining, *new_items], start=start))
    position = _task_position(plan, task.id)
    return _replace_task(plan, position, _append_revision(task, items, PlanAuthor.AGENT))


def complete_item(
    plan: TaskPlan,
    task_id: str,
    item_index: int,
    summary: Optional[str] = None,
) -> TaskPlan:
    """Mark the item with ``index == item_index`` in the active revision as completed.

    The completed item replaces its counterpart inside a rebuilt copy of the
    active revision; earlier revisions are left untouched.  When ``summary``
    is omitted any existing summary is kept.
    """
    position = _task_position(plan, task_id)
    task = plan.tasks[position]
    revision = _active_revision(task)
    if not any(item.index == item_index for item in revision.items):
        raise NotFoundError(
            f"Plan item {item_index} not found in revision {revision.revision_index} of task {task_id}"
        )

    items = [
        item.model_copy(
            update={
                "completed": True,
                "summary": summary if summary is not None else item.summary,
            }
        )
        if item.index == item_index
        else item
        for item in revision.items
    ]
    revisions = list(task.revisions)
    revisions[task.active_revision_index] = revision.model_copy(update={"items": items})
    return _replace_task(plan, position, task.model_copy(update={"revisions": revisions}))


def complete_task(plan: TaskPlan, task_id: str, summary: Optional[str] = None) -> TaskPlan:
    """Mark the task itself as completed."""
    position = _task_position(plan, task_id)
    task = plan.tasks[position]
    updated = task.model_copy(
        update={
            "completed": True,
            "completed_at": utc_now(),
            "summary": summary if summary is not None else task.summary,
        }
    )
    return _replace_task(plan, position, updated)


def set_pull_request_number(plan: TaskPlan, number: int) -> TaskPlan:
    """Record the pull request opened for the active task."""
    task = get_active_task(plan)
    position = _task_position(plan, task.id)
    return _replace_task(plan, position, task.model_copy(update={"pull_request_number": number}))


# -------------------------------------------------------------------- queries
def get_task(plan: TaskPlan, task_id: str) -> Task:
    return plan.tasks[_task_position(plan, task_id)]


def get_active_task(plan: TaskPlan) -> Task:
    """Return the active task or raise :class:`EmptyPlanError`."""
    if not plan.tasks:
        raise EmptyPlanError("No tasks available")
    if not 0 <= plan.active_task_index < len(plan.tasks):
        raise InvalidStateError(
            f"Active task index {plan.active_task_index} is out of range for {len(plan.tasks)} task(s)"
        )
    return plan.tasks[plan.active_task_index]


def get_active_revision(plan: TaskPlan) -> PlanRevision:
    return _active_revision(get_active_task(plan))


def get_active_items(plan: TaskPlan) -> List[PlanItem]:
    """Return the items of the active task's active revision."""
    return list(get_active_revision(plan).items)


def get_current_item(plan: TaskPlan) -> Optional[PlanItem]:
    """Return the lowest-index uncompleted item, or ``None`` when all are done."""
    remaining = get_remaining_items(plan)
    return remaining[0] if remaining else None


def get_remaining_items(plan: TaskPlan) -> List[PlanItem]:
    return sorted(
        (item for item in get_active_items(plan) if not item.completed),
        key=lambda item: item.index,
    )


def get_completed_items(plan: TaskPlan) -> List[PlanItem]:
    return sorted(
        (item for item in get_active_items(plan) if item.completed),
        key=lambda item: item.index,
    )


def get_pull_request_number(plan: TaskPlan) -> Optional[int]:
    if not plan.tasks:
        return None
    return get_active_task(plan).pull_request_number


def validate_plan(plan: TaskPlan) -> TaskPlan:
    """Raise :class:`InvalidStateError` when ``plan`` breaks an index invariant."""
    if plan.tasks and not 0 <= plan.active_task_index < len(plan.tasks):
        raise InvalidStateError(f"Active task index {plan.active_task_index} is out of range")
    for position, task in enumerate(plan.tasks):
        if task.task_index != position:
            raise InvalidStateError(f"Task {task.id} has index {task.task_index}, expected {position}")
        for expected, revision in enumerate(task.revisions):
            if revision.revision_index != expected:
                raise InvalidStateError(
                    f"Task {task.id} revision {expected} carries index {revision.revision_index}"
                )
        _active_revision(task)
    return plan


__all__ = [
    "add_review_items",
    "complete_item",
    "complete_task",
    "create_task",
    "get_active_items",
    "get_active_revision",
    "get_active_task",
    "get_completed_items",
    "get_current_item",
    "get_pull_request_number",
    "get_remaining_items",
    "get_task",
    "revise_active_task",
    "revise_task",
    "set_pull_request_number",
    "validate_plan",
]
