"""Plan data model, pure plan operations, rendering, and persistence."""

from .durable import (
    DocumentPlanStore,
    DurablePlanStore,
    FileDocumentHost,
    SqlitePlanStore,
    embed_plan,
    extract_plan,
    parse_plan,
    render_plan,
)
from .render import format_plan_prompt, format_task_plan
from .schema import PlanAuthor, PlanItem, PlanRevision, Task, TaskPlan
from .store import (
    add_review_items,
    complete_item,
    complete_task,
    create_task,
    get_active_items,
    get_active_task,
    get_current_item,
    get_remaining_items,
    revise_task,
)

__all__ = [
    "DocumentPlanStore",
    "DurablePlanStore",
    "FileDocumentHost",
    "PlanAuthor",
    "PlanItem",
    "PlanRevision",
    "SqlitePlanStore",
    "Task",
    "TaskPlan",
    "add_review_items",
    "complete_item",
    "complete_task",
    "create_task",
    "embed_plan",
    "extract_plan",
    "format_plan_prompt",
    "format_task_plan",
    "get_active_items",
    "get_active_task",
    "get_current_item",
    "get_remaining_items",
    "parse_plan",
    "render_plan",
    "revise_task",
]
