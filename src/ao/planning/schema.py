"""Typed records describing tasks, their plan revisions, and plan items."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


class RecordModel(BaseModel):
    """Base Pydantic model with strict field handling.

    Records are frozen: every plan mutation builds new records instead of
    editing existing ones.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)


class PlanAuthor(str, Enum):
    """Who produced a plan revision."""

    AGENT = "agent"
    USER = "user"


class PlanItem(RecordModel):
    """Single atomic unit of work inside a revision."""

    index: int
    text: str
    completed: bool = False
    summary: Optional[str] = None


class PlanRevision(RecordModel):
    """Immutable snapshot of a task's plan items."""

    revision_index: int
    items: List[PlanItem] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    created_by: PlanAuthor = PlanAuthor.AGENT


class Task(RecordModel):
    """User request together with the revision trail of its plan."""

    id: str
    task_index: int
    request: str
    title: str = ""
    created_at: datetime = Field(default_factory=utc_now)
    completed: bool = False
    completed_at: Optional[datetime] = None
    summary: Optional[str] = None
    revisions: List[PlanRevision] = Field(default_factory=list)
    active_revision_index: int = 0
    parent_task_id: Optional[str] = None
    pull_request_number: Optional[int] = None


class TaskPlan(RecordModel):
    """Root aggregate holding every task and the active task pointer."""

    tasks: List[Task] = Field(default_factory=list)
    active_task_index: int = 0


__all__ = [
    "PlanAuthor",
    "PlanItem",
    "PlanRevision",
    "RecordModel",
    "Task",
    "TaskPlan",
    "utc_now",
]
