"""The decision-making collaborator the orchestrator consults each turn."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Protocol, Sequence

from .conversation import ConversationTurn
from .planning.schema import PlanItem


class ProposalMode(str, Enum):
    GATHER_CONTEXT = "gather_context"
    ACT = "act"


@dataclass(slots=True)
class PlanProposal:
    title: str
    items: List[str] = field(default_factory=list)
    needs_context: bool = False


@dataclass(slots=True)
class Verification:
    completed: bool
    summary: str = ""
    reasoning: str = ""


@dataclass(slots=True)
class ReviewOutcome:
    complete: bool
    new_items: List[str] = field(default_factory=list)
    summary: str = ""


@dataclass(slots=True)
class ProposalContext:
    """Everything besides the turns that a proposal is based on."""

    request: str
    plan_prompt: str = ""
    codebase_tree: str = ""
    available_actions: List[str] = field(default_factory=list)
    dependencies_installed: Optional[bool] = None


class Agent(Protocol):
    """Black-box proposer and judges.

    Every method raises :class:`ao.errors.ProposerError` when it cannot
    produce an answer.
    """

    def plan(
        self,
        context: ProposalContext,
        turns: Sequence[ConversationTurn],
        *,
        allow_context: bool,
    ) -> PlanProposal:
        ...

    def propose(
        self,
        mode: ProposalMode,
        context: ProposalContext,
        turns: Sequence[ConversationTurn],
    ) -> ConversationTurn:
        ...

    def verify(
        self,
        context: ProposalContext,
        item: PlanItem,
        turns: Sequence[ConversationTurn],
    ) -> Verification:
        ...

    def review(
        self,
        context: ProposalContext,
        turns: Sequence[ConversationTurn],
        *,
        changed_files: Sequence[str],
        review_count: int,
    ) -> ReviewOutcome:
        ...

    def update_plan(
        self,
        context: ProposalContext,
        reasoning: str,
        items: Sequence[PlanItem],
        turns: Sequence[ConversationTurn],
    ) -> List[str]:
        """Return the replacement for every remaining item, in order."""
        ...

    def summarize(self, context: ProposalContext, turns: Sequence[ConversationTurn]) -> str:
        ...

    def diagnose(
        self,
        context: ProposalContext,
        failed: Sequence[ConversationTurn],
        turns: Sequence[ConversationTurn],
    ) -> str:
        ...


__all__ = [
    "Agent",
    "PlanProposal",
    "ProposalContext",
    "ProposalMode",
    "ReviewOutcome",
    "Verification",
]
