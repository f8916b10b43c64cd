"""Plan phase: turn the user request into ordered plan items."""

from __future__ import annotations

from dataclasses import dataclass, field

from ..models.llm_client import LLMClient
from ..prompts import join_sections, render_codebase_tree, render_phase_brief, render_request
from .base import PhaseContext, invoke_phase


@dataclass(slots=True)
class PlanRequest:
    """Input payload for the Plan phase."""

    request: str
    transcript: str = ""
    codebase_tree: str = ""
    allow_context: bool = True
    previous_plan: str = ""


@dataclass(slots=True)
class PlanResponse:
    """Structured result returned by the Plan phase."""

    title: str
    items: list[str] = field(default_factory=list)
    needs_context: bool = False
    reasoning: str = ""


def build_prompt(request: PlanRequest) -> str:
    goal = (
        "Break the request into a short, ordered list of concrete plan items. Each item must be a "
        "self-contained unit of work that can be verified on its own."
    )
    if request.allow_context:
        goal += (
            " If you cannot plan without reading the repository first, set `needs_context` to true "
            "and leave `items` empty."
        )
    else:
        goal += " Context gathering is finished; you must return plan items now and set `needs_context` to false."
    previous = f"## Previously Completed Work\n{request.previous_plan}" if request.previous_plan else ""
    return join_sections(
        render_phase_brief("plan", goal),
        render_request(request.request),
        previous,
        render_codebase_tree(request.codebase_tree),
        request.transcript,
    )


def run(request: PlanRequest, *, client: LLMClient, context: PhaseContext) -> PlanResponse:
    """Execute the Plan phase via the shared LLM client."""
    return invoke_phase("plan", request, build_prompt(request), PlanResponse, client=client, context=context)
