"""Update-plan phase: rewrite the remaining plan items mid-run."""

from __future__ import annotations

from dataclasses import dataclass, field

from ..models.llm_client import LLMClient
from ..prompts import join_sections, render_phase_brief, render_request
from .base import PhaseContext, invoke_phase


@dataclass(slots=True)
class UpdatePlanRequest:
    """Input payload for the Update-plan phase."""

    request: str
    reasoning: str
    plan_prompt: str
    transcript: str


@dataclass(slots=True)
class UpdatePlanResponse:
    """Every remaining item in execution order; completed items are not repeated."""

    items: list[str] = field(default_factory=list)


def build_prompt(request: UpdatePlanRequest) -> str:
    return join_sections(
        render_phase_brief(
            "update_plan",
            "You decided the plan needs to change. Return the full list of remaining items in the order "
            "they should run: changed, added and untouched items alike. Leave an item out to remove it. "
            "Completed items cannot change and must not be listed. Make as few changes as possible.",
        ),
        render_request(request.request),
        f"## Plan\n{request.plan_prompt}",
        f"## Why The Plan Changes\n{request.reasoning.strip() or 'No reasoning given.'}",
        request.transcript,
    )


def run(request: UpdatePlanRequest, *, client: LLMClient, context: PhaseContext) -> UpdatePlanResponse:
    """Execute the Update-plan phase via the shared LLM client."""
    return invoke_phase(
        "update_plan",
        request,
        build_prompt(request),
        UpdatePlanResponse,
        client=client,
        context=context,
    )
