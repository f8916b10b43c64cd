"""Review phase: check the finished plan against the whole request."""

from __future__ import annotations

from dataclasses import dataclass, field

from ..models.llm_client import LLMClient
from ..prompts import join_sections, render_phase_brief, render_request
from .base import PhaseContext, invoke_phase


@dataclass(slots=True)
class ReviewRequest:
    """Input payload for the Review phase."""

    request: str
    plan_prompt: str
    transcript: str
    changed_files: list[str] = field(default_factory=list)
    review_count: int = 0


@dataclass(slots=True)
class ReviewResponse:
    """Structured result returned by the Review phase."""

    complete: bool
    new_items: list[str] = field(default_factory=list)
    summary: str = ""


def build_prompt(request: ReviewRequest) -> str:
    files = "\n".join(f"- {path}" for path in request.changed_files) or "No files changed."
    return join_sections(
        render_phase_brief(
            "review",
            "Every plan item is done. Decide whether the work as a whole satisfies the request. If it "
            "does not, list only the new items still needed; completed items cannot be changed.",
        ),
        render_request(request.request),
        f"## Plan\n{request.plan_prompt}",
        f"## Files Changed On The Branch\n{files}",
        f"Previous review rounds: {request.review_count}.",
        request.transcript,
    )


def run(request: ReviewRequest, *, client: LLMClient, context: PhaseContext) -> ReviewResponse:
    """Execute the Review phase via the shared LLM client."""
    return invoke_phase("review", request, build_prompt(request), ReviewResponse, client=client, context=context)
