"""Diagnose phase: explain a run of failing actions."""

from __future__ import annotations

from dataclasses import dataclass, field

from ..models.llm_client import LLMClient
from ..prompts import join_sections, render_codebase_tree, render_phase_brief, render_request
from .base import PhaseContext, invoke_phase


@dataclass(slots=True)
class DiagnoseRequest:
    """Input payload for the Diagnose phase."""

    request: str
    failed_actions: str
    plan_prompt: str = ""
    transcript: str = ""
    codebase_tree: str = ""


@dataclass(slots=True)
class DiagnoseResponse:
    """Structured result returned by the Diagnose phase."""

    diagnosis: str
    suspected_causes: list[str] = field(default_factory=list)
    recommended_next_steps: list[str] = field(default_factory=list)

    def render(self) -> str:
        parts = [self.diagnosis.strip()]
        if self.suspected_causes:
            parts.append("Suspected causes:\n" + "\n".join(f"- {cause}" for cause in self.suspected_causes))
        if self.recommended_next_steps:
            parts.append("Next steps:\n" + "\n".join(f"- {step}" for step in self.recommended_next_steps))
        return "\n\n".join(part for part in parts if part)


def build_prompt(request: DiagnoseRequest) -> str:
    return join_sections(
        render_phase_brief(
            "diagnose",
            "The recent actions keep failing. Identify the most likely cause and what to do differently.",
        ),
        render_request(request.request),
        f"## Plan\n{request.plan_prompt}" if request.plan_prompt else "",
        f"## Failed Actions\n{request.failed_actions}",
        render_codebase_tree(request.codebase_tree),
        request.transcript,
    )


def run(request: DiagnoseRequest, *, client: LLMClient, context: PhaseContext) -> DiagnoseResponse:
    """Execute the Diagnose phase via the shared LLM client."""
    return invoke_phase("diagnose", request, build_prompt(request), DiagnoseResponse, client=client, context=context)
