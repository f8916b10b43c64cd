"""Summarize phase: compress old turns into a bounded extraction."""

from __future__ import annotations

from dataclasses import dataclass, field

from ..models.llm_client import LLMClient
from ..prompts import join_sections, render_phase_brief, render_request
from .base import PhaseContext, invoke_phase


@dataclass(slots=True)
class SummarizeRequest:
    request: str
    plan_prompt: str
    transcript: str


@dataclass(slots=True)
class SummarizeResponse:
    summary: str
    relevant_files: list[str] = field(default_factory=list)
    insights: list[str] = field(default_factory=list)
    open_items: list[str] = field(default_factory=list)

    def render(self) -> str:
        """Plain-text form stored in the summary marker."""
        sections = [self.summary.strip()]
        for title, values in (
            ("Relevant files", self.relevant_files),
            ("Insights", self.insights),
            ("Open items", self.open_items),
        ):
            if values:
                sections.append(f"{title}:\n" + "\n".join(f"- {value}" for value in values))
        return "\n\n".join(section for section in sections if section)


def build_prompt(request: SummarizeRequest) -> str:
    return join_sections(
        render_phase_brief(
            "summarize",
            "Condense the conversation below into what later steps still need: file paths, insights, "
            "and open items. Never copy full file contents.",
        ),
        render_request(request.request),
        f"## Plan\n{request.plan_prompt}",
        request.transcript,
    )


def run(request: SummarizeRequest, *, client: LLMClient, context: PhaseContext) -> SummarizeResponse:
    return invoke_phase("summarize", request, build_prompt(request), SummarizeResponse, client=client, context=context)
