"""Verify phase: judge whether the current plan item is done."""

from __future__ import annotations

from dataclasses import dataclass

from ..models.llm_client import LLMClient
from ..prompts import join_sections, render_phase_brief, render_request
from .base import PhaseContext, invoke_phase


@dataclass(slots=True)
class VerifyRequest:
    request: str
    item_text: str
    plan_prompt: str
    transcript: str


@dataclass(slots=True)
class VerifyResponse:
    completed: bool
    summary: str = ""
    reasoning: str = ""


def build_prompt(request: VerifyRequest) -> str:
    return join_sections(
        render_phase_brief(
            "verify",
            "Decide whether the current plan item has been fully completed based on the conversation. "
            "When it is, summarize what was done in one or two sentences.",
        ),
        render_request(request.request),
        f"## Plan\n{request.plan_prompt}",
        f"## Item Under Review\n{request.item_text}",
        request.transcript,
    )


def run(request: VerifyRequest, *, client: LLMClient, context: PhaseContext) -> VerifyResponse:
    return invoke_phase("verify", request, build_prompt(request), VerifyResponse, client=client, context=context)
