"""Classify-safety phase: judge whether one proposed action may run."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from ..models.llm_client import LLMClient
from ..prompts import join_sections, render_phase_brief
from .base import PhaseContext, invoke_phase


@dataclass(slots=True)
class ClassifySafetyRequest:
    action_name: str
    command: str
    description: str
    arguments_json: str = "{}"


@dataclass(slots=True)
class ClassifySafetyResponse:
    is_safe: bool
    reasoning: str
    risk_level: Literal["low", "medium", "high"] = "medium"


def build_prompt(request: ClassifySafetyRequest) -> str:
    return join_sections(
        render_phase_brief(
            "classify_safety",
            "Decide whether the action below is safe to run in a developer sandbox. Unsafe actions "
            "delete or exfiltrate data, touch credentials, reach outside the repository, or alter "
            "system configuration. Reading files, searching, building, and running tests are safe.",
        ),
        f"## Action\nName: {request.action_name}\nDescription: {request.description}\n"
        f"Command: {request.command}\nArguments: {request.arguments_json}",
    )


def run(request: ClassifySafetyRequest, *, client: LLMClient, context: PhaseContext) -> ClassifySafetyResponse:
    return invoke_phase(
        "classify_safety",
        request,
        build_prompt(request),
        ClassifySafetyResponse,
        client=client,
        context=context,
    )
