"""Propose phase: choose the next actions to run in the sandbox."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..models.llm_client import LLMClient
from ..prompts import join_sections, render_codebase_tree, render_phase_brief, render_request
from .base import PhaseContext, invoke_phase_result

GATHER_CONTEXT_MODE = "gather_context"
ACT_MODE = "act"

_MODE_GOALS = {
    GATHER_CONTEXT_MODE: (
        "Gather the context needed to plan the request. You may only take READ actions; any change "
        "to the repository will be reverted. Return no actions once you have enough context."
    ),
    ACT_MODE: (
        "Work on the current plan item. Propose the actions that make progress on it; actions in "
        "one response run concurrently, so only group independent actions. Return no actions once "
        "the current item is done. When the remaining items need to change, propose only an "
        "`update_plan` action whose `reasoning` argument explains what to add, edit or remove."
    ),
}


@dataclass(slots=True)
class ProposedAction:
    """One action request; arguments travel as a JSON object encoded in a string."""

    name: str
    arguments_json: str = "{}"

    def arguments(self) -> Dict[str, Any]:
        try:
            value = json.loads(self.arguments_json or "{}")
        except json.JSONDecodeError:
            return {"raw": self.arguments_json}
        return value if isinstance(value, dict) else {"value": value}


@dataclass(slots=True)
class ProposeRequest:
    """Input payload for the Propose phase."""

    mode: str
    request: str
    transcript: str
    plan_prompt: str = ""
    codebase_tree: str = ""
    available_actions: list[str] = field(default_factory=list)
    dependencies_installed: Optional[bool] = None


@dataclass(slots=True)
class ProposeResponse:
    """Structured result returned by the Propose phase."""

    content: str = ""
    actions: list[ProposedAction] = field(default_factory=list)


@dataclass(slots=True)
class ProposeResult:
    """The model's answer and the tokens the call consumed."""

    response: ProposeResponse
    usage_tokens: Optional[int] = None


def build_prompt(request: ProposeRequest) -> str:
    actions = ", ".join(f"`{name}`" for name in request.available_actions) or "none"
    environment = [f"Available actions: {actions}."]
    if request.dependencies_installed is not None:
        state = "installed" if request.dependencies_installed else "not installed"
        environment.append(f"Dependencies are {state}.")
    return join_sections(
        render_phase_brief("propose", _MODE_GOALS.get(request.mode, _MODE_GOALS[ACT_MODE])),
        render_request(request.request),
        f"## Plan\n{request.plan_prompt}" if request.plan_prompt else "",
        "## Environment\n" + " ".join(environment),
        render_codebase_tree(request.codebase_tree),
        request.transcript,
    )


def run(request: ProposeRequest, *, client: LLMClient, context: PhaseContext) -> ProposeResult:
    """Execute the Propose phase via the shared LLM client."""
    outcome = invoke_phase_result(
        "propose",
        request,
        build_prompt(request),
        ProposeResponse,
        client=client,
        context=context,
    )
    return ProposeResult(outcome.value, outcome.usage_tokens)
