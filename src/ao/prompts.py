"""Prompt templates and helpers shared across the LLM-backed phases."""

from __future__ import annotations

from typing import Sequence

from .conversation import ConversationTurn, TurnRole

JSON_RESPONSE_INSTRUCTION = (
    "Return only JSON. Emit a single JSON object that satisfies the documented response schema. "
    "Do not include markdown fences, explanations, or trailing text."
)

SYSTEM_PROMPT = (
    "You are an autonomous software engineer working inside an isolated sandbox that holds a git "
    "checkout of the target repository. You act only through the actions offered to you, one "
    "structured decision at a time. "
    f"{JSON_RESPONSE_INSTRUCTION}"
)

_ROLE_LABELS = {
    TurnRole.USER: "user",
    TurnRole.ASSISTANT: "assistant",
    TurnRole.ACTION_RESULT: "result",
}


def render_phase_brief(phase: str, goal: str) -> str:
    """Return the heading every phase prompt starts with."""
    return f"## Phase Brief\nYou are executing the `{phase}` phase. {goal}"


def render_request(request: str) -> str:
    return f"## User Request\n{request.strip()}"


def render_codebase_tree(tree: str | None) -> str:
    if not tree:
        return ""
    return f"## Codebase Tree (3 levels deep)\n{tree}"


def render_turn(turn: ConversationTurn) -> str:
    """Render one turn as a tagged block."""
    label = _ROLE_LABELS[turn.role]
    if turn.role is TurnRole.ACTION_RESULT:
        status = turn.status.value if turn.status else "unknown"
        return f"<{label} action={turn.action_name!r} status={status}>\n{turn.content}\n</{label}>"
    body = turn.content.strip()
    if turn.actions:
        calls = "\n".join(f"<action name={action.name!r}>{action.arguments_json()}</action>" for action in turn.actions)
        body = f"{body}\n{calls}" if body else calls
    return f"<{label}>\n{body}\n</{label}>"


def render_transcript(turns: Sequence[ConversationTurn]) -> str:
    """Render the turns the model may see, hidden ones excluded."""
    rendered = [render_turn(turn) for turn in turns if not turn.hidden]
    if not rendered:
        return "## Conversation\nNo previous turns."
    return "## Conversation\n" + "\n\n".join(rendered)


def join_sections(*sections: str) -> str:
    """Join non-empty prompt sections with blank lines."""
    return "\n\n".join(section.strip() for section in sections if section and section.strip())


__all__ = [
    "JSON_RESPONSE_INSTRUCTION",
    "SYSTEM_PROMPT",
    "join_sections",
    "render_codebase_tree",
    "render_phase_brief",
    "render_request",
    "render_transcript",
    "render_turn",
]
