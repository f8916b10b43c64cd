"""Detect sustained action failures from the shape of the turn stream."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence

from .conversation import ConversationTurn, TurnRole

DEFAULT_WINDOW = 3
DEFAULT_ERROR_THRESHOLD = 0.75


def group_action_results(
    turns: Sequence[ConversationTurn],
    *,
    include_diagnosis: bool = False,
) -> List[List[ConversationTurn]]:
    """Group action-result turns by the assistant turn that introduced them.

    A group ends at the next assistant turn or at any other non-result turn.
    Hidden turns are ignored and groups without results are dropped.
    """
    groups: List[List[ConversationTurn]] = []
    current: List[ConversationTurn] = []
    collecting = False

    for turn in turns:
        if turn.hidden:
            continue
        if turn.role is TurnRole.ASSISTANT:
            if current:
                groups.append(current)
            current = []
            collecting = True
        elif turn.role is TurnRole.ACTION_RESULT:
            if collecting and (include_diagnosis or not turn.is_diagnosis):
                current.append(turn)
        elif collecting:
            if current:
                groups.append(current)
            current = []
            collecting = False

    if current:
        groups.append(current)
    return groups


def error_rate(group: Sequence[ConversationTurn]) -> float:
    """Share of results in ``group`` that carry an error status."""
    if not group:
        return 0.0
    return sum(1 for turn in group if turn.is_error) / len(group)


def has_recent_diagnosis(turns: Sequence[ConversationTurn], window: int = DEFAULT_WINDOW) -> bool:
    """Return ``True`` when a diagnosis result sits in the last ``window`` groups.

    Diagnosis results form groups of their own here, so a recent diagnosis
    occupies a slot of the window.
    """
    recent = group_action_results(turns, include_diagnosis=True)[-window:]
    return any(turn.is_diagnosis for group in recent for turn in group)


@dataclass(slots=True, frozen=True)
class ErrorDiagnosisHeuristic:
    """Flag sustained failure across the most recent action groups."""

    window: int = DEFAULT_WINDOW
    threshold: float = DEFAULT_ERROR_THRESHOLD

    def should_diagnose(self, turns: Sequence[ConversationTurn]) -> bool:
        groups = group_action_results(turns)
        if len(groups) < self.window:
            return False
        if has_recent_diagnosis(turns, self.window):
            return False
        return all(error_rate(group) >= self.threshold for group in groups[-self.window :])


def should_diagnose(turns: Sequence[ConversationTurn]) -> bool:
    return ErrorDiagnosisHeuristic().should_diagnose(turns)


def last_failed_actions(turns: Sequence[ConversationTurn]) -> List[ConversationTurn]:
    """Return the trailing run of failed assistant/result turns, oldest first.

    Scanning backwards stops at the first successful action result.
    """
    collected: List[ConversationTurn] = []
    for turn in reversed([turn for turn in turns if not turn.hidden]):
        if turn.role is TurnRole.ACTION_RESULT:
            if not turn.is_error:
                break
            collected.append(turn)
        elif turn.role is TurnRole.ASSISTANT and turn.actions:
            collected.append(turn)
        else:
            break
    collected.reverse()
    while collected and collected[0].role is TurnRole.ACTION_RESULT:
        collected.pop(0)
    return collected


def render_failed_actions(turns: Sequence[ConversationTurn]) -> str:
    """Render failed actions and their error output for a diagnosis prompt."""
    lines: List[str] = []
    for turn in turns:
        if turn.role is TurnRole.ASSISTANT:
            for action in turn.actions:
                lines.append(f"<action name={action.name!r}>{action.arguments_json()}</action>")
        else:
            lines.append(f"<error action={turn.action_name!r}>\n{turn.content}\n</error>")
    return "\n".join(lines)


__all__ = [
    "DEFAULT_ERROR_THRESHOLD",
    "DEFAULT_WINDOW",
    "ErrorDiagnosisHeuristic",
    "error_rate",
    "group_action_results",
    "has_recent_diagnosis",
    "last_failed_actions",
    "render_failed_actions",
    "should_diagnose",
]
