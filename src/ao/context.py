"""Token accounting for the conversation and the summarization policy."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from .conversation import ConversationTurn, TurnLog, TurnRole, summary_marker_pair

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 60_000
DEFAULT_KEEP_LAST_TURNS = 20

Summarizer = Callable[[List[ConversationTurn]], str]


@dataclass(slots=True, frozen=True)
class BudgetSettings:
    """Constants of the token heuristic and the summarization trigger."""

    max_tokens: int = DEFAULT_MAX_TOKENS
    keep_last_turns: int = DEFAULT_KEEP_LAST_TURNS
    chars_per_token: int = 4
    action_name_surcharge: int = 1
    argument_surcharge: int = 1


def _turn_chars(turn: ConversationTurn, settings: BudgetSettings) -> int:
    total = len(turn.content)
    if turn.role is TurnRole.ASSISTANT:
        for action in turn.actions:
            total += len(action.name) * settings.action_name_surcharge
            total += len(action.arguments_json()) * settings.argument_surcharge
    return total


def estimate_tokens(
    turns: Sequence[ConversationTurn],
    settings: BudgetSettings = BudgetSettings(),
) -> int:
    """Estimate tokens for ``turns``.

    Each turn counts ``ceil(chars / chars_per_token)`` unless the proposer
    reported an actual usage count for it.
    """
    return sum(estimate_turn_tokens(turn, settings) for turn in turns)


def estimate_turn_tokens(
    turn: ConversationTurn,
    settings: BudgetSettings = BudgetSettings(),
) -> int:
    if turn.usage_tokens is not None:
        return turn.usage_tokens
    return math.ceil(_turn_chars(turn, settings) / settings.chars_per_token)


def split_keeping_groups(turns: Sequence[ConversationTurn], keep_last: int) -> int:
    """Return the index that leaves at least ``keep_last`` turns at the end.

    The split never separates an assistant turn from its action results: when
    it would land inside such a group, the whole group moves to the tail.
    """
    if keep_last <= 0:
        return len(turns)
    cut = max(len(turns) - keep_last, 0)
    while 0 < cut < len(turns) and turns[cut].role is TurnRole.ACTION_RESULT:
        cut -= 1
    return cut


def calculate_budget(
    turns: Sequence[ConversationTurn],
    *,
    exclude_hidden: bool = False,
    exclude_from_end: int = 0,
    settings: BudgetSettings = BudgetSettings(),
) -> int:
    """Sum the estimated tokens of ``turns`` after applying the exclusions."""
    counted = list(turns[: split_keeping_groups(turns, exclude_from_end)])
    if exclude_hidden:
        counted = [turn for turn in counted if not turn.hidden]
    return estimate_tokens(counted, settings)


def turns_since_last_summary(turns: Sequence[ConversationTurn]) -> List[ConversationTurn]:
    """Return the turns after the most recent summary marker.

    Without any marker the whole history is returned.
    """
    last_marker = -1
    for position, turn in enumerate(turns):
        if turn.summary_marker:
            last_marker = position
    return list(turns[last_marker + 1 :])


def select_turns_to_summarize(
    turns: Sequence[ConversationTurn],
    keep_last: int,
) -> List[ConversationTurn]:
    """Pick the turns a summarization pass should compress."""
    since = turns_since_last_summary(turns)
    return since[: split_keeping_groups(since, keep_last)]


class ContextBudget:
    """Decide when the proposer's context must be compressed, and compress it."""

    def __init__(self, settings: Optional[BudgetSettings] = None) -> None:
        self.settings = settings or BudgetSettings()

    def in_budget_tokens(self, turns: Sequence[ConversationTurn]) -> int:
        return calculate_budget(turns, exclude_hidden=True, settings=self.settings)

    def exceeds_ceiling(self, turns: Sequence[ConversationTurn]) -> bool:
        return self.in_budget_tokens(turns) > self.settings.max_tokens

    def needs_summary(self, turns: Sequence[ConversationTurn]) -> bool:
        """Over the ceiling and with at least one turn a summary could absorb."""
        if not self.exceeds_ceiling(turns):
            return False
        return bool(select_turns_to_summarize(turns, self.settings.keep_last_turns))

    def summarize(
        self,
        log: TurnLog,
        summarizer: Summarizer,
    ) -> Optional[tuple[ConversationTurn, ConversationTurn]]:
        """Replace the summarizable span of ``log`` with one marker pair.

        Returns the appended pair, or ``None`` when there is nothing left to
        summarize.
        """
        selected = select_turns_to_summarize(log.model_view(), self.settings.keep_last_turns)
        if not selected:
            LOGGER.info("Nothing to summarize; %d turn(s) remain in context", len(log.model_view()))
            return None
        summary = summarizer(selected)
        pair = summary_marker_pair(summary, selected)
        log.extend(pair)
        LOGGER.info("Summarized %d turn(s) into a summary marker", len(selected))
        return pair


__all__ = [
    "BudgetSettings",
    "ContextBudget",
    "DEFAULT_KEEP_LAST_TURNS",
    "DEFAULT_MAX_TOKENS",
    "calculate_budget",
    "estimate_tokens",
    "estimate_turn_tokens",
    "select_turns_to_summarize",
    "split_keeping_groups",
    "turns_since_last_summary",
]
