"""Conversation turns and the append-only log the engine records them in."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence

from pydantic.type_adapter import TypeAdapter

SUMMARY_ACTION_NAME = "summarize_history"
DIAGNOSE_ACTION_NAME = "diagnose_error"
UPDATE_PLAN_ACTION_NAME = "update_plan"


def _new_id() -> str:
    return uuid.uuid4().hex


class TurnRole(str, Enum):
    """Kinds of entries in the conversation log."""

    USER = "user"
    ASSISTANT = "assistant"
    ACTION_RESULT = "action_result"


class ActionStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


@dataclass(slots=True, frozen=True)
class ActionRequest:
    """Structured action proposed by the assistant."""

    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=_new_id)

    def arguments_json(self) -> str:
        return json.dumps(self.arguments, sort_keys=True, default=str)


@dataclass(slots=True, frozen=True)
class ConversationTurn:
    """One entry in the conversation log.

    The engine only looks at the role, the attached actions or action
    result status, and the flags.  ``replaces`` is set on summary markers
    and lists the ids of the turns the summary stands in for.
    """

    role: TurnRole
    content: str = ""
    actions: tuple[ActionRequest, ...] = ()
    action_id: Optional[str] = None
    action_name: Optional[str] = None
    status: Optional[ActionStatus] = None
    hidden: bool = False
    summary_marker: bool = False
    is_diagnosis: bool = False
    usage_tokens: Optional[int] = None
    replaces: tuple[str, ...] = ()
    id: str = field(default_factory=_new_id)

    @property
    def is_error(self) -> bool:
        return self.role is TurnRole.ACTION_RESULT and self.status is ActionStatus.ERROR

    def with_content(self, content: str) -> "ConversationTurn":
        return replace(self, content=content)

    def with_actions(self, actions: Sequence[ActionRequest]) -> "ConversationTurn":
        return replace(self, actions=tuple(actions))


def user_turn(content: str, *, hidden: bool = False) -> ConversationTurn:
    return ConversationTurn(role=TurnRole.USER, content=content, hidden=hidden)


def assistant_turn(
    content: str = "",
    actions: Sequence[ActionRequest] = (),
    *,
    usage_tokens: Optional[int] = None,
    hidden: bool = False,
) -> ConversationTurn:
    return ConversationTurn(
        role=TurnRole.ASSISTANT,
        content=content,
        actions=tuple(actions),
        usage_tokens=usage_tokens,
        is_diagnosis=any(action.name == DIAGNOSE_ACTION_NAME for action in actions),
        hidden=hidden,
    )


def result_turn(
    action: ActionRequest,
    content: str,
    status: ActionStatus,
    *,
    is_diagnosis: bool = False,
    hidden: bool = False,
) -> ConversationTurn:
    return ConversationTurn(
        role=TurnRole.ACTION_RESULT,
        content=content,
        action_id=action.id,
        action_name=action.name,
        status=status,
        is_diagnosis=is_diagnosis,
        hidden=hidden,
    )


def summary_marker_pair(
    summary: str,
    replaced: Sequence[ConversationTurn],
) -> tuple[ConversationTurn, ConversationTurn]:
    """Build the assistant/result pair that stands in for ``replaced`` turns."""
    ids = tuple(turn.id for turn in replaced)
    action = ActionRequest(name=SUMMARY_ACTION_NAME, arguments={"turns": len(ids)})
    request = ConversationTurn(
        role=TurnRole.ASSISTANT,
        content=f"Summarized {len(ids)} earlier turns to save context.",
        actions=(action,),
        summary_marker=True,
        replaces=ids,
    )
    result = ConversationTurn(
        role=TurnRole.ACTION_RESULT,
        content=summary,
        action_id=action.id,
        action_name=action.name,
        status=ActionStatus.SUCCESS,
        summary_marker=True,
        replaces=ids,
    )
    return request, result


class TurnLog:
    """Append-only record of every turn in a run.

    Nothing is ever removed.  Summaries are appended as marker pairs, and the
    views below derive what the proposer and the user should see.
    """

    def __init__(self, turns: Iterable[ConversationTurn] = ()) -> None:
        self._entries: List[ConversationTurn] = []
        for turn in turns:
            self.append(turn)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ConversationTurn]:
        return iter(tuple(self._entries))

    @property
    def entries(self) -> tuple[ConversationTurn, ...]:
        return tuple(self._entries)

    def append(self, turn: ConversationTurn) -> ConversationTurn:
        self._entries.append(turn)
        return turn

    def extend(self, turns: Iterable[ConversationTurn]) -> None:
        for turn in turns:
            self.append(turn)

    def _markers_by_anchor(self) -> tuple[set[str], Dict[str, List[ConversationTurn]]]:
        covered: set[str] = set()
        anchored: Dict[str, List[ConversationTurn]] = {}
        for turn in self._entries:
            if turn.summary_marker and turn.replaces:
                covered.update(turn.replaces)
        for turn in self._entries:
            if not (turn.summary_marker and turn.replaces):
                continue
            # A marker sits where the first turn it replaces used to be; a
            # later marker that swallows an earlier one inherits its slot.
            anchor = turn.replaces[0]
            anchored.setdefault(anchor, []).append(turn)
        return covered, anchored

    def model_view(self) -> List[ConversationTurn]:
        """Turns as the proposer sees them, with summarized spans collapsed."""
        covered, anchored = self._markers_by_anchor()
        view: List[ConversationTurn] = []

        def _emit(turn: ConversationTurn) -> None:
            if turn.id in covered:
                for marker in anchored.get(turn.id, []):
                    _emit(marker)
                return
            view.append(turn)
            for marker in anchored.get(turn.id, []):
                _emit(marker)

        for turn in self._entries:
            if turn.summary_marker and turn.replaces:
                continue
            _emit(turn)
        return view

    def visible_view(self) -> List[ConversationTurn]:
        """User-facing transcript.

        Every non-hidden turn is kept in order; after each summarized span a
        lightweight marker shows where the model's context was truncated.
        """
        markers_after: Dict[str, List[ConversationTurn]] = {}
        for turn in self._entries:
            if turn.summary_marker and turn.replaces and turn.role is TurnRole.ASSISTANT:
                markers_after.setdefault(turn.replaces[-1], []).append(turn)

        view: List[ConversationTurn] = []
        for turn in self._entries:
            if turn.summary_marker and turn.replaces:
                continue
            if not turn.hidden:
                view.append(turn)
            view.extend(markers_after.get(turn.id, []))
        return view


_TURNS_ADAPTER = TypeAdapter(List[ConversationTurn])


def load_turns(payload: Any) -> List[ConversationTurn]:
    """Validate a JSON-like list of turns."""
    return _TURNS_ADAPTER.validate_python(payload)


__all__ = [
    "ActionRequest",
    "ActionStatus",
    "ConversationTurn",
    "DIAGNOSE_ACTION_NAME",
    "SUMMARY_ACTION_NAME",
    "TurnLog",
    "TurnRole",
    "UPDATE_PLAN_ACTION_NAME",
    "assistant_turn",
    "load_turns",
    "result_turn",
    "summary_marker_pair",
    "user_turn",
]
