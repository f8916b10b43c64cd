"""Name-to-handler registry for executable actions and concurrent dispatch."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Protocol, Sequence, Union

from ..conversation import DIAGNOSE_ACTION_NAME, ActionRequest, ActionStatus, ConversationTurn, result_turn
from ..errors import ActionExecutionError
from ..sandbox.session import SandboxSession
from ..sandbox.vcs import SandboxGit

LOGGER = logging.getLogger(__name__)

DEFAULT_OUTPUT_START = 10_000
DEFAULT_OUTPUT_END = 10_000


class FailureKind(str, Enum):
    UNKNOWN_ACTION = "unknown_action"
    EXECUTION = "execution"
    HANDLER_CRASH = "handler_crash"


@dataclass(slots=True, frozen=True)
class Success:
    text: str


@dataclass(slots=True, frozen=True)
class Failure:
    kind: FailureKind
    text: str


ActionOutcome = Union[Success, Failure]


@dataclass(slots=True)
class ActionContext:
    """What a handler may touch while it runs."""

    session: SandboxSession
    git: SandboxGit
    timeout: float = 60.0


class ActionHandler(Protocol):
    def __call__(self, arguments: Mapping[str, Any], context: ActionContext) -> ActionOutcome:
        ...


def truncate_output(
    output: str,
    *,
    start: int = DEFAULT_OUTPUT_START,
    end: int = DEFAULT_OUTPUT_END,
) -> str:
    """Keep the first ``start`` and last ``end`` characters of long output."""
    if start < 0 or end < 0:
        raise ValueError("start and end must be >= 0")
    if not start and not end:
        raise ValueError("At least one of start or end must be > 0")
    if len(output) <= start + end:
        return output
    removed = len(output) - start - end
    tail = output[-end:] if end else ""
    return (
        f"{output[:start]}\n... Output too long. Truncated the middle {removed} characters of the output ...\n"
        f"{tail}"
    )


class ActionRegistry:
    """Dispatch table from action names to handlers, fixed at construction."""

    def __init__(
        self,
        handlers: Mapping[str, ActionHandler],
        *,
        max_workers: int = 8,
        output_start: int = DEFAULT_OUTPUT_START,
        output_end: int = DEFAULT_OUTPUT_END,
    ) -> None:
        self._handlers: Dict[str, ActionHandler] = dict(handlers)
        self._max_workers = max_workers
        self._output_start = output_start
        self._output_end = output_end

    def names(self) -> Iterable[str]:
        return self._handlers.keys()

    def __contains__(self, name: object) -> bool:
        return name in self._handlers

    def execute(self, action: ActionRequest, context: ActionContext) -> ActionOutcome:
        """Run one action; failures come back as :class:`Failure` values."""
        handler = self._handlers.get(action.name)
        if handler is None:
            return Failure(FailureKind.UNKNOWN_ACTION, f"Unknown action: {action.name}")
        try:
            return handler(action.arguments, context)
        except ActionExecutionError as error:
            return Failure(FailureKind.EXECUTION, str(error))
        except Exception as error:  # noqa: BLE001 - surfaced to the proposer as a result turn
            LOGGER.warning("Action %s raised: %s", action.name, error)
            return Failure(FailureKind.HANDLER_CRASH, f'FAILED TO CALL ACTION: "{action.name}"\n\n{error}')

    def execute_batch(
        self,
        actions: Sequence[ActionRequest],
        context: ActionContext,
    ) -> List[tuple[ActionRequest, ActionOutcome]]:
        """Run ``actions`` concurrently and return outcomes in request order."""
        if not actions:
            return []
        workers = max(1, min(self._max_workers, len(actions)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            outcomes = list(executor.map(lambda action: self.execute(action, context), actions))
        return list(zip(actions, outcomes))

    def to_turn(self, action: ActionRequest, outcome: ActionOutcome) -> ConversationTurn:
        status = ActionStatus.SUCCESS if isinstance(outcome, Success) else ActionStatus.ERROR
        text = truncate_output(outcome.text, start=self._output_start, end=self._output_end)
        return result_turn(
            action,
            text,
            status,
            is_diagnosis=action.name == DIAGNOSE_ACTION_NAME,
        )


__all__ = [
    "ActionContext",
    "ActionHandler",
    "ActionOutcome",
    "ActionRegistry",
    "DIAGNOSE_ACTION_NAME",
    "Failure",
    "FailureKind",
    "Success",
    "truncate_output",
]
