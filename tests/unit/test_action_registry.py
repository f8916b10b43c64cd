from __future__ import annotations

import threading
import time
from unittest.mock import MagicMock

import pytest

from ao.actions.registry import (
    ActionContext,
    ActionRegistry,
    Failure,
    FailureKind,
    Success,
    truncate_output,
)
from ao.conversation import ActionRequest, ActionStatus, TurnRole
from ao.errors import ActionExecutionError


def _context() -> ActionContext:
    return ActionContext(session=MagicMock(), git=MagicMock(), timeout=5.0)


def _echo(arguments, context):
    return Success(str(arguments.get("text", "")))


def _explode(arguments, context):
    raise KeyError("missing key")


def _reject(arguments, context):
    raise ActionExecutionError("Command failed. Exit code: 2")


def test_unknown_action_becomes_failure() -> None:
    registry = ActionRegistry({"echo": _echo})
    outcome = registry.execute(ActionRequest(name="nope"), _context())

    assert outcome == Failure(FailureKind.UNKNOWN_ACTION, "Unknown action: nope")
    assert "nope" not in registry
    assert sorted(registry.names()) == ["echo"]


def test_handler_crash_is_reported_not_raised() -> None:
    registry = ActionRegistry({"boom": _explode})
    outcome = registry.execute(ActionRequest(name="boom"), _context())

    assert isinstance(outcome, Failure)
    assert outcome.kind is FailureKind.HANDLER_CRASH
    assert outcome.text.startswith('FAILED TO CALL ACTION: "boom"')


def test_execution_errors_keep_their_message() -> None:
    registry = ActionRegistry({"reject": _reject})
    outcome = registry.execute(ActionRequest(name="reject"), _context())

    assert outcome == Failure(FailureKind.EXECUTION, "Command failed. Exit code: 2")


def test_batch_runs_concurrently_and_keeps_request_order() -> None:
    barrier = threading.Barrier(3, timeout=5)

    def wait_then_echo(arguments, context):
        barrier.wait()
        time.sleep(float(arguments["delay"]))
        return Success(arguments["text"])

    registry = ActionRegistry({"wait": wait_then_echo}, max_workers=3)
    actions = [
        ActionRequest(name="wait", arguments={"text": "first", "delay": 0.2}),
        ActionRequest(name="wait", arguments={"text": "second", "delay": 0.0}),
        ActionRequest(name="wait", arguments={"text": "third", "delay": 0.1}),
    ]

    outcomes = registry.execute_batch(actions, _context())

    assert [action for action, _ in outcomes] == actions
    assert [outcome.text for _, outcome in outcomes] == ["first", "second", "third"]


def test_one_failure_does_not_affect_siblings() -> None:
    registry = ActionRegistry({"echo": _echo, "boom": _explode})
    actions = [
        ActionRequest(name="echo", arguments={"text": "a"}),
        ActionRequest(name="boom"),
        ActionRequest(name="echo", arguments={"text": "c"}),
    ]

    turns = [registry.to_turn(action, outcome) for action, outcome in registry.execute_batch(actions, _context())]

    assert [turn.status for turn in turns] == [ActionStatus.SUCCESS, ActionStatus.ERROR, ActionStatus.SUCCESS]
    assert all(turn.role is TurnRole.ACTION_RESULT for turn in turns)
    assert [turn.action_id for turn in turns] == [action.id for action in actions]


def test_empty_batch() -> None:
    assert ActionRegistry({}).execute_batch([], _context()) == []


def test_truncate_output_keeps_both_ends() -> None:
    output = "a" * 10 + "b" * 10 + "c" * 10
    truncated = truncate_output(output, start=10, end=10)

    assert truncated.startswith("a" * 10 + "\n")
    assert truncated.endswith("\n" + "c" * 10)
    assert "Truncated the middle 10 characters of the output" in truncated
    assert truncate_output("short", start=10, end=10) == "short"


def test_truncate_output_validates_limits() -> None:
    with pytest.raises(ValueError):
        truncate_output("text", start=-1, end=5)
    with pytest.raises(ValueError):
        truncate_output("text", start=0, end=0)


def test_result_turns_are_truncated_with_registry_limits() -> None:
    registry = ActionRegistry({"echo": _echo}, output_start=3, output_end=3)
    action = ActionRequest(name="echo", arguments={"text": "0123456789"})

    turn = registry.to_turn(action, registry.execute(action, _context()))

    assert turn.content.startswith("012\n")
    assert turn.content.endswith("\n789")
