from __future__ import annotations

from ao.conversation import (
    DIAGNOSE_ACTION_NAME,
    ActionRequest,
    ActionStatus,
    assistant_turn,
    result_turn,
    user_turn,
)
from ao.diagnosis import (
    ErrorDiagnosisHeuristic,
    error_rate,
    group_action_results,
    last_failed_actions,
    render_failed_actions,
    should_diagnose,
)


def _group(*statuses: ActionStatus) -> list:
    actions = [ActionRequest(name="shell", arguments={"command": f"cmd {i}"}) for i in range(len(statuses))]
    turns = [assistant_turn("trying", actions)]
    for action, status in zip(actions, statuses):
        turns.append(result_turn(action, "boom" if status is ActionStatus.ERROR else "ok", status))
    return turns


def _failing() -> list:
    return _group(ActionStatus.ERROR)


def _diagnosis() -> list:
    action = ActionRequest(name=DIAGNOSE_ACTION_NAME)
    return [
        assistant_turn("diagnosing", [action]),
        result_turn(action, "The path is wrong.", ActionStatus.SUCCESS, is_diagnosis=True),
    ]


def test_fewer_than_three_groups_never_diagnose() -> None:
    assert not should_diagnose([*_failing(), *_failing()])


def test_three_failing_groups_diagnose() -> None:
    assert should_diagnose([*_failing(), *_failing(), *_failing()])


def test_threshold_is_inclusive() -> None:
    mostly_failing = _group(ActionStatus.ERROR, ActionStatus.ERROR, ActionStatus.ERROR, ActionStatus.SUCCESS)
    assert error_rate(mostly_failing[1:]) == 0.75
    assert should_diagnose([*mostly_failing, *_failing(), *_failing()])

    two_thirds = _group(ActionStatus.ERROR, ActionStatus.ERROR, ActionStatus.SUCCESS)
    assert not should_diagnose([*two_thirds, *_failing(), *_failing()])


def test_recent_diagnosis_suppresses_another_one() -> None:
    turns = [*_failing(), *_diagnosis(), *_failing(), *_failing()]
    assert not should_diagnose(turns)


def test_diagnosis_leaves_the_window_after_three_more_groups() -> None:
    turns = [*_failing(), *_diagnosis(), *_failing(), *_failing(), *_failing()]
    assert should_diagnose(turns)


def test_groups_without_results_are_skipped() -> None:
    idle = [assistant_turn("thinking"), user_turn("keep going")]
    turns = [*_failing(), *idle, *_failing(), *_failing()]

    assert len(group_action_results(turns)) == 3
    assert should_diagnose(turns)


def test_diagnosis_results_are_excluded_from_error_rates() -> None:
    groups = group_action_results([*_diagnosis(), *_failing()])
    assert len(groups) == 1
    assert error_rate(groups[0]) == 1.0


def test_custom_window_and_threshold() -> None:
    heuristic = ErrorDiagnosisHeuristic(window=2, threshold=0.5)
    half = _group(ActionStatus.ERROR, ActionStatus.SUCCESS)
    assert heuristic.should_diagnose([*half, *half])


def test_last_failed_actions_collects_the_trailing_failures() -> None:
    succeeded = _group(ActionStatus.SUCCESS)
    failed_once = _failing()
    failed_twice = _failing()
    turns = [*succeeded, *failed_once, *failed_twice]

    collected = last_failed_actions(turns)

    assert collected == [*failed_once, *failed_twice]
    rendered = render_failed_actions(collected)
    assert "<action name='shell'>" in rendered
    assert "<error action='shell'>\nboom\n</error>" in rendered


def test_last_failed_actions_empty_after_success() -> None:
    assert last_failed_actions(_group(ActionStatus.SUCCESS)) == []
