from __future__ import annotations

from ao.context import (
    BudgetSettings,
    ContextBudget,
    calculate_budget,
    estimate_tokens,
    select_turns_to_summarize,
    split_keeping_groups,
)
from ao.conversation import (
    ActionRequest,
    ActionStatus,
    TurnLog,
    TurnRole,
    assistant_turn,
    result_turn,
    user_turn,
)


def _exchange(index: int) -> list:
    action = ActionRequest(name="shell", arguments={"command": f"ls dir{index}"})
    return [
        assistant_turn(f"Step {index}", [action]),
        result_turn(action, f"output {index}", ActionStatus.SUCCESS),
    ]


def test_two_short_messages_estimate_to_eight_tokens() -> None:
    turns = [user_turn("First message"), user_turn("Second message")]
    assert estimate_tokens(turns) == 8


def test_reported_usage_overrides_the_heuristic() -> None:
    turn = assistant_turn("x" * 1000, usage_tokens=20)
    assert estimate_tokens([turn]) == 20


def test_action_names_and_arguments_add_to_the_estimate() -> None:
    turn = assistant_turn("", [ActionRequest(name="shell", arguments={"command": "ls"})])
    assert estimate_tokens([turn]) == 6
    doubled = BudgetSettings(action_name_surcharge=2, argument_surcharge=2)
    assert estimate_tokens([turn], doubled) == 11


def test_calculate_budget_excludes_hidden_and_trailing_turns() -> None:
    turns = [
        user_turn("a" * 40),
        user_turn("b" * 40, hidden=True),
        user_turn("c" * 40),
    ]
    assert calculate_budget(turns) == 30
    assert calculate_budget(turns, exclude_hidden=True) == 20
    assert calculate_budget(turns, exclude_from_end=1) == 20
    assert calculate_budget(turns, exclude_hidden=True, exclude_from_end=1) == 10


def test_split_never_separates_results_from_their_request() -> None:
    turns = [user_turn("go"), *_exchange(1), *_exchange(2)]
    cut = split_keeping_groups(turns, 1)
    assert cut == 3
    assert turns[cut].role is TurnRole.ASSISTANT


def test_budget_ceiling_triggers_summary_only_when_something_can_be_summarized() -> None:
    budget = ContextBudget(BudgetSettings(max_tokens=10, keep_last_turns=2))
    small = [user_turn("hi")]
    large = [user_turn("x" * 100), *_exchange(1)]

    assert not budget.needs_summary(small)
    assert budget.exceeds_ceiling(large)
    assert budget.needs_summary(large)
    assert not budget.needs_summary(large[-2:])


def test_summarize_replaces_old_turns_with_one_marker_pair() -> None:
    log = TurnLog([user_turn("request"), *_exchange(1), *_exchange(2), *_exchange(3)])
    budget = ContextBudget(BudgetSettings(keep_last_turns=2))
    seen = []

    def summarizer(turns):
        seen.append([turn.id for turn in turns])
        return "Files: parser.py"

    pair = budget.summarize(log, summarizer)

    assert pair is not None
    assert len(seen[0]) == 5
    view = log.model_view()
    assert [turn.summary_marker for turn in view] == [True, True, False, False]
    assert view[1].content == "Files: parser.py"
    assert view[2].content == "Step 3"
    assert len(log) == 9


def test_second_summarization_never_reincludes_summarized_turns() -> None:
    log = TurnLog([user_turn("request"), *_exchange(1), *_exchange(2), *_exchange(3)])
    budget = ContextBudget(BudgetSettings(keep_last_turns=2))
    batches = []

    def summarizer(turns):
        batches.append({turn.id for turn in turns})
        return f"summary {len(batches)}"

    budget.summarize(log, summarizer)
    assert budget.summarize(log, summarizer) is None
    assert len(batches) == 1

    log.extend([*_exchange(4), *_exchange(5)])
    budget.summarize(log, summarizer)

    assert len(batches) == 2
    assert not batches[0] & batches[1]
    assert select_turns_to_summarize(log.model_view(), 2) == []


def test_visible_view_keeps_everything_and_marks_truncation() -> None:
    log = TurnLog([user_turn("request"), *_exchange(1), user_turn("note", hidden=True), *_exchange(2)])
    budget = ContextBudget(BudgetSettings(keep_last_turns=2))
    budget.summarize(log, lambda turns: "short")

    visible = log.visible_view()
    contents = [turn.content for turn in visible]

    assert "note" not in contents
    assert contents[:3] == ["request", "Step 1", "output 1"]
    markers = [turn for turn in visible if turn.summary_marker]
    assert len(markers) == 1
    assert markers[0].role is TurnRole.ASSISTANT
