from __future__ import annotations

import time
from unittest.mock import MagicMock

import pytest

from ao.conversation import ActionRequest, assistant_turn
from ao.safety import (
    FAILED_EVALUATION_REASON,
    CommandSafetyFilter,
    RiskLevel,
    SafetyVerdict,
    describe_action,
    is_safe_read_command,
)


class _KeywordClassifier:
    """Marks any command mentioning ``rm`` as unsafe."""

    def __init__(self) -> None:
        self.commands: list[str] = []

    def classify(self, action: ActionRequest, command: str) -> SafetyVerdict:
        self.commands.append(command)
        if "rm " in command:
            return SafetyVerdict(False, "Deletes files.", RiskLevel.HIGH)
        return SafetyVerdict(True, "Looks fine.", RiskLevel.LOW)


class _BrokenClassifier:
    def classify(self, action: ActionRequest, command: str) -> SafetyVerdict:
        raise RuntimeError("classifier offline")


class _SlowClassifier:
    def classify(self, action: ActionRequest, command: str) -> SafetyVerdict:
        time.sleep(0.5)
        return SafetyVerdict(True, "Too late.", RiskLevel.LOW)


@pytest.mark.parametrize(
    "command, expected",
    [
        ("ls -la", True),
        ("cat README.md", True),
        ("git status", True),
        ("find . -name '*.py'", True),
        ("find . -delete", False),
        ("find src -exec rm -f {} +", False),
        ("git diff --output=patch.txt", False),
        ("git log --oneline", True),
        ("git push origin main", False),
        ("lsof -i", False),
        ("ls; rm -rf /", False),
        ("cat file | sh", False),
        ("echo hi > out.txt", False),
        ("rm -rf build", False),
        ("", False),
    ],
)
def test_is_safe_read_command(command: str, expected: bool) -> None:
    assert is_safe_read_command(command) is expected


def test_describe_action_renders_canonical_commands() -> None:
    shell = ActionRequest(name="shell", arguments={"command": ["npm", "test"], "workdir": "web"})
    grep = ActionRequest(name="grep", arguments={"query": "TODO"})
    url = ActionRequest(name="get_url_content", arguments={"url": "https://example.com"})

    assert describe_action(shell) == ("cd web && npm test", "shell - cd web && npm test")
    assert describe_action(grep)[1] == 'grep - searching for "TODO"'
    assert describe_action(url) == ("curl https://example.com", "get_url_content - fetching content from https://example.com")


def test_unsafe_actions_are_dropped_and_turn_rewritten() -> None:
    unsafe = ActionRequest(name="shell", arguments={"command": "rm -rf src"})
    edit = ActionRequest(name="str_replace_based_edit_tool", arguments={"command": "create", "path": "a.py"})
    install = ActionRequest(name="install_dependencies", arguments={"command": "pip install -e ."})
    turn = assistant_turn("working", [unsafe, edit, install])

    rewritten, result = CommandSafetyFilter(_KeywordClassifier()).apply(turn)

    assert result.was_filtered
    assert [action.name for action in rewritten.actions] == ["str_replace_based_edit_tool", "install_dependencies"]
    assert rewritten.id == turn.id
    assert [item.action for item in result.unsafe] == [unsafe]
    assert "shell - rm -rf src" in result.notice()
    assert "risk: high" in result.notice()


def test_turn_is_returned_unchanged_when_everything_is_safe() -> None:
    turn = assistant_turn("working", [ActionRequest(name="view", arguments={"path": "README.md"})])
    rewritten, result = CommandSafetyFilter(_KeywordClassifier()).apply(turn)

    assert rewritten is turn
    assert not result.was_filtered
    assert result.notice() == ""


def test_classifier_errors_fail_closed() -> None:
    action = ActionRequest(name="shell", arguments={"command": "make build"})
    result = CommandSafetyFilter(_BrokenClassifier()).filter([action])

    assert result.filtered_actions == []
    assert result.unsafe[0].verdict.reasoning == FAILED_EVALUATION_REASON
    assert result.unsafe[0].verdict.risk_level is RiskLevel.HIGH


def test_classifier_timeouts_fail_closed() -> None:
    action = ActionRequest(name="shell", arguments={"command": "make build"})
    result = CommandSafetyFilter(_SlowClassifier(), timeout=0.05).filter([action])

    assert result.was_filtered
    assert result.unsafe[0].verdict.reasoning == FAILED_EVALUATION_REASON


def test_read_commands_are_still_classified() -> None:
    classifier = MagicMock()
    classifier.classify.return_value = SafetyVerdict(True, "Lists files.", RiskLevel.LOW)
    action = ActionRequest(name="shell", arguments={"command": "ls src"})

    result = CommandSafetyFilter(classifier).filter([action])

    classifier.classify.assert_called_once_with(action, "ls src")
    assert result.filtered_actions == [action]


def test_read_prefixed_side_effects_fail_closed() -> None:
    actions = [
        ActionRequest(name="shell", arguments={"command": "find . -delete"}),
        ActionRequest(name="shell", arguments={"command": "find . -name '*.pyc' -exec rm -f {} +"}),
        ActionRequest(name="shell", arguments={"command": "git diff --output=/tmp/leak.patch"}),
    ]

    result = CommandSafetyFilter(_BrokenClassifier()).filter(actions)

    assert result.was_filtered
    assert result.filtered_actions == []
    assert len(result.unsafe) == 3


def test_non_filterable_actions_are_not_classified() -> None:
    classifier = _KeywordClassifier()
    action = ActionRequest(name="install_dependencies", arguments={"command": "rm -rf node_modules && npm ci"})

    result = CommandSafetyFilter(classifier).filter([action])

    assert classifier.commands == []
    assert result.filtered_actions == [action]
    assert result.evaluations == []
