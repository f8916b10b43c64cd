"""Screen proposed actions through a safety classifier before they run."""

from __future__ import annotations

import logging
import shlex
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Protocol, Sequence

from .conversation import ActionRequest, ConversationTurn

LOGGER = logging.getLogger(__name__)

FILTERABLE_ACTIONS = frozenset(
    {
        "shell",
        "grep",
        "view",
        "search_documents_for",
        "get_url_content",
        "str_replace_based_edit_tool",
    }
)

SAFE_READ_COMMANDS = (
    "ls",
    "cat",
    "head",
    "tail",
    "less",
    "more",
    "grep",
    "rg",
    "find",
    "file",
    "stat",
    "du",
    "df",
    "wc",
    "pwd",
    "echo",
    "printenv",
    "which",
    "whereis",
    "tree",
    "git status",
    "git diff",
    "git log",
    "git show",
    "git ls-files",
)

_SHELL_CONTROL_TOKENS = (";", "&&", "||", "|", ">", "<", "`", "$(")

# Flags that let an allow-listed reader write, delete, or run other programs.
_SIDE_EFFECT_FLAGS = (
    "-delete",
    "-exec",
    "-execdir",
    "-ok",
    "-okdir",
    "-fprint",
    "-fprint0",
    "-fprintf",
    "-fls",
    "-o",
    "--output",
    "--ext-diff",
    "--textconv",
    "--pre",
)

FAILED_EVALUATION_REASON = "Failed to evaluate safety - defaulting to unsafe"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(slots=True)
class SafetyVerdict:
    """Classifier judgement for one action."""

    is_safe: bool
    reasoning: str
    risk_level: RiskLevel = RiskLevel.MEDIUM


class SafetyClassifier(Protocol):
    def classify(self, action: ActionRequest, command: str) -> SafetyVerdict:
        ...


def is_safe_read_command(command: str) -> bool:
    """Return ``True`` when ``command`` is a single, recognised read-only command.

    This is advisory only: the safety filter still classifies every
    filterable action.
    """
    text = command.strip().lower()
    if not text or any(token in text for token in _SHELL_CONTROL_TOKENS):
        return False
    words = text.split()
    if any(word.split("=", 1)[0] in _SIDE_EFFECT_FLAGS for word in words[1:]):
        return False
    for prefix in SAFE_READ_COMMANDS:
        expected = prefix.split()
        if words[: len(expected)] == expected:
            return True
    return False


def shell_text(arguments: Dict[str, Any]) -> str:
    """Render the ``command`` argument of a shell-like action as one string."""
    command = arguments.get("command", "")
    if isinstance(command, (list, tuple)):
        return " ".join(str(part) for part in command)
    return str(command)


def grep_command(arguments: Dict[str, Any]) -> str:
    parts = ["grep", "-rnI"]
    if arguments.get("case_sensitive") is False:
        parts.append("-i")
    parts.extend(["-e", shlex.quote(str(arguments.get("query", ""))), "--"])
    parts.append(shlex.quote(str(arguments.get("path") or ".")))
    return " ".join(parts)


def describe_action(action: ActionRequest) -> tuple[str, str]:
    """Return ``(command_string, description)`` for a filterable action."""
    args = action.arguments
    if action.name == "shell":
        command = shell_text(args)
        workdir = args.get("workdir")
        command_string = f"cd {shlex.quote(str(workdir))} && {command}" if workdir else command
        return command_string, f"shell - {command_string}"
    if action.name == "grep":
        query = str(args.get("query", ""))
        return grep_command(args), f'grep - searching for "{query}"'
    if action.name == "view":
        path = str(args.get("path", ""))
        return f"cat {shlex.quote(path)}", f"view - viewing {path}"
    if action.name == "search_documents_for":
        query = str(args.get("query", ""))
        url = str(args.get("url", ""))
        return (
            f"search {shlex.quote(query)} in {url}",
            f'search_documents_for - searching documents for "{query}" in {url}',
        )
    if action.name == "get_url_content":
        url = str(args.get("url", ""))
        return f"curl {url}", f"get_url_content - fetching content from {url}"
    if action.name == "str_replace_based_edit_tool":
        command_string = f"{args.get('command', '')} {args.get('path', '')}".strip()
        return command_string, f"str_replace_based_edit_tool - {command_string}"
    return action.name, action.name


@dataclass(slots=True)
class ActionEvaluation:
    action: ActionRequest
    command_string: str
    description: str
    verdict: SafetyVerdict


@dataclass(slots=True)
class FilterResult:
    """Outcome of screening one batch of proposed actions."""

    evaluations: List[ActionEvaluation] = field(default_factory=list)
    filtered_actions: List[ActionRequest] = field(default_factory=list)
    was_filtered: bool = False

    @property
    def safe(self) -> List[ActionEvaluation]:
        return [item for item in self.evaluations if item.verdict.is_safe]

    @property
    def unsafe(self) -> List[ActionEvaluation]:
        return [item for item in self.evaluations if not item.verdict.is_safe]

    def notice(self) -> str:
        """Plain-text explanation of the dropped actions for the transcript."""
        if not self.unsafe:
            return ""
        lines = ["The following actions were blocked as unsafe and were not executed:"]
        for item in self.unsafe:
            lines.append(f"- {item.description} (risk: {item.verdict.risk_level.value}): {item.verdict.reasoning}")
        return "\n".join(lines)


class CommandSafetyFilter:
    """Drop unsafe side-effecting actions from a proposed batch.

    Every filterable action is classified, concurrently.  Classifier errors
    and timeouts produce an unsafe verdict.
    """

    def __init__(
        self,
        classifier: SafetyClassifier,
        *,
        timeout: float = 30.0,
        max_workers: int = 8,
    ) -> None:
        self._classifier = classifier
        self._timeout = timeout
        self._max_workers = max_workers

    def evaluate(self, actions: Sequence[ActionRequest]) -> List[ActionEvaluation]:
        candidates = [action for action in actions if action.name in FILTERABLE_ACTIONS]
        if not candidates:
            return []

        described = [(action, *describe_action(action)) for action in candidates]
        executor = ThreadPoolExecutor(max_workers=max(1, min(self._max_workers, len(candidates))))
        try:
            futures = [
                executor.submit(self._classifier.classify, action, command) for action, command, _ in described
            ]
            deadline = time.monotonic() + self._timeout
            evaluations: List[ActionEvaluation] = []
            for (action, command, description), future in zip(described, futures):
                remaining = max(deadline - time.monotonic(), 0.0)
                try:
                    verdict = future.result(timeout=remaining)
                except FuturesTimeoutError:
                    LOGGER.warning("Safety classification timed out for %s", description)
                    verdict = SafetyVerdict(False, FAILED_EVALUATION_REASON, RiskLevel.HIGH)
                except Exception as error:  # noqa: BLE001 - classifier failures are fail-closed
                    LOGGER.warning("Safety classification failed for %s: %s", description, error)
                    verdict = SafetyVerdict(False, FAILED_EVALUATION_REASON, RiskLevel.HIGH)
                evaluations.append(ActionEvaluation(action, command, description, verdict))
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
        return evaluations

    def filter(self, actions: Sequence[ActionRequest]) -> FilterResult:
        evaluations = self.evaluate(actions)
        blocked = {item.action.id for item in evaluations if not item.verdict.is_safe}
        kept = [action for action in actions if action.id not in blocked]
        if blocked:
            LOGGER.info("Blocked %d of %d proposed action(s)", len(blocked), len(actions))
        return FilterResult(
            evaluations=evaluations,
            filtered_actions=kept,
            was_filtered=len(kept) != len(actions),
        )

    def apply(self, turn: ConversationTurn) -> tuple[ConversationTurn, FilterResult]:
        """Filter ``turn``'s actions and return the rewritten proposing turn."""
        result = self.filter(turn.actions)
        if not result.was_filtered:
            return turn, result
        return turn.with_actions(result.filtered_actions), result


__all__ = [
    "ActionEvaluation",
    "CommandSafetyFilter",
    "FAILED_EVALUATION_REASON",
    "FILTERABLE_ACTIONS",
    "FilterResult",
    "RiskLevel",
    "SAFE_READ_COMMANDS",
    "SafetyClassifier",
    "SafetyVerdict",
    "describe_action",
    "grep_command",
    "is_safe_read_command",
    "shell_text",
]
