from __future__ import annotations

from pathlib import Path

import pytest

from ao.actions import ActionContext, Failure, FailureKind, Success, default_registry
from ao.conversation import ActionRequest
from ao.sandbox import SandboxSessionManager


@pytest.fixture()
def context(sessions: SandboxSessionManager) -> ActionContext:
    session = sessions.create("ao/actions")
    return ActionContext(session=session, git=sessions.git(session), timeout=30)


def _run(context: ActionContext, name: str, **arguments):
    return default_registry().execute(ActionRequest(name=name, arguments=arguments), context)


def test_shell_runs_in_repository_and_honours_workdir(context: ActionContext) -> None:
    assert _run(context, "shell", command="cat README.md") == Success("# Tiny repo")

    outcome = _run(context, "shell", command="pwd", workdir="src")
    assert outcome.text.endswith("/repo/src")


def test_shell_failure_reports_exit_code(context: ActionContext) -> None:
    outcome = _run(context, "shell", command=["sh", "-c", "'echo nope >&2; exit 3'"])

    assert isinstance(outcome, Failure)
    assert outcome.kind is FailureKind.EXECUTION
    assert "Exit code: 3" in outcome.text
    assert "nope" in outcome.text


def test_shell_without_output_reports_success(context: ActionContext) -> None:
    assert _run(context, "shell", command="true").text == "Command completed successfully with no output."


def test_editor_create_replace_and_view(context: ActionContext) -> None:
    path = "src/tiny_app/subtract.py"
    created = _run(context, "str_replace_based_edit_tool", command="create", path=path, file_text="def sub(a, b):\n    return a + b\n")
    assert created == Success(f"Successfully created file {path}.")

    again = _run(context, "str_replace_based_edit_tool", command="create", path=path, file_text="")
    assert isinstance(again, Failure)

    replaced = _run(context, "str_replace_based_edit_tool", command="str_replace", path=path, old_str="a + b", new_str="a - b")
    assert isinstance(replaced, Success)
    assert (Path(context.session.working_directory) / path).read_text(encoding="utf-8") == "def sub(a, b):\n    return a - b\n"

    viewed = _run(context, "view", path=path, view_range=[2, 2])
    assert viewed == Success("2:     return a - b")


def test_editor_replace_requires_a_unique_match(context: ActionContext) -> None:
    missing = _run(context, "str_replace_based_edit_tool", command="str_replace", path="README.md", old_str="absent", new_str="x")
    assert isinstance(missing, Failure)
    assert "No match found" in missing.text


def test_editor_insert_adds_a_line(context: ActionContext) -> None:
    outcome = _run(context, "str_replace_based_edit_tool", command="insert", path="README.md", insert_line=1, new_str="Intro.")
    assert isinstance(outcome, Success)
    assert (Path(context.session.working_directory) / "README.md").read_text(encoding="utf-8") == "# Tiny repo\nIntro.\n"


def test_view_lists_directories(context: ActionContext) -> None:
    outcome = _run(context, "view", path="src")
    assert outcome.text.startswith("Directory listing for src:")
    assert "tiny_app" in outcome.text


def test_grep_reports_matches_and_empty_results(context: ActionContext) -> None:
    found = _run(context, "grep", query="def add")
    assert "calculator.py" in found.text

    empty = _run(context, "grep", query="no-such-symbol")
    assert isinstance(empty, Success)
    assert empty.text.startswith("Exit code 1. No results found.")


def test_install_dependencies_records_outcome_on_session(context: ActionContext) -> None:
    assert isinstance(_run(context, "install_dependencies", command="true"), Success)
    assert context.session.dependencies_installed is True

    failed = _run(context, "install_dependencies", command="false")
    assert isinstance(failed, Failure)
    assert context.session.dependencies_installed is False


def test_get_url_content_rejects_non_http_urls(context: ActionContext) -> None:
    outcome = _run(context, "get_url_content", url="file:///etc/passwd")
    assert isinstance(outcome, Failure)
    assert outcome.text.startswith("Failed to parse URL")
