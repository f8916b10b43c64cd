from __future__ import annotations

from pathlib import Path

from ao.host import LocalRepositoryHost
from ao.sandbox import SandboxSessionManager

from conftest import run_git


def test_commit_and_push_publishes_branch(sessions: SandboxSessionManager, origin_repo: Path) -> None:
    session = sessions.create("ao/host")
    git = sessions.git(session)
    host = LocalRepositoryHost()

    assert host.commit_and_push(git, "ao/host", "Apply patch") is None

    (Path(session.working_directory) / "notes.txt").write_text("hello\n", encoding="utf-8")
    assert host.get_changed_files(git) == ["notes.txt"]
    sha = host.commit_and_push(git, "ao/host", "Apply patch")

    assert host.get_changed_files(git) == []
    assert run_git(origin_repo, "rev-parse", "ao/host").strip() == sha


def test_commit_without_push_keeps_origin_untouched(sessions: SandboxSessionManager, origin_repo: Path) -> None:
    session = sessions.create("ao/local")
    git = sessions.git(session)
    (Path(session.working_directory) / "notes.txt").write_text("hello\n", encoding="utf-8")

    sha = LocalRepositoryHost(push=False).commit_and_push(git, "ao/local", "Apply patch")

    assert sha
    assert "ao/local" not in run_git(origin_repo, "branch", "--list")


def test_pull_requests_are_numbered_once_per_branch() -> None:
    host = LocalRepositoryHost()
    first = host.create_or_update_pull_request(branch="ao/a", base_branch="main", title="A")
    second = host.create_or_update_pull_request(branch="ao/b", base_branch="main", title="B", body="plan")
    again = host.create_or_update_pull_request(branch="ao/a", base_branch="main", title="A2")

    assert (first.number, second.number, again.number) == (1, 2, 1)
    assert again.title == "A2"
    assert again.draft is True


def test_updating_by_number_can_mark_ready_for_review() -> None:
    host = LocalRepositoryHost()
    opened = host.create_or_update_pull_request(branch="ao/a", base_branch="main", title="A", body="first")
    ready = host.create_or_update_pull_request(
        branch="ao/a", base_branch="main", title="A", draft=False, number=opened.number
    )

    assert ready.draft is False
    assert ready.body == "first"
    assert [pr.number for pr in host.pull_requests()] == [1]
