from __future__ import annotations

from pathlib import Path

import pytest

from ao.errors import SandboxUnavailableError
from ao.sandbox import EventStatus, SandboxSessionManager, SessionState, TargetRepository
from ao.sandbox.session import CREATE_STEPS, RESUME_STEPS
from ao.sandbox.vcs import render_file_tree

from conftest import run_git


def _statuses(sessions: SandboxSessionManager, status: EventStatus) -> list[str]:
    return [event.action for event in sessions.events if event.status is status]


def test_create_clones_repository_on_new_branch(sessions: SandboxSessionManager) -> None:
    session = sessions.create("ao/feature")
    repo = Path(session.working_directory)

    assert session.state is SessionState.ACTIVE
    assert (repo / "README.md").read_text(encoding="utf-8") == "# Tiny repo\n"
    assert sessions.git(session).current_branch() == "ao/feature"
    assert "README.md" in (session.codebase_tree or "")
    assert _statuses(sessions, EventStatus.SUCCESS) == list(CREATE_STEPS)


def test_acquire_without_session_id_skips_resume_steps(sessions: SandboxSessionManager) -> None:
    session = sessions.acquire("ao/feature")

    assert session.state is SessionState.ACTIVE
    assert _statuses(sessions, EventStatus.SKIPPED) == list(RESUME_STEPS)


def test_acquire_resumes_existing_session(sessions: SandboxSessionManager) -> None:
    created = sessions.create("ao/feature")
    before = len(sessions.events)
    resumed = sessions.acquire("ao/feature", created.id)

    assert resumed.id == created.id
    assert resumed.working_directory == created.working_directory
    resume_events = list(sessions.events[before:])
    assert [event.action for event in resume_events if event.status is not EventStatus.PENDING] == list(RESUME_STEPS)
    # The new branch has no upstream yet, so pulling is skipped rather than fatal.
    pull = [event for event in resume_events if event.action == "pull_latest_changes"][-1]
    assert pull.status is EventStatus.SKIPPED


def test_resume_checks_out_the_requested_branch(sessions: SandboxSessionManager) -> None:
    created = sessions.create("ao/first-run")
    before = len(sessions.events)
    resumed = sessions.acquire("ao/second-run", created.id)

    assert resumed.id == created.id
    assert resumed.branch_name == "ao/second-run"
    assert sessions.git(resumed).current_branch() == "ao/second-run"
    checkout = [event for event in sessions.events[before:] if event.action == "checkout_branch"][-1]
    assert checkout.status is EventStatus.SUCCESS
    assert checkout.detail == "ao/second-run"


def test_failed_resume_falls_back_to_create(sessions: SandboxSessionManager) -> None:
    session = sessions.acquire("ao/feature", "does-not-exist")

    assert session.id != "does-not-exist"
    assert session.state is SessionState.ACTIVE
    errors = [event for event in sessions.events if event.status is EventStatus.ERROR]
    assert [event.action for event in errors] == ["resume_sandbox"]
    assert "create_sandbox" in _statuses(sessions, EventStatus.SUCCESS)


def test_released_session_cannot_be_resumed(sessions: SandboxSessionManager) -> None:
    session = sessions.create("ao/feature")
    stopped = sessions.release(session)

    assert stopped.state is SessionState.STOPPED
    replacement = sessions.acquire("ao/feature", session.id)
    assert replacement.id != session.id


def test_delete_removes_sandbox_directory(sessions: SandboxSessionManager) -> None:
    session = sessions.create("ao/feature")
    deleted = sessions.release(session, delete=True)

    assert deleted.state is SessionState.DELETED
    assert not Path(session.handle.root).exists()
    assert _statuses(sessions, EventStatus.SUCCESS)[-1] == "delete_sandbox"


def test_create_failure_raises_sandbox_unavailable(provider, tmp_path: Path) -> None:
    sink = []
    sessions = SandboxSessionManager(
        provider,
        TargetRepository(url=(tmp_path / "missing").as_posix(), name="repo"),
        event_sink=sink.append,
    )

    with pytest.raises(SandboxUnavailableError):
        sessions.create("ao/feature")

    failed = [event for event in sink if event.status is EventStatus.ERROR]
    assert failed and failed[0].action == "clone_repository"


def test_stash_and_discard_reverts_every_change(sessions: SandboxSessionManager) -> None:
    session = sessions.create("ao/feature")
    git = sessions.git(session)
    repo = Path(session.working_directory)

    (repo / "README.md").write_text("changed\n", encoding="utf-8")
    (repo / "notes.txt").write_text("new file\n", encoding="utf-8")
    assert git.changed_files() == ["README.md", "notes.txt"]

    assert git.stash_and_discard() == "stash@{0}"
    assert git.changed_files() == []
    assert not (repo / "notes.txt").exists()
    assert (repo / "README.md").read_text(encoding="utf-8") == "# Tiny repo\n"
    assert git.stash_and_discard() is None


def test_commit_all_and_push_reach_origin(sessions: SandboxSessionManager, origin_repo: Path) -> None:
    session = sessions.create("ao/feature")
    git = sessions.git(session)
    assert git.commit_all("Apply patch") is None

    (Path(session.working_directory) / "CHANGELOG.md").write_text("- subtract\n", encoding="utf-8")
    sha = git.commit_all("Apply patch")
    git.push("ao/feature")

    assert sha and len(sha) == 40
    assert run_git(origin_repo, "rev-parse", "ao/feature").strip() == sha


def test_render_file_tree_limits_depth() -> None:
    tree = render_file_tree(["a/b/c/d.py", "a/e.py", "README.md"], depth=3)
    assert tree.splitlines() == [".", "README.md", "a", "    b", "        c", "    e.py"]
