from __future__ import annotations

import subprocess
import sys
import textwrap
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from ao.sandbox import LocalSandboxProvider, SandboxSessionManager, TargetRepository  # noqa: E402


def run_git(repo: Path, *cmd: str) -> str:
    result = subprocess.run(
        ["git", *cmd],
        cwd=repo,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout


@pytest.fixture()
def origin_repo(tmp_path: Path) -> Path:
    """Create a small git repository that sandboxes clone from."""

    repo_root = tmp_path / "origin"
    repo_root.mkdir()
    run_git(repo_root, "init")
    run_git(repo_root, "symbolic-ref", "HEAD", "refs/heads/main")
    run_git(repo_root, "config", "user.email", "agent@example.com")
    run_git(repo_root, "config", "user.name", "Orchestrator Tests")

    (repo_root / "README.md").write_text("# Tiny repo\n", encoding="utf-8")
    src_dir = repo_root / "src" / "tiny_app"
    src_dir.mkdir(parents=True)
    (src_dir / "calculator.py").write_text(
        textwrap.dedent(
            """
            def add(left, right):
                return left + right
            """
        ).lstrip(),
        encoding="utf-8",
    )

    run_git(repo_root, "add", ".")
    run_git(repo_root, "commit", "-m", "Initial tiny repo state")
    return repo_root


@pytest.fixture()
def provider(tmp_path: Path) -> LocalSandboxProvider:
    return LocalSandboxProvider(tmp_path / "sandboxes")


@pytest.fixture()
def sessions(provider: LocalSandboxProvider, origin_repo: Path) -> SandboxSessionManager:
    return SandboxSessionManager(
        provider,
        TargetRepository(url=origin_repo.as_posix(), name="repo", base_branch="main"),
        command_timeout=30,
    )
