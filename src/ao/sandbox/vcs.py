"""Git helpers that run inside a sandbox.

Every command goes through the sandbox provider, so the same code drives a
local directory or a remote environment.  The helpers cover what a session
needs: clone and branch setup, change detection, the stash-and-discard
rollback, and committing work.
"""

from __future__ import annotations

import logging
import shlex
from typing import List, Optional, Sequence

from .provider import DEFAULT_COMMAND_TIMEOUT, CommandResult, SandboxHandle, SandboxProvider

LOGGER = logging.getLogger(__name__)

TREE_COMMAND = "git ls-files | tree --fromfile -L 3"
TREE_DEPTH = 3
FAILED_TO_GENERATE_TREE_MESSAGE = "Failed to generate tree. Please try again."


class GitError(RuntimeError):
    """Raised when a git command fails inside the sandbox."""


def render_file_tree(paths: Sequence[str], *, depth: int = TREE_DEPTH) -> str:
    """Render ``paths`` as an indented tree limited to ``depth`` levels."""
    seen: set[tuple[str, ...]] = set()
    lines: List[str] = ["."]
    for path in sorted(paths):
        parts = tuple(part for part in path.split("/") if part)[:depth]
        for level in range(1, len(parts) + 1):
            prefix = parts[:level]
            if prefix in seen:
                continue
            seen.add(prefix)
            lines.append(f"{'    ' * (level - 1)}{prefix[-1]}")
    return "\n".join(lines)


class SandboxGit:
    """Git operations for the repository checked out in a sandbox."""

    def __init__(
        self,
        provider: SandboxProvider,
        handle: SandboxHandle,
        repo_dir: str,
        *,
        timeout: float = DEFAULT_COMMAND_TIMEOUT,
    ) -> None:
        self.provider = provider
        self.handle = handle
        self.repo_dir = repo_dir
        self.timeout = timeout

    # ------------------------------------------------------------------ git IO
    def run(self, command: str, *, cwd: Optional[str] = None) -> CommandResult:
        """Run an arbitrary shell command in the repository directory."""
        return self.provider.run_command(
            self.handle,
            command,
            cwd=cwd or self.repo_dir,
            timeout=self.timeout,
        )

    def _run_git(
        self,
        args: Sequence[str],
        *,
        check: bool = True,
        cwd: Optional[str] = None,
    ) -> CommandResult:
        result = self.run(shlex.join(["git", *args]), cwd=cwd)
        if check and not result.ok:
            message = result.stderr.strip() or result.output.strip() or "unknown git error"
            raise GitError(f"git {' '.join(args)} failed: {message}")
        return result

    def git(self, *args: str, check: bool = True) -> CommandResult:
        """Execute ``git`` with ``args`` relative to the repository directory."""
        return self._run_git(list(args), check=check)

    # ------------------------------------------------------------------ setup
    def clone(self, url: str, *, base_branch: Optional[str] = None) -> None:
        """Clone ``url`` into the repository directory of the sandbox."""
        args: List[str] = ["clone"]
        if base_branch:
            args.extend(["--branch", base_branch])
        args.extend([url, self.repo_dir])
        self._run_git(args, cwd=".")

    def configure_identity(self, name: str, email: str) -> None:
        self._run_git(["config", "user.name", name])
        self._run_git(["config", "user.email", email])

    # -------------------------------------------------------------- branches
    def current_branch(self) -> str | None:
        """Return the current branch name or ``None`` when detached."""
        result = self._run_git(["rev-parse", "--abbrev-ref", "HEAD"], check=False)
        branch = result.output.strip()
        if not result.ok or not branch or branch == "HEAD":
            return None
        return branch

    def checkout_branch(self, branch: str) -> None:
        """Check out ``branch``, creating it from the current HEAD when absent."""
        if self.current_branch() == branch:
            return
        existing = self._run_git(["checkout", branch], check=False)
        if existing.ok:
            return
        self._run_git(["checkout", "-b", branch])
        LOGGER.info("Created branch %s", branch)

    def pull_latest(self) -> bool:
        """Fast-forward the checked-out branch; return ``False`` when that fails."""
        result = self._run_git(["pull", "--ff-only"], check=False)
        if not result.ok:
            LOGGER.warning("git pull failed: %s", (result.stderr or result.output).strip())
        return result.ok

    # ------------------------------------------------------------- repo status
    def status_entries(self) -> List[tuple[str, str]]:
        """Return porcelain status entries as ``(status, path)`` pairs."""
        result = self._run_git(["status", "--porcelain"])
        entries: List[tuple[str, str]] = []
        for line in result.output.splitlines():
            if not line.strip():
                continue
            status = line[:2]
            raw_path = line[3:]
            if status[0] in {"R", "C"} and " -> " in raw_path:
                raw_path = raw_path.split(" -> ", 1)[1]
            entries.append((status.strip() or status, raw_path.strip().strip('"')))
        return entries

    def changed_files(self) -> List[str]:
        """Return paths with uncommitted changes, including untracked files."""
        return sorted({path for _, path in self.status_entries()})

    # ------------------------------------------------------------ rollback
    def stash_and_discard(self, *, message: str = "ao: discarded read-only changes") -> str | None:
        """Stash every pending change, including untracked files, and reset.

        Returns the stash reference, or ``None`` when nothing was pending.
        """
        self._run_git(["add", "--all"])
        result = self._run_git(["stash", "push", "-m", message], check=False)
        combined = f"{result.output}\n{result.stderr}".strip()
        if not result.ok:
            raise GitError(f"git stash push failed: {combined or 'unknown git error'}")
        self._run_git(["reset", "--hard"])
        if "No local changes to save" in combined:
            return None
        return "stash@{0}"

    # ------------------------------------------------------------- commits
    def commit_all(self, message: str) -> str | None:
        """Stage all changes and commit; return the new SHA or ``None``."""
        self._run_git(["add", "--all"])
        commit = self._run_git(["commit", "-m", message], check=False)
        if not commit.ok:
            output = commit.stderr.strip() or commit.output.strip()
            if "nothing to commit" in output.lower():
                return None
            raise GitError(f"git commit failed: {output}")
        return self._run_git(["rev-parse", "HEAD"]).output.strip()

    def push(self, branch: str, *, remote: str = "origin", set_upstream: bool = True) -> None:
        args: List[str] = ["push"]
        if set_upstream:
            args.append("-u")
        args.extend([remote, branch])
        self._run_git(args)

    # ------------------------------------------------------------- overview
    def codebase_tree(self) -> str:
        """Render the tracked files three levels deep."""
        result = self.run(TREE_COMMAND)
        if result.ok and result.output.strip():
            return result.output.rstrip("\n")
        listing = self._run_git(["ls-files"], check=False)
        if not listing.ok:
            LOGGER.warning("Failed to generate tree: %s", (listing.stderr or listing.output).strip())
            return FAILED_TO_GENERATE_TREE_MESSAGE
        return render_file_tree(listing.output.splitlines())


__all__ = [
    "FAILED_TO_GENERATE_TREE_MESSAGE",
    "GitError",
    "SandboxGit",
    "TREE_COMMAND",
    "render_file_tree",
]
