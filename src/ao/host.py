"""Repository host boundary: changed files, commit and push, pull requests."""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Protocol

from .resilience import with_retry
from .sandbox.vcs import SandboxGit

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class PullRequest:
    number: int
    branch: str
    base_branch: str
    title: str
    body: str = ""
    draft: bool = True


class RepositoryHost(Protocol):
    """Operations the engine needs from the git hosting provider."""

    def get_changed_files(self, git: SandboxGit) -> List[str]:
        ...

    def commit_and_push(self, git: SandboxGit, branch: str, message: str) -> Optional[str]:
        ...

    def create_or_update_pull_request(
        self,
        *,
        branch: str,
        base_branch: str,
        title: str,
        body: str = "",
        draft: bool = True,
        number: Optional[int] = None,
    ) -> PullRequest:
        ...


class LocalRepositoryHost:
    """Host backed by the sandbox's ``origin`` remote.

    Pull requests are kept in memory and numbered from 1, one per branch.
    """

    def __init__(
        self,
        *,
        remote: str = "origin",
        push: bool = True,
        retries: int = 3,
        retry_delay: float = 0.0,
    ) -> None:
        self.remote = remote
        self.push = push
        self.retries = retries
        self.retry_delay = retry_delay
        self._pull_requests: Dict[int, PullRequest] = {}
        self._numbers = itertools.count(1)
        self._lock = threading.Lock()

    def get_changed_files(self, git: SandboxGit) -> List[str]:
        return git.changed_files()

    def commit_and_push(self, git: SandboxGit, branch: str, message: str) -> Optional[str]:
        """Commit everything on ``branch`` and push it; return the new SHA."""
        sha = git.commit_all(message)
        if sha is None:
            LOGGER.info("Nothing to commit on %s", branch)
            return None
        if self.push:
            with_retry(
                lambda: git.push(branch, remote=self.remote),
                retries=self.retries,
                delay=self.retry_delay,
            )
            LOGGER.info("Pushed %s to %s/%s", sha[:12], self.remote, branch)
        return sha

    def create_or_update_pull_request(
        self,
        *,
        branch: str,
        base_branch: str,
        title: str,
        body: str = "",
        draft: bool = True,
        number: Optional[int] = None,
    ) -> PullRequest:
        with self._lock:
            existing = self._pull_requests.get(number) if number is not None else None
            if existing is None:
                existing = next((pr for pr in self._pull_requests.values() if pr.branch == branch), None)
            if existing is not None:
                updated = replace(existing, title=title, body=body or existing.body, draft=draft)
                self._pull_requests[updated.number] = updated
                return updated
            created = PullRequest(
                number=next(self._numbers),
                branch=branch,
                base_branch=base_branch,
                title=title,
                body=body,
                draft=draft,
            )
            self._pull_requests[created.number] = created
        LOGGER.info("Opened pull request #%d for %s", created.number, branch)
        return created

    def pull_requests(self) -> List[PullRequest]:
        with self._lock:
            return sorted(self._pull_requests.values(), key=lambda pr: pr.number)


__all__ = ["LocalRepositoryHost", "PullRequest", "RepositoryHost"]
