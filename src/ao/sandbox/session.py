"""Lifecycle of the sandboxed, git-backed workspace a run executes in."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import PurePosixPath
from typing import Callable, List, Optional

from ..errors import SandboxUnavailableError
from ..planning.schema import utc_now
from ..resilience import with_retry
from .provider import DEFAULT_COMMAND_TIMEOUT, SandboxHandle, SandboxProvider
from .vcs import SandboxGit

LOGGER = logging.getLogger(__name__)

DEFAULT_IMAGE = "ao-sandbox"
DEFAULT_IDENTITY = ("ao-agent", "ao-agent@users.noreply.example.com")


class SessionState(str, Enum):
    ABSENT = "absent"
    CREATING = "creating"
    ACTIVE = "active"
    RESUMING = "resuming"
    STOPPED = "stopped"
    DELETED = "deleted"


class EventStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"


@dataclass(slots=True, frozen=True)
class SessionEvent:
    """Progress record for one lifecycle step."""

    action: str
    status: EventStatus
    detail: str = ""
    session_id: Optional[str] = None
    timestamp: datetime = field(default_factory=utc_now)


@dataclass(slots=True, frozen=True)
class TargetRepository:
    """Repository cloned into each sandbox."""

    url: str
    name: str
    base_branch: Optional[str] = None


@dataclass(slots=True)
class SandboxSession:
    id: str
    working_directory: str
    branch_name: str
    handle: SandboxHandle
    codebase_tree: Optional[str] = None
    dependencies_installed: Optional[bool] = None
    state: SessionState = SessionState.ACTIVE


EventSink = Callable[[SessionEvent], None]

RESUME_STEPS = ("resume_sandbox", "checkout_branch", "pull_latest_changes", "generate_codebase_tree")
CREATE_STEPS = (
    "create_sandbox",
    "clone_repository",
    "configure_git_user",
    "checkout_branch",
    "generate_codebase_tree",
)


class SandboxSessionManager:
    """Create, resume, and release sandbox sessions.

    Every step is reported as an append-only :class:`SessionEvent` so callers
    can render progress without polling the sandbox.
    """

    def __init__(
        self,
        provider: SandboxProvider,
        repository: TargetRepository,
        *,
        image: str = DEFAULT_IMAGE,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
        identity: tuple[str, str] = DEFAULT_IDENTITY,
        create_retries: int = 1,
        event_sink: Optional[EventSink] = None,
    ) -> None:
        self.provider = provider
        self.repository = repository
        self.image = image
        self.command_timeout = command_timeout
        self.identity = identity
        self.create_retries = create_retries
        self._event_sink = event_sink
        self._events: List[SessionEvent] = []
        self._lock = threading.Lock()

    # ---------------------------------------------------------------- events
    @property
    def events(self) -> tuple[SessionEvent, ...]:
        with self._lock:
            return tuple(self._events)

    def _emit(
        self,
        action: str,
        status: EventStatus,
        detail: str = "",
        session_id: Optional[str] = None,
    ) -> None:
        event = SessionEvent(action=action, status=status, detail=detail, session_id=session_id)
        with self._lock:
            self._events.append(event)
        if self._event_sink is not None:
            self._event_sink(event)

    def _working_directory(self, handle: SandboxHandle) -> str:
        return (PurePosixPath(handle.root) / self.repository.name).as_posix()

    def git(self, session: SandboxSession) -> SandboxGit:
        return SandboxGit(
            self.provider,
            session.handle,
            session.working_directory,
            timeout=self.command_timeout,
        )

    # ------------------------------------------------------------- lifecycle
    def acquire(self, branch_name: str, session_id: Optional[str] = None) -> SandboxSession:
        """Resume ``session_id`` when possible, otherwise create a new session."""
        if session_id:
            session = self._resume(session_id, branch_name)
            if session is not None:
                return session
        else:
            for step in RESUME_STEPS:
                self._emit(step, EventStatus.SKIPPED, "No existing sandbox session.")
        return self.create(branch_name)

    def _resume(self, session_id: str, branch_name: str) -> Optional[SandboxSession]:
        step = RESUME_STEPS[0]
        self._emit(step, EventStatus.PENDING, session_id=session_id)
        try:
            handle = self.provider.get(session_id)
            session = SandboxSession(
                id=handle.id,
                working_directory=self._working_directory(handle),
                branch_name=branch_name,
                handle=handle,
                state=SessionState.RESUMING,
            )
            self._emit(step, EventStatus.SUCCESS, session_id=session_id)
            git = self.git(session)

            step = RESUME_STEPS[1]
            self._emit(step, EventStatus.PENDING, session_id=session_id)
            git.checkout_branch(branch_name)
            self._emit(step, EventStatus.SUCCESS, branch_name, session_id=session_id)

            step = RESUME_STEPS[2]
            self._emit(step, EventStatus.PENDING, session_id=session_id)
            pulled = with_retry(git.pull_latest, retries=2)
            self._emit(
                step,
                EventStatus.SUCCESS if pulled else EventStatus.SKIPPED,
                "" if pulled else "Could not pull latest changes; continuing with local state.",
                session_id=session_id,
            )

            step = RESUME_STEPS[3]
            self._emit(step, EventStatus.PENDING, session_id=session_id)
            session.codebase_tree = git.codebase_tree()
            self._emit(step, EventStatus.SUCCESS, session_id=session_id)
        except Exception as error:  # noqa: BLE001 - any resume failure falls back to create
            LOGGER.warning("Failed to resume sandbox %s; creating a new one: %s", session_id, error)
            self._emit(step, EventStatus.ERROR, str(error), session_id=session_id)
            for remaining in RESUME_STEPS[RESUME_STEPS.index(step) + 1 :]:
                self._emit(remaining, EventStatus.SKIPPED, "Resume failed.", session_id=session_id)
            return None

        session.state = SessionState.ACTIVE
        LOGGER.info("Resumed sandbox %s on branch %s", session.id, branch_name)
        return session

    def create(self, branch_name: str) -> SandboxSession:
        """Allocate a fresh sandbox and prepare the repository inside it."""
        try:
            return with_retry(lambda: self._create_once(branch_name), retries=self.create_retries)
        except Exception as error:
            LOGGER.error("Failed to create a sandbox session: %s", error)
            raise SandboxUnavailableError(f"Failed to create a sandbox session: {error}") from error

    def _create_once(self, branch_name: str) -> SandboxSession:
        step = CREATE_STEPS[0]
        self._emit(step, EventStatus.PENDING)
        try:
            handle = self.provider.create(self.image)
        except Exception as error:
            self._emit(step, EventStatus.ERROR, str(error))
            raise
        self._emit(step, EventStatus.SUCCESS, session_id=handle.id)
        session = SandboxSession(
            id=handle.id,
            working_directory=self._working_directory(handle),
            branch_name=branch_name,
            handle=handle,
            state=SessionState.CREATING,
        )
        git = self.git(session)
        try:
            step = CREATE_STEPS[1]
            self._emit(step, EventStatus.PENDING, session_id=handle.id)
            git.clone(self.repository.url, base_branch=self.repository.base_branch)
            self._emit(step, EventStatus.SUCCESS, session_id=handle.id)

            step = CREATE_STEPS[2]
            self._emit(step, EventStatus.PENDING, session_id=handle.id)
            git.configure_identity(*self.identity)
            self._emit(step, EventStatus.SUCCESS, session_id=handle.id)

            step = CREATE_STEPS[3]
            self._emit(step, EventStatus.PENDING, session_id=handle.id)
            git.checkout_branch(branch_name)
            self._emit(step, EventStatus.SUCCESS, branch_name, session_id=handle.id)

            step = CREATE_STEPS[4]
            self._emit(step, EventStatus.PENDING, session_id=handle.id)
            session.codebase_tree = git.codebase_tree()
            self._emit(step, EventStatus.SUCCESS, session_id=handle.id)
        except Exception as error:
            self._emit(step, EventStatus.ERROR, str(error), session_id=handle.id)
            self.provider.delete(handle)
            raise

        session.state = SessionState.ACTIVE
        LOGGER.info("Created sandbox %s on branch %s", session.id, branch_name)
        return session

    def release(self, session: SandboxSession, *, delete: bool = False) -> SandboxSession:
        """Stop (or delete) the sandbox behind ``session``."""
        action = "delete_sandbox" if delete else "stop_sandbox"
        self._emit(action, EventStatus.PENDING, session_id=session.id)
        try:
            if delete:
                self.provider.delete(session.handle)
            else:
                self.provider.stop(session.handle)
        except Exception as error:
            self._emit(action, EventStatus.ERROR, str(error), session_id=session.id)
            raise
        self._emit(action, EventStatus.SUCCESS, session_id=session.id)
        state = SessionState.DELETED if delete else SessionState.STOPPED
        LOGGER.info("Released sandbox %s (%s)", session.id, state.value)
        return replace(session, state=state)


__all__ = [
    "EventStatus",
    "SandboxSession",
    "SandboxSessionManager",
    "SessionEvent",
    "SessionState",
    "TargetRepository",
]
