"""Sandbox providers, in-sandbox git helpers, and session lifecycle."""

from .provider import CommandResult, LocalSandboxProvider, SandboxHandle, SandboxNotFoundError, SandboxProvider
from .session import (
    EventStatus,
    SandboxSession,
    SandboxSessionManager,
    SessionEvent,
    SessionState,
    TargetRepository,
)
from .vcs import GitError, SandboxGit

__all__ = [
    "CommandResult",
    "EventStatus",
    "GitError",
    "LocalSandboxProvider",
    "SandboxGit",
    "SandboxHandle",
    "SandboxNotFoundError",
    "SandboxProvider",
    "SandboxSession",
    "SandboxSessionManager",
    "SessionEvent",
    "SessionState",
    "TargetRepository",
]
