"""Sandbox provider boundary and a local, subprocess-backed implementation."""

from __future__ import annotations

import logging
import shutil
import subprocess
import uuid
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Dict, Optional, Protocol

from ..errors import NotFoundError

LOGGER = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT = 60.0
TIMEOUT_EXIT_CODE = 124


class SandboxNotFoundError(NotFoundError):
    """Raised when a sandbox id does not refer to a live environment."""


@dataclass(slots=True, frozen=True)
class SandboxHandle:
    """Reference to a remote execution environment."""

    id: str
    root: str
    image: str = ""
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class CommandResult:
    exit_code: int
    output: str
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def combined(self) -> str:
        return "\n".join(part.rstrip("\n") for part in (self.output, self.stderr) if part)


class SandboxProvider(Protocol):
    """Operations the engine needs from a sandbox backend."""

    def create(self, image: str) -> SandboxHandle:
        ...

    def get(self, sandbox_id: str) -> SandboxHandle:
        ...

    def run_command(
        self,
        handle: SandboxHandle,
        command: str,
        *,
        cwd: Optional[str] = None,
        timeout: float = DEFAULT_COMMAND_TIMEOUT,
    ) -> CommandResult:
        ...

    def stop(self, handle: SandboxHandle) -> None:
        ...

    def delete(self, handle: SandboxHandle) -> None:
        ...


class LocalSandboxProvider:
    """Sandboxes as directories on the local machine.

    Each sandbox is a fresh directory under ``root``; commands run through
    ``bash -c`` with the sandbox directory as the base for relative paths.
    """

    def __init__(self, root: Path | str, *, shell: str = "/bin/bash") -> None:
        self.root = Path(root).resolve()
        self._shell = shell if Path(shell).exists() else "/bin/sh"
        self._stopped: set[str] = set()

    def _path_for(self, sandbox_id: str) -> Path:
        return self.root / sandbox_id

    def create(self, image: str) -> SandboxHandle:
        sandbox_id = uuid.uuid4().hex[:12]
        path = self._path_for(sandbox_id)
        path.mkdir(parents=True, exist_ok=False)
        LOGGER.info("Created local sandbox %s at %s", sandbox_id, path)
        return SandboxHandle(id=sandbox_id, root=path.as_posix(), image=image)

    def get(self, sandbox_id: str) -> SandboxHandle:
        path = self._path_for(sandbox_id)
        if not sandbox_id or not path.is_dir() or sandbox_id in self._stopped:
            raise SandboxNotFoundError(f"Sandbox not found: {sandbox_id}")
        return SandboxHandle(id=sandbox_id, root=path.as_posix())

    def _resolve_cwd(self, handle: SandboxHandle, cwd: Optional[str]) -> Path:
        base = Path(handle.root)
        if not cwd:
            return base
        candidate = PurePosixPath(cwd)
        if candidate.is_absolute():
            return Path(candidate)
        return base / candidate

    def run_command(
        self,
        handle: SandboxHandle,
        command: str,
        *,
        cwd: Optional[str] = None,
        timeout: float = DEFAULT_COMMAND_TIMEOUT,
    ) -> CommandResult:
        if handle.id in self._stopped:
            raise SandboxNotFoundError(f"Sandbox {handle.id} is stopped")
        workdir = self._resolve_cwd(handle, cwd)
        try:
            process = subprocess.run(  # noqa: S603 - sandbox commands are the point
                [self._shell, "-c", command],
                cwd=workdir,
                capture_output=True,
                text=False,
                check=False,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            return CommandResult(TIMEOUT_EXIT_CODE, f"Command timed out after {timeout:g} seconds.")
        except OSError as error:
            return CommandResult(1, str(error), str(error))
        stdout = process.stdout.decode("utf-8", errors="replace") if process.stdout else ""
        stderr = process.stderr.decode("utf-8", errors="replace") if process.stderr else ""
        return CommandResult(process.returncode, stdout, stderr)

    def stop(self, handle: SandboxHandle) -> None:
        self._stopped.add(handle.id)
        LOGGER.info("Stopped local sandbox %s", handle.id)

    def delete(self, handle: SandboxHandle) -> None:
        self._stopped.add(handle.id)
        shutil.rmtree(self._path_for(handle.id), ignore_errors=True)
        LOGGER.info("Deleted local sandbox %s", handle.id)


__all__ = [
    "CommandResult",
    "DEFAULT_COMMAND_TIMEOUT",
    "LocalSandboxProvider",
    "SandboxHandle",
    "SandboxNotFoundError",
    "SandboxProvider",
]
