"""Built-in action handlers executed against the sandbox checkout."""

from __future__ import annotations

import base64
import logging
import posixpath
import re
import shlex
import urllib.error
import urllib.request
from html import unescape
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..errors import ActionExecutionError
from ..safety import grep_command, shell_text
from ..sandbox.provider import CommandResult
from .registry import DEFAULT_OUTPUT_END, DEFAULT_OUTPUT_START, ActionContext, ActionHandler, ActionRegistry, Success

LOGGER = logging.getLogger(__name__)

INSTALL_TIMEOUT_FACTOR = 2.5
URL_TIMEOUT = 30.0
NO_OUTPUT_MESSAGE = "Command completed successfully with no output."

_TAG_RE = re.compile(r"<[^>]+>")
_SCRIPT_RE = re.compile(r"<(script|style)[^>]*>.*?</\1>", re.IGNORECASE | re.DOTALL)
_BLANK_LINES_RE = re.compile(r"\n\s*\n+")


def _workdir(arguments: Mapping[str, Any]) -> Optional[str]:
    workdir = arguments.get("workdir")
    return str(workdir) if workdir else None


def _timeout(arguments: Mapping[str, Any], context: ActionContext, factor: float = 1.0) -> float:
    raw = arguments.get("timeout")
    try:
        value = float(raw) if raw is not None else context.timeout * factor
    except (TypeError, ValueError):
        value = context.timeout * factor
    return max(value, 1.0)


def _run(context: ActionContext, command: str, *, cwd: Optional[str] = None, timeout: Optional[float] = None) -> CommandResult:
    base = context.session.working_directory
    return context.git.provider.run_command(
        context.git.handle,
        command,
        cwd=posixpath.join(base, cwd) if cwd else base,
        timeout=timeout or context.timeout,
    )


def _quote_path(path: str) -> str:
    return shlex.quote(path)


# ------------------------------------------------------------------ shell
def shell(arguments: Mapping[str, Any], context: ActionContext) -> Success:
    """Run a shell command in the repository and fail on non-zero exit."""
    command = shell_text(dict(arguments)).strip()
    if not command:
        raise ActionExecutionError("No command provided.")
    result = _run(
        context,
        command,
        cwd=_workdir(arguments),
        timeout=_timeout(arguments, context),
    )
    if not result.ok:
        raise ActionExecutionError(f"Command failed. Exit code: {result.exit_code}\nResult: {result.combined}")
    return Success(result.combined or NO_OUTPUT_MESSAGE)


def install_dependencies(arguments: Mapping[str, Any], context: ActionContext) -> Success:
    """Run an install command and record the outcome on the session."""
    command = shell_text(dict(arguments)).strip()
    if not command:
        raise ActionExecutionError("No install command provided.")
    result = _run(
        context,
        command,
        cwd=_workdir(arguments),
        timeout=_timeout(arguments, context, INSTALL_TIMEOUT_FACTOR),
    )
    context.session.dependencies_installed = result.ok
    if not result.ok:
        raise ActionExecutionError(
            f"Failed to install dependencies. Exit code: {result.exit_code}\nError: {result.combined}"
        )
    LOGGER.info("Dependencies installed in sandbox %s", context.session.id)
    return Success(result.combined or NO_OUTPUT_MESSAGE)


def grep(arguments: Mapping[str, Any], context: ActionContext) -> Success:
    """Search the repository; exit code 1 means nothing matched."""
    if not arguments.get("query"):
        raise ActionExecutionError("No search query provided.")
    result = _run(context, grep_command(dict(arguments)))
    if result.exit_code == 1:
        return Success(f"Exit code 1. No results found.\n\n{result.combined}".rstrip())
    if not result.ok:
        raise ActionExecutionError(f"Command failed. Exit code: {result.exit_code}\nResult: {result.combined}")
    return Success(result.output.rstrip("\n"))


# ------------------------------------------------------------------ files
def _read_file(context: ActionContext, path: str) -> str:
    result = _run(context, f"cat -- {_quote_path(path)}")
    if not result.ok:
        raise ActionExecutionError(f"Failed to read file {path}: {result.combined}")
    return result.output


def _write_file(context: ActionContext, path: str, content: str) -> None:
    encoded = base64.b64encode(content.encode("utf-8")).decode("ascii")
    quoted = _quote_path(path)
    command = f'mkdir -p "$(dirname -- {quoted})" && printf %s {encoded} | base64 -d > {quoted}'
    result = _run(context, command)
    if not result.ok:
        raise ActionExecutionError(f"Failed to write file {path}: {result.combined}")


def _file_exists(context: ActionContext, path: str) -> bool:
    return _run(context, f"test -e {_quote_path(path)}").ok


def _numbered(lines: List[str], start: int = 1) -> str:
    return "\n".join(f"{start + offset}: {line}" for offset, line in enumerate(lines))


def _view(context: ActionContext, path: str, view_range: Optional[List[int]] = None) -> str:
    quoted = _quote_path(path)
    if _run(context, f"test -d {quoted}").ok:
        listing = _run(context, f"ls -la {quoted}")
        if not listing.ok:
            raise ActionExecutionError(f"Failed to list directory: {listing.combined}")
        return f"Directory listing for {path}:\n{listing.output.rstrip()}"
    lines = _read_file(context, path).split("\n")
    if view_range:
        start, end = int(view_range[0]), int(view_range[1])
        first = max(0, start - 1)
        last = len(lines) if end == -1 else min(len(lines), end)
        return _numbered(lines[first:last], first + 1)
    return _numbered(lines)


def view(arguments: Mapping[str, Any], context: ActionContext) -> Success:
    path = str(arguments.get("path") or "")
    if not path:
        raise ActionExecutionError("No path provided.")
    return Success(_view(context, path, arguments.get("view_range")))


def text_editor(arguments: Mapping[str, Any], context: ActionContext) -> Success:
    """File editor supporting ``view``, ``create``, ``str_replace`` and ``insert``."""
    command = str(arguments.get("command") or "")
    path = str(arguments.get("path") or "")
    if not path:
        raise ActionExecutionError("No path provided.")

    if command == "view":
        return Success(_view(context, path, arguments.get("view_range")))

    if command == "create":
        if _file_exists(context, path):
            raise ActionExecutionError(f"File {path} already exists. Use str_replace to modify existing files.")
        _write_file(context, path, str(arguments.get("file_text") or ""))
        return Success(f"Successfully created file {path}.")

    if command == "str_replace":
        old = str(arguments.get("old_str") or "")
        new = str(arguments.get("new_str") or "")
        if not old:
            raise ActionExecutionError("old_str must not be empty.")
        content = _read_file(context, path)
        occurrences = content.count(old)
        if occurrences == 0:
            raise ActionExecutionError(
                f"No match found for replacement text in {path}. Please check your text and try again."
            )
        if occurrences > 1:
            raise ActionExecutionError(
                f"Found {occurrences} matches for replacement text in {path}. "
                "Please provide more context to make a unique match."
            )
        _write_file(context, path, content.replace(old, new, 1))
        return Success(f"Successfully replaced text in {path} at exactly one location.")

    if command == "insert":
        try:
            line = int(arguments.get("insert_line", 0))
        except (TypeError, ValueError) as error:
            raise ActionExecutionError(f"Invalid insert_line: {arguments.get('insert_line')}") from error
        lines = _read_file(context, path).split("\n")
        position = max(0, min(len(lines), line))
        lines.insert(position, str(arguments.get("new_str") or ""))
        _write_file(context, path, "\n".join(lines))
        return Success(f"Successfully inserted text in {path} at line {line}.")

    raise ActionExecutionError(f"Unknown editor command: {command or '<empty>'}")


# ------------------------------------------------------------------- web
def _html_to_text(html: str) -> str:
    text = _SCRIPT_RE.sub("", html)
    text = _TAG_RE.sub("", text)
    return _BLANK_LINES_RE.sub("\n\n", unescape(text)).strip()


def get_url_content(arguments: Mapping[str, Any], context: ActionContext) -> Success:
    """Fetch ``url`` from the host and return its text content."""
    url = str(arguments.get("url") or "")
    if not url.startswith(("http://", "https://")):
        raise ActionExecutionError(
            f"Failed to parse URL: {url}\nPlease ensure the URL provided is properly formatted."
        )
    request = urllib.request.Request(url, headers={"User-Agent": "agentic-orchestrator/0.1"})
    try:
        with urllib.request.urlopen(request, timeout=URL_TIMEOUT) as response:  # noqa: S310 - scheme checked above
            charset = response.headers.get_content_charset() or "utf-8"
            body = response.read().decode(charset, errors="replace")
            content_type = response.headers.get_content_type()
    except urllib.error.HTTPError as error:
        raise ActionExecutionError(f"Failed to get URL content: {url}\nError:\nHTTP {error.code}") from error
    except (urllib.error.URLError, TimeoutError) as error:
        raise ActionExecutionError(f"Failed to get URL content: {url}\nError:\n{error}") from error
    if content_type == "text/html":
        body = _html_to_text(body)
    return Success(body)


BUILTIN_HANDLERS: Dict[str, Callable[[Mapping[str, Any], ActionContext], Success]] = {
    "shell": shell,
    "grep": grep,
    "view": view,
    "str_replace_based_edit_tool": text_editor,
    "install_dependencies": install_dependencies,
    "get_url_content": get_url_content,
}


def default_registry(
    extra: Optional[Mapping[str, ActionHandler]] = None,
    *,
    max_workers: int = 8,
    output_start: int = DEFAULT_OUTPUT_START,
    output_end: int = DEFAULT_OUTPUT_END,
) -> ActionRegistry:
    """Registry holding the built-in handlers plus any ``extra`` ones."""
    handlers: Dict[str, ActionHandler] = dict(BUILTIN_HANDLERS)
    if extra:
        handlers.update(extra)
    return ActionRegistry(
        handlers,
        max_workers=max_workers,
        output_start=output_start,
        output_end=output_end,
    )


__all__ = [
    "BUILTIN_HANDLERS",
    "default_registry",
    "get_url_content",
    "grep",
    "install_dependencies",
    "shell",
    "text_editor",
    "view",
]
