"""Shared helpers for invoking phases and emitting structured logs."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional, TypeVar

from ..models.llm_client import LLMClient, LLMClientError, LLMRequest, StructuredResult
from ..prompts import SYSTEM_PROMPT
from ..utils.slug import slugify

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class PhaseContext:
    """Run-wide settings every phase invocation shares."""

    system_prompt: str = SYSTEM_PROMPT
    logs_root: Optional[Path] = None
    model: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)


def invoke_phase(
    phase: str,
    request: Any,
    prompt: str,
    response_model: type[T],
    *,
    client: LLMClient,
    context: PhaseContext,
) -> T:
    return invoke_phase_result(phase, request, prompt, response_model, client=client, context=context).value


def invoke_phase_result(
    phase: str,
    request: Any,
    prompt: str,
    response_model: type[T],
    *,
    client: LLMClient,
    context: PhaseContext,
) -> StructuredResult[T]:
    """Call the client for ``phase`` and log every attempt when logging is enabled."""
    llm_request = LLMRequest(
        prompt=prompt,
        system_prompt=context.system_prompt,
        response_model=response_model,
        model=context.model,
        metadata={"phase": phase, **context.metadata},
    )
    attempts: list[dict[str, Any]] = []

    def _attempt_logger(
        payload: dict[str, Any],
        raw: str | None,
        parsed: Any,
        error: Exception | None,
        attempt: int,
    ) -> None:
        attempts.append(
            {
                "attempt": attempt,
                "raw": raw,
                "parsed": _json_safe(parsed),
                "error": str(error) if error else None,
            }
        )

    try:
        outcome = client.invoke_structured(llm_request, logger=_attempt_logger)
    except LLMClientError as error:
        LOGGER.warning("Phase %s failed after %d attempt(s): %s", phase, len(attempts), error)
        _write_phase_log(context, phase, request, llm_request, attempts, error=error)
        raise

    _write_phase_log(
        context,
        phase,
        request,
        llm_request,
        attempts,
        result=outcome.value,
        usage_tokens=outcome.usage_tokens,
    )
    return outcome


def _write_phase_log(
    context: PhaseContext,
    phase: str,
    request: Any,
    llm_request: LLMRequest[Any],
    attempts: list[dict[str, Any]],
    *,
    result: Any | None = None,
    usage_tokens: int | None = None,
    error: Exception | None = None,
) -> None:
    """Persist a structured phase execution log for later debugging."""
    if context.logs_root is None:
        return
    logs_root = context.logs_root / "phases"
    try:
        logs_root.mkdir(parents=True, exist_ok=True)
    except OSError:
        return

    entry: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "phase": phase,
        "model": llm_request.model,
        "request": _json_safe(request),
        "context": {
            "system_prompt": llm_request.system_prompt,
            "user_prompt": llm_request.prompt,
            "metadata": _json_safe(llm_request.metadata),
        },
        "attempts": attempts,
    }
    if result is not None:
        entry["result"] = _json_safe(result)
    if usage_tokens is not None:
        entry["usage_tokens"] = usage_tokens
    if error is not None:
        entry["error"] = str(error)

    timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    log_path = logs_root / f"phase__{slugify(phase, fallback='phase')}__{timestamp}.json"
    try:
        with log_path.open("w", encoding="utf-8") as handle:
            json.dump(entry, handle, indent=2, sort_keys=True, ensure_ascii=False)
    except OSError as write_error:
        LOGGER.debug("Could not write phase log %s: %s", log_path, write_error)


def _json_safe(value: Any) -> Any:
    """Coerce complex objects into JSON-serialisable representations."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Path):
        return value.as_posix()
    if is_dataclass(value) and not isinstance(value, type):
        return _json_safe(asdict(value))
    if hasattr(value, "model_dump"):
        return _json_safe(value.model_dump(mode="json"))
    if isinstance(value, dict):
        return {str(key): _json_safe(val) for key, val in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_json_safe(item) for item in value]
    return str(value)


__all__ = ["PhaseContext", "invoke_phase", "invoke_phase_result"]
