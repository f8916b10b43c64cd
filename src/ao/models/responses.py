"""Responses API client: one urllib POST per attempt, plus envelope decoding."""

from __future__ import annotations

import json
import logging
import os
import urllib.error
import urllib.request
from typing import Any, Callable, Dict, Optional

from .llm_client import Completion, LLMClient, LLMResponseFormatError, LLMTransportError

__all__ = ["ResponsesClient", "Transport", "decode_envelope"]

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1/responses"
BASE_URL_ENV = "AO_BASE_URL"
API_KEY_ENVS = ("AO_API_KEY", "OPENAI_API_KEY")
_FAILED_STATUSES = frozenset({"failed", "cancelled"})

Transport = Callable[[Dict[str, Any]], str]


# ---------------------------------------------------------------- decoding
def decode_envelope(raw: str) -> Completion:
    """Return the model's text and reported token usage from a response body.

    A body that is not a JSON object is taken as the model text itself.
    Failed responses raise :class:`LLMTransportError`; refusals and bodies
    without any text raise :class:`LLMResponseFormatError`.
    """
    if not raw or not raw.strip():
        raise LLMResponseFormatError("Model endpoint returned an empty body.")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return Completion(raw)
    if not isinstance(data, dict):
        return Completion(raw)

    error = data.get("error")
    if isinstance(error, dict) or data.get("status") in _FAILED_STATUSES:
        message = error.get("message") if isinstance(error, dict) else None
        raise LLMTransportError(f"Model call {data.get('status') or 'failed'}: {message or 'no details'}")

    shortcut = data.get("output_text")
    if isinstance(shortcut, str) and shortcut.strip():
        text: Optional[str] = shortcut
    else:
        nested = data.get("response") if isinstance(data.get("response"), dict) else {}
        text = _output_text(data.get("output")) or _output_text(nested.get("output")) or _choice_text(data.get("choices"))
    if text is None:
        raise LLMResponseFormatError("Response did not contain output text.")
    return Completion(text, _usage_tokens(data.get("usage")))


def _output_text(output: Any) -> Optional[str]:
    if isinstance(output, dict):
        output = [output]
    if not isinstance(output, list):
        return None
    for item in output:
        if not isinstance(item, dict):
            continue
        for part in item.get("content") or ():
            if not isinstance(part, dict):
                continue
            if part.get("type") == "refusal":
                raise LLMResponseFormatError(f"Model refused: {part.get('refusal') or 'no reason given'}")
            if isinstance(part.get("json"), (dict, list)):
                return json.dumps(part["json"])
            if isinstance(part.get("text"), str) and part["text"].strip():
                return part["text"]
        if isinstance(item.get("text"), str) and item["text"].strip():
            return item["text"]
    return None


def _choice_text(choices: Any) -> Optional[str]:
    """Chat-completions style ``choices[].message.content``."""
    for choice in choices if isinstance(choices, list) else ():
        message = choice.get("message") if isinstance(choice, dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if isinstance(content, str) and content.strip():
            return content
    return None


def _usage_tokens(usage: Any) -> Optional[int]:
    if not isinstance(usage, dict):
        return None
    total = usage.get("total_tokens")
    if isinstance(total, int):
        return total
    parts = [usage.get(key) for key in ("input_tokens", "output_tokens")]
    return sum(parts) if all(isinstance(part, int) for part in parts) else None


# ------------------------------------------------------------------ client
class ResponsesClient(LLMClient):
    """Structured-output client for a Responses-style endpoint.

    ``transport`` replaces the HTTP call; tests pass a function returning a
    canned body.
    """

    def __init__(
        self,
        *,
        model: str = "gpt-5-mini",
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[Transport] = None,
        timeout: float = 120.0,
        max_attempts: int = 3,
        retry_delay: float = 0.5,
    ) -> None:
        super().__init__(model=model, max_attempts=max_attempts, retry_delay=retry_delay)
        self._api_key = api_key or next((os.environ[name] for name in API_KEY_ENVS if os.environ.get(name)), None)
        self._base_url = base_url or os.getenv(BASE_URL_ENV) or DEFAULT_BASE_URL
        self._timeout = timeout
        if transport is None:
            if not self._api_key:
                raise ValueError(f"Set one of {', '.join(API_KEY_ENVS)} or pass a transport.")
            transport = self._post
        self._transport = transport

    def _complete(self, payload: Dict[str, Any]) -> Completion:
        try:
            raw = self._transport(payload)
        except LLMTransportError:
            raise
        except Exception as error:
            raise LLMTransportError(f"Transport rejected the request: {error}") from error
        completion = decode_envelope(raw)
        LOGGER.debug(
            "%s answered with %d character(s), usage %s",
            payload.get("model"),
            len(completion.text),
            completion.usage_tokens,
        )
        return completion

    def _post(self, payload: Dict[str, Any]) -> str:
        request = urllib.request.Request(
            self._base_url,
            data=json.dumps(payload).encode("utf-8"),
            headers={"Content-Type": "application/json", "Authorization": f"Bearer {self._api_key}"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:  # noqa: S310 - configured endpoint
                return response.read().decode("utf-8")
        except urllib.error.HTTPError as error:  # pragma: no cover - network-dependent
            detail = error.read().decode("utf-8", errors="ignore")[:500]
            raise LLMTransportError(f"{self._base_url} answered HTTP {error.code}: {detail}") from error
        except (urllib.error.URLError, TimeoutError) as error:  # pragma: no cover - network-dependent
            raise LLMTransportError(f"Could not reach {self._base_url}: {getattr(error, 'reason', error)}") from error
