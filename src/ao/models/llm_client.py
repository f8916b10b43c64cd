"""Structured language-model calls: request payloads, JSON recovery, and retries."""

from __future__ import annotations

import ast
import json
import logging
import re
import time
from dataclasses import MISSING, dataclass, field, fields, is_dataclass
from typing import Any, Callable, Dict, Generic, Optional, Type, TypeVar, get_args, get_origin

from pydantic import ValidationError
from pydantic.type_adapter import TypeAdapter

__all__ = [
    "AttemptLogger",
    "Completion",
    "LLMClient",
    "LLMClientError",
    "LLMRequest",
    "LLMResponseFormatError",
    "LLMRetryError",
    "LLMTransportError",
    "StructuredResult",
]

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

AttemptLogger = Callable[[Dict[str, Any], Optional[str], Optional[Any], Optional[Exception], int], None]

METADATA_VALUE_LIMIT = 512
_FENCE_RE = re.compile(r"```(?:json)?\s*\n(.*?)\n?```", re.IGNORECASE | re.DOTALL)
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")


class LLMClientError(RuntimeError):
    """Base error for every failure of a structured model call."""


class LLMTransportError(LLMClientError):
    """The endpoint could not be reached or rejected the request."""


class LLMResponseFormatError(LLMClientError):
    """The model answered with something that is not a JSON document."""


class LLMRetryError(LLMClientError):
    """Every attempt produced an unusable answer."""


@dataclass(slots=True, frozen=True)
class Completion:
    """Raw model output together with the token usage the endpoint reported."""

    text: str
    usage_tokens: Optional[int] = None


@dataclass(slots=True)
class StructuredResult(Generic[T]):
    value: T
    data: Any
    usage_tokens: Optional[int] = None
    attempts: int = 1


def strict_schema(response_model: Type[Any]) -> Dict[str, Any]:
    """JSON Schema for ``response_model`` with every object closed and fully required."""
    return _close_objects(TypeAdapter(response_model).json_schema())


def _close_objects(node: Any) -> Any:
    if isinstance(node, list):
        return [_close_objects(item) for item in node]
    if not isinstance(node, dict):
        return node
    if node.get("type") == "object":
        node["additionalProperties"] = False
        if isinstance(node.get("properties"), dict):
            node["required"] = list(node["properties"])
    return {key: _close_objects(value) for key, value in node.items()}


def _metadata_text(value: Any) -> str:
    text = value if isinstance(value, str) else json.dumps(value, separators=(",", ":"), sort_keys=True)
    if len(text) > METADATA_VALUE_LIMIT:
        return f"{text[: METADATA_VALUE_LIMIT - 3]}..."
    return text


@dataclass(slots=True)
class LLMRequest(Generic[T]):
    """One prompt and the dataclass or model its answer must validate against."""

    prompt: str
    response_model: Type[T]
    model: Optional[str] = None
    system_prompt: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    temperature: float = 0.0
    max_attempts: Optional[int] = None

    def to_payload(self, default_model: str) -> Dict[str, Any]:
        """Build a Responses API body that asks for strict JSON-schema output."""
        messages = [
            {"role": role, "content": [{"type": "input_text", "text": text}]}
            for role, text in (("system", self.system_prompt), ("user", self.prompt))
            if text
        ]
        payload: Dict[str, Any] = {
            "model": self.model or default_model,
            "input": messages,
            "text": {
                "format": {
                    "type": "json_schema",
                    "name": getattr(self.response_model, "__name__", "ao_response"),
                    "schema": strict_schema(self.response_model),
                    "strict": True,
                }
            },
        }
        if self.temperature:
            payload["temperature"] = self.temperature
        if self.metadata:
            payload["metadata"] = {key: _metadata_text(value) for key, value in self.metadata.items()}
        return payload


class LLMClient:
    """Send structured requests and validate the answers, retrying bad output.

    Subclasses provide the transport by overriding :meth:`_raw_invoke`, or
    :meth:`_complete` when the endpoint also reports token usage.
    """

    def __init__(self, model: str, *, max_attempts: int = 3, retry_delay: float = 0.5) -> None:
        self._model = model
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay

    @property
    def model(self) -> str:
        return self._model

    def invoke(self, request: LLMRequest[T]) -> T:
        return self.invoke_structured(request).value

    def invoke_structured(
        self,
        request: LLMRequest[T],
        *,
        logger: Optional[AttemptLogger] = None,
    ) -> StructuredResult[T]:
        """Call the model until an answer validates or the attempts run out."""
        attempts = request.max_attempts or self._max_attempts
        adapter = TypeAdapter(request.response_model)
        payload = request.to_payload(self._model)
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            completion: Optional[Completion] = None
            data: Optional[Any] = None
            try:
                completion = self._complete(payload)
                data = fill_missing_defaults(request.response_model, parse_json_document(completion.text))
                value = adapter.validate_python(data)
            except (LLMResponseFormatError, LLMTransportError, ValidationError) as error:
                last_error = error
                if logger:
                    logger(payload, completion.text if completion else None, data, error, attempt)
                LOGGER.debug("Attempt %d/%d on %s failed: %s", attempt, attempts, payload["model"], error)
                if attempt < attempts and self._retry_delay > 0:
                    time.sleep(self._retry_delay)
                continue
            if logger:
                logger(payload, completion.text, data, None, attempt)
            return StructuredResult(value=value, data=data, usage_tokens=completion.usage_tokens, attempts=attempt)

        raise LLMRetryError(
            f"No schema-valid answer from {request.model or self._model} after {attempts} attempt(s)"
        ) from last_error

    def _complete(self, payload: Dict[str, Any]) -> Completion:
        return Completion(self._raw_invoke(payload))

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        raise NotImplementedError("Subclasses must implement _raw_invoke() or _complete().")


# ------------------------------------------------------------ JSON recovery
def parse_json_document(text: str) -> Any:
    """Decode a model answer, tolerating code fences, prose, and trailing commas."""
    stripped = text.strip()
    if not stripped:
        raise LLMResponseFormatError("Model returned an empty response.")
    for candidate in dict.fromkeys(filter(None, (stripped, _salvage_json(stripped)))):
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            literal = _python_literal(candidate)
            if literal is not None:
                return literal
    raise LLMResponseFormatError(f"Model returned invalid JSON: {stripped[:200]}")


def _salvage_json(text: str) -> Optional[str]:
    """Cut the first balanced object or array out of ``text``."""
    fenced = _FENCE_RE.match(text)
    body = fenced.group(1).strip() if fenced else text
    start: Optional[int] = None
    closers: list[str] = []
    for position, char in enumerate(body):
        if char in "{[":
            start = position if start is None else start
            closers.append("}" if char == "{" else "]")
        elif closers and char == closers[-1]:
            closers.pop()
            if not closers and start is not None:
                return _TRAILING_COMMA_RE.sub(r"\1", body[start : position + 1])
    return body if body != text else None


def _python_literal(candidate: str) -> Any | None:
    try:
        literal = ast.literal_eval(candidate)
    except (SyntaxError, ValueError):
        return None
    if isinstance(literal, (dict, list)):
        return json.loads(json.dumps(literal, default=str))
    return None


def fill_missing_defaults(model: Type[Any], payload: Any) -> Any:
    """Give omitted dataclass fields their defaults before validation."""
    if not isinstance(payload, dict) or not is_dataclass(model):
        return payload
    filled = dict(payload)
    for info in fields(model):
        if info.name in filled:
            continue
        if info.default is not MISSING:
            filled[info.name] = info.default
        elif info.default_factory is not MISSING:  # type: ignore[misc]
            filled[info.name] = info.default_factory()  # type: ignore[misc]
        elif _optional(info.type):
            filled[info.name] = None
    return filled


def _optional(annotation: Any) -> bool:
    if isinstance(annotation, str):
        return annotation.startswith("Optional[") or "None" in annotation
    origin = get_origin(annotation)
    if origin is None:
        return annotation in (Any, type(None))
    return type(None) in get_args(annotation)
