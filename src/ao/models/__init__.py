"""Language-model clients used by the LLM-backed phases."""

from .llm_client import (
    Completion,
    LLMClient,
    LLMClientError,
    LLMRequest,
    LLMResponseFormatError,
    LLMRetryError,
    LLMTransportError,
    StructuredResult,
)
from .responses import ResponsesClient

__all__ = [
    "Completion",
    "LLMClient",
    "LLMClientError",
    "LLMRequest",
    "LLMResponseFormatError",
    "LLMRetryError",
    "LLMTransportError",
    "ResponsesClient",
    "StructuredResult",
]
