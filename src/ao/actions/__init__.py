"""Executable actions: the registry and the built-in handlers."""

from .builtin import BUILTIN_HANDLERS, default_registry
from .registry import (
    ActionContext,
    ActionHandler,
    ActionOutcome,
    ActionRegistry,
    Failure,
    FailureKind,
    Success,
    truncate_output,
)

__all__ = [
    "ActionContext",
    "ActionHandler",
    "ActionOutcome",
    "ActionRegistry",
    "BUILTIN_HANDLERS",
    "Failure",
    "FailureKind",
    "Success",
    "default_registry",
    "truncate_output",
]
