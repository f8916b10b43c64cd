"""Error taxonomy shared by the orchestration engine."""

from __future__ import annotations

__all__ = [
    "ActionExecutionError",
    "CircuitOpenError",
    "EmptyPlanError",
    "EngineError",
    "InvalidStateError",
    "NotFoundError",
    "PlanFormatError",
    "ProposerError",
    "SafetyClassifierError",
    "SandboxUnavailableError",
]


class EngineError(RuntimeError):
    """Base error raised by the orchestration engine."""


class NotFoundError(EngineError):
    """Raised when a referenced task, plan item, or session does not exist."""


class EmptyPlanError(NotFoundError):
    """Raised when an operation needs an active task but the plan has none."""


class InvalidStateError(EngineError):
    """Raised when plan indices are inconsistent.

    This signals a broken plan invariant and is never repaired silently.
    """


class ActionExecutionError(EngineError):
    """Raised by action handlers when a single action fails."""


class SandboxUnavailableError(EngineError):
    """Raised when a sandbox session cannot be created or resumed."""


class SafetyClassifierError(EngineError):
    """Raised when the safety classifier cannot produce a verdict."""


class ProposerError(EngineError):
    """Raised when the action proposer fails to return a turn."""


class PlanFormatError(EngineError):
    """Raised when an embedded plan block cannot be parsed."""


class CircuitOpenError(EngineError):
    """Raised when a call is rejected because its circuit breaker is open."""
