"""Routing logic that maps phase requests to their concrete implementations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable

from pydantic import ValidationError
from pydantic.type_adapter import TypeAdapter

from .models.llm_client import LLMClient
from .phases import PhaseName
from .phases.base import PhaseContext
from .phases.classify_safety import ClassifySafetyRequest, ClassifySafetyResponse, run as run_classify_safety
from .phases.diagnose import DiagnoseRequest, DiagnoseResponse, run as run_diagnose
from .phases.plan import PlanRequest, PlanResponse, run as run_plan
from .phases.propose import ProposeRequest, ProposeResponse, run as run_propose
from .phases.review import ReviewRequest, ReviewResponse, run as run_review
from .phases.summarize import SummarizeRequest, SummarizeResponse, run as run_summarize
from .phases.update_plan import UpdatePlanRequest, UpdatePlanResponse, run as run_update_plan
from .phases.verify import VerifyRequest, VerifyResponse, run as run_verify

PhaseRunner = Callable[..., Any]


@dataclass(slots=True)
class PhaseEntry:
    """Metadata describing how to execute a single phase."""

    request_model: type[Any]
    response_model: type[Any]
    runner: PhaseRunner


class PhaseRouter:
    """Dispatch table mapping phase names to their concrete handlers."""

    def __init__(self, *, client: LLMClient, context: PhaseContext | None = None) -> None:
        self._client = client
        self._context = context or PhaseContext()
        self._registry: Dict[PhaseName, PhaseEntry] = {
            PhaseName.PLAN: PhaseEntry(PlanRequest, PlanResponse, run_plan),
            PhaseName.PROPOSE: PhaseEntry(ProposeRequest, ProposeResponse, run_propose),
            PhaseName.VERIFY: PhaseEntry(VerifyRequest, VerifyResponse, run_verify),
            PhaseName.REVIEW: PhaseEntry(ReviewRequest, ReviewResponse, run_review),
            PhaseName.SUMMARIZE: PhaseEntry(SummarizeRequest, SummarizeResponse, run_summarize),
            PhaseName.DIAGNOSE: PhaseEntry(DiagnoseRequest, DiagnoseResponse, run_diagnose),
            PhaseName.UPDATE_PLAN: PhaseEntry(UpdatePlanRequest, UpdatePlanResponse, run_update_plan),
            PhaseName.CLASSIFY_SAFETY: PhaseEntry(
                ClassifySafetyRequest,
                ClassifySafetyResponse,
                run_classify_safety,
            ),
        }

    @property
    def client(self) -> LLMClient:
        return self._client

    def dispatch(self, phase: PhaseName | str, payload: Any) -> Any:
        """Coerce the payload into the expected request type and execute the phase."""
        entry = self._registry[self._normalize_phase(phase)]
        request = self._coerce_payload(payload, entry.request_model)
        return entry.runner(request, client=self._client, context=self._context)

    def available_phases(self) -> Iterable[PhaseName]:
        return self._registry.keys()

    @staticmethod
    def _normalize_phase(phase: PhaseName | str) -> PhaseName:
        if isinstance(phase, PhaseName):
            return phase
        try:
            return PhaseName(phase)
        except ValueError as error:
            valid = ", ".join(item.value for item in PhaseName)
            raise KeyError(f"Unknown phase '{phase}'. Expected one of: {valid}") from error

    @staticmethod
    def _coerce_payload(payload: Any, request_type: type[Any]) -> Any:
        if isinstance(payload, request_type):
            return payload
        try:
            return TypeAdapter(request_type).validate_python(payload)
        except ValidationError as error:
            raise ValueError(f"Payload for {request_type.__name__} did not validate: {error}") from error


__all__ = ["PhaseEntry", "PhaseRouter"]
