"""LLM-backed implementation of the orchestrator's agent and safety classifier."""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence

from .conversation import ActionRequest, ConversationTurn, assistant_turn
from .diagnosis import render_failed_actions
from .errors import CircuitOpenError, ProposerError, SafetyClassifierError
from .models.llm_client import LLMClientError
from .phases import PhaseName
from .phases.classify_safety import ClassifySafetyRequest
from .phases.diagnose import DiagnoseRequest
from .phases.plan import PlanRequest
from .phases.propose import ProposeRequest
from .phases.review import ReviewRequest
from .phases.summarize import SummarizeRequest
from .phases.update_plan import UpdatePlanRequest
from .phases.verify import VerifyRequest
from .planning.render import format_plan_prompt
from .planning.schema import PlanItem
from .prompts import render_transcript
from .proposer import PlanProposal, ProposalContext, ProposalMode, ReviewOutcome, Verification
from .resilience import CircuitBreakerRegistry
from .router import PhaseRouter
from .safety import RiskLevel, SafetyVerdict, describe_action

LOGGER = logging.getLogger(__name__)


class LLMAgent:
    """Route every decision through :class:`PhaseRouter` behind a circuit breaker.

    The breaker is keyed by the client's model name, so all phases sharing a
    model trip together.
    """

    def __init__(
        self,
        router: PhaseRouter,
        breakers: CircuitBreakerRegistry,
        *,
        breaker_key: Optional[str] = None,
    ) -> None:
        self.router = router
        self.breakers = breakers
        self.breaker_key = breaker_key or router.client.model

    def _dispatch(self, phase: PhaseName, payload: Any) -> Any:
        try:
            return self.breakers.call(self.breaker_key, self.router.dispatch, phase, payload)
        except (LLMClientError, CircuitOpenError) as error:
            raise ProposerError(f"{phase.value} failed: {error}") from error

    # ----------------------------------------------------------- planning
    def plan(
        self,
        context: ProposalContext,
        turns: Sequence[ConversationTurn],
        *,
        allow_context: bool,
    ) -> PlanProposal:
        response = self._dispatch(
            PhaseName.PLAN,
            PlanRequest(
                request=context.request,
                transcript=render_transcript(turns),
                codebase_tree=context.codebase_tree,
                allow_context=allow_context,
                previous_plan=context.plan_prompt,
            ),
        )
        items = [item.strip() for item in response.items if item.strip()]
        return PlanProposal(
            title=response.title.strip() or context.request.strip()[:80],
            items=items,
            needs_context=allow_context and response.needs_context,
        )

    # ------------------------------------------------------------ acting
    def propose(
        self,
        mode: ProposalMode,
        context: ProposalContext,
        turns: Sequence[ConversationTurn],
    ) -> ConversationTurn:
        result = self._dispatch(
            PhaseName.PROPOSE,
            ProposeRequest(
                mode=mode.value,
                request=context.request,
                transcript=render_transcript(turns),
                plan_prompt=context.plan_prompt,
                codebase_tree=context.codebase_tree,
                available_actions=list(context.available_actions),
                dependencies_installed=context.dependencies_installed,
            ),
        )
        actions = [ActionRequest(name=action.name, arguments=action.arguments()) for action in result.response.actions]
        return assistant_turn(result.response.content, actions, usage_tokens=result.usage_tokens)

    # ----------------------------------------------------------- judging
    def verify(
        self,
        context: ProposalContext,
        item: PlanItem,
        turns: Sequence[ConversationTurn],
    ) -> Verification:
        response = self._dispatch(
            PhaseName.VERIFY,
            VerifyRequest(
                request=context.request,
                item_text=item.text,
                plan_prompt=context.plan_prompt,
                transcript=render_transcript(turns),
            ),
        )
        return Verification(response.completed, response.summary, response.reasoning)

    def review(
        self,
        context: ProposalContext,
        turns: Sequence[ConversationTurn],
        *,
        changed_files: Sequence[str],
        review_count: int,
    ) -> ReviewOutcome:
        response = self._dispatch(
            PhaseName.REVIEW,
            ReviewRequest(
                request=context.request,
                plan_prompt=context.plan_prompt,
                transcript=render_transcript(turns),
                changed_files=list(changed_files),
                review_count=review_count,
            ),
        )
        new_items = [item.strip() for item in response.new_items if item.strip()]
        return ReviewOutcome(complete=response.complete or not new_items, new_items=new_items, summary=response.summary)

    def update_plan(
        self,
        context: ProposalContext,
        reasoning: str,
        items: Sequence[PlanItem],
        turns: Sequence[ConversationTurn],
    ) -> List[str]:
        response = self._dispatch(
            PhaseName.UPDATE_PLAN,
            UpdatePlanRequest(
                request=context.request,
                reasoning=reasoning,
                plan_prompt=format_plan_prompt(items, include_summaries=True),
                transcript=render_transcript(turns),
            ),
        )
        return [item.strip() for item in response.items if item.strip()]

    def summarize(self, context: ProposalContext, turns: Sequence[ConversationTurn]) -> str:
        response = self._dispatch(
            PhaseName.SUMMARIZE,
            SummarizeRequest(
                request=context.request,
                plan_prompt=context.plan_prompt,
                transcript=render_transcript(turns),
            ),
        )
        return response.render()

    def diagnose(
        self,
        context: ProposalContext,
        failed: Sequence[ConversationTurn],
        turns: Sequence[ConversationTurn],
    ) -> str:
        response = self._dispatch(
            PhaseName.DIAGNOSE,
            DiagnoseRequest(
                request=context.request,
                failed_actions=render_failed_actions(failed),
                plan_prompt=context.plan_prompt,
                transcript=render_transcript(turns),
                codebase_tree=context.codebase_tree,
            ),
        )
        return response.render()


class LLMSafetyClassifier:
    """Safety classifier backed by the classify-safety phase."""

    def __init__(self, router: PhaseRouter, breakers: CircuitBreakerRegistry, *, breaker_key: Optional[str] = None) -> None:
        self.router = router
        self.breakers = breakers
        self.breaker_key = breaker_key or f"{router.client.model}:safety"

    def classify(self, action: ActionRequest, command: str) -> SafetyVerdict:
        _, description = describe_action(action)
        try:
            response = self.breakers.call(
                self.breaker_key,
                self.router.dispatch,
                PhaseName.CLASSIFY_SAFETY,
                ClassifySafetyRequest(
                    action_name=action.name,
                    command=command,
                    description=description,
                    arguments_json=action.arguments_json(),
                ),
            )
        except (LLMClientError, CircuitOpenError) as error:
            raise SafetyClassifierError(str(error)) from error
        return SafetyVerdict(response.is_safe, response.reasoning, RiskLevel(response.risk_level))


__all__ = ["LLMAgent", "LLMSafetyClassifier"]
