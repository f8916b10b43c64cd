"""State machine that drives a request from planning to a finished pull request."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Set, Union
from uuid import uuid4

from .actions.registry import ActionContext, ActionRegistry
from .context import ContextBudget
from .conversation import (
    DIAGNOSE_ACTION_NAME,
    UPDATE_PLAN_ACTION_NAME,
    ActionRequest,
    ActionStatus,
    ConversationTurn,
    TurnLog,
    assistant_turn,
    result_turn,
    user_turn,
)
from .diagnosis import ErrorDiagnosisHeuristic, last_failed_actions
from .errors import InvalidStateError, NotFoundError, ProposerError, SandboxUnavailableError
from .host import RepositoryHost
from .planning.durable import DurablePlanStore, embed_plan
from .planning.render import format_plan_items, format_plan_prompt
from .planning.schema import PlanAuthor, TaskPlan
from .planning.store import (
    add_review_items,
    complete_item,
    complete_task,
    create_task,
    get_active_items,
    get_active_task,
    get_current_item,
    get_pull_request_number,
    get_remaining_items,
    get_task,
    revise_active_task,
    set_pull_request_number,
)
from .proposer import Agent, ProposalContext, ProposalMode
from .safety import CommandSafetyFilter
from .sandbox.session import SandboxSession, SandboxSessionManager, SessionState
from .sandbox.vcs import GitError, SandboxGit
from .utils.slug import slugify

LOGGER = logging.getLogger(__name__)

READ_ONLY_WARNING = (
    "**WARNING**: THIS TOOL, OR A PREVIOUS TOOL HAS CHANGED FILES IN THE REPO.\n"
    "Remember that you are only permitted to take **READ** actions during the planning step. "
    "The changes have been reverted.\n\n"
    "Please ensure you only take read actions during the planning step to gather context.\n\n"
    "Command Output:\n\n"
)


class OrchestratorState(str, Enum):
    PLANNING = "planning"
    GATHERING_CONTEXT = "gathering_context"
    ACTING = "acting"
    VERIFYING = "verifying"
    DIAGNOSING = "diagnosing"
    SUMMARIZING = "summarizing"
    REVIEWING = "reviewing"
    CONCLUDING = "concluding"
    ABORTED = "aborted"
    SUSPENDED = "suspended"


TERMINAL_STATES = frozenset(
    {OrchestratorState.CONCLUDING, OrchestratorState.ABORTED, OrchestratorState.SUSPENDED}
)


@dataclass(slots=True, frozen=True)
class OrchestratorSettings:
    max_review_count: int = 3
    max_context_actions: int = 75
    max_idle_turns: int = 2
    max_proposer_failures: int = 3
    require_plan_approval: bool = False
    branch_prefix: str = "ao/"
    commit_message: str = "Apply patch"
    action_timeout: float = 60.0


@dataclass(slots=True, frozen=True)
class Suspension:
    """What a caller needs to approve a proposed plan and continue the run."""

    token: str
    request: str
    title: str
    items: tuple[str, ...]
    session_id: Optional[str]
    branch_name: str


@dataclass(slots=True)
class RunState:
    """Mutable bookkeeping for a single run."""

    id: str
    request: str
    plan_ref: str
    branch_name: str
    state: OrchestratorState = OrchestratorState.PLANNING
    plan: Optional[TaskPlan] = None
    task_id: Optional[str] = None
    log: TurnLog = field(default_factory=TurnLog)
    archived: List[TurnLog] = field(default_factory=list)
    session: Optional[SandboxSession] = None
    return_state: Optional[OrchestratorState] = None
    context_gathered: bool = False
    context_actions: int = 0
    idle_turns: int = 0
    review_count: int = 0
    proposer_failures: int = 0
    committed_files: Set[str] = field(default_factory=set)
    suspension: Optional[Suspension] = None
    abort_reason: Optional[str] = None
    history: List[tuple[OrchestratorState, OrchestratorState]] = field(default_factory=list)
    steps: int = 0

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    def visible_turns(self) -> List[ConversationTurn]:
        """User-facing transcript across the planning and execution logs."""
        turns: List[ConversationTurn] = []
        for log in [*self.archived, self.log]:
            turns.extend(log.visible_view())
        return turns


class Orchestrator:
    """Drive one run through planning, acting, verifying and reviewing.

    The orchestrator owns every transition; the agent only proposes and
    judges.  Action batches run concurrently through the registry, while
    working-tree reconciliation (rollback, commit, push) happens on the
    calling thread once the whole batch has finished.
    """

    def __init__(
        self,
        *,
        agent: Agent,
        registry: ActionRegistry,
        sessions: SandboxSessionManager,
        host: RepositoryHost,
        plan_store: DurablePlanStore,
        budget: Optional[ContextBudget] = None,
        heuristic: Optional[ErrorDiagnosisHeuristic] = None,
        safety_filter: Optional[CommandSafetyFilter] = None,
        settings: Optional[OrchestratorSettings] = None,
    ) -> None:
        self.agent = agent
        self.registry = registry
        self.sessions = sessions
        self.host = host
        self.plan_store = plan_store
        self.budget = budget or ContextBudget()
        self.heuristic = heuristic or ErrorDiagnosisHeuristic()
        self.safety_filter = safety_filter
        self.settings = settings or OrchestratorSettings()
        self._suspended: Dict[str, RunState] = {}
        self._current: Optional[RunState] = None
        self._stopped = threading.Event()
        self._handlers: Dict[OrchestratorState, Callable[[RunState], OrchestratorState]] = {
            OrchestratorState.PLANNING: self._planning,
            OrchestratorState.GATHERING_CONTEXT: self._gathering_context,
            OrchestratorState.ACTING: self._acting,
            OrchestratorState.VERIFYING: self._verifying,
            OrchestratorState.DIAGNOSING: self._diagnosing,
            OrchestratorState.SUMMARIZING: self._summarizing,
            OrchestratorState.REVIEWING: self._reviewing,
        }

    # ------------------------------------------------------------ lifecycle
    def start(self, request: str, *, plan_ref: str, session_id: Optional[str] = None) -> RunState:
        """Acquire a sandbox and prepare a run in the ``PLANNING`` state."""
        self._stopped.clear()
        branch_name = f"{self.settings.branch_prefix}{slugify(request, fallback='task', max_length=40)}-{uuid4().hex[:6]}"
        run = RunState(
            id=uuid4().hex,
            request=request,
            plan_ref=plan_ref,
            branch_name=branch_name,
            plan=self.plan_store.read_plan(plan_ref),
        )
        run.log.append(user_turn(request))
        self._current = run
        try:
            run.session = self.sessions.acquire(branch_name, session_id)
        except SandboxUnavailableError as error:
            self._transition(run, self._abort(run, f"Sandbox unavailable: {error}"))
            return run
        LOGGER.info("Run %s started on branch %s (sandbox %s)", run.id, branch_name, run.session.id)
        return run

    def run(
        self,
        request: str,
        *,
        plan_ref: str,
        session_id: Optional[str] = None,
        max_steps: int = 500,
    ) -> RunState:
        """Start a run and step it until it reaches a terminal state."""
        return self.drive(self.start(request, plan_ref=plan_ref, session_id=session_id), max_steps=max_steps)

    def drive(self, run: RunState, *, max_steps: int = 500) -> RunState:
        while not run.finished and not self._stopped.is_set():
            if run.steps >= max_steps:
                self._transition(run, self._abort(run, f"Step limit of {max_steps} reached"))
                break
            self.step(run)
        return run

    def resume(
        self,
        suspension: Union[Suspension, str],
        approved_items: Optional[Sequence[str]] = None,
        *,
        max_steps: int = 500,
    ) -> RunState:
        """Continue a run suspended for plan approval.

        ``approved_items`` replaces the proposed items; an empty list rejects
        the plan and concludes the run.
        """
        token = suspension.token if isinstance(suspension, Suspension) else suspension
        run = self._suspended.pop(token, None)
        if run is None or run.suspension is None:
            raise NotFoundError(f"Unknown resumption token: {token}")
        pending = run.suspension
        run.suspension = None
        self._stopped.clear()
        self._current = run

        items = list(pending.items) if approved_items is None else [item for item in approved_items if item.strip()]
        if not items:
            run.log.append(assistant_turn("The proposed plan was rejected; nothing to do."))
            self._transition(run, OrchestratorState.CONCLUDING)
            return run
        edited = approved_items is not None and list(items) != list(pending.items)
        self._adopt_plan(run, pending.title, items, PlanAuthor.USER if edited else PlanAuthor.AGENT)
        self._transition(run, OrchestratorState.ACTING)
        return self.drive(run, max_steps=max_steps)

    def revise_plan(
        self,
        run: RunState,
        items: Sequence[str],
        *,
        created_by: PlanAuthor = PlanAuthor.USER,
    ) -> TaskPlan:
        """Replace the remaining items of the run's task with ``items``.

        Completed items are carried into the new revision unchanged.  The
        revision is persisted before the run continues.
        """
        if run.plan is None or run.task_id is None:
            raise InvalidStateError("The run has no adopted plan to revise")
        if run.state in (OrchestratorState.CONCLUDING, OrchestratorState.ABORTED):
            raise InvalidStateError(f"Cannot revise the plan of a run in state {run.state.value}")
        cleaned = [item.strip() for item in items if item.strip()]
        run.plan = revise_active_task(run.plan, cleaned, created_by)
        run.idle_turns = 0
        self._persist(run)
        revision = get_active_task(run.plan).active_revision_index
        LOGGER.info("Plan revised by %s to revision %d (%d remaining item(s))", created_by.value, revision, len(cleaned))
        if created_by is PlanAuthor.USER:
            listing = format_plan_items(get_active_items(run.plan))
            run.log.append(user_turn(f"I updated the plan. The plan items are now:\n\n{listing}"))
        return run.plan

    def stop(self) -> None:
        """Release the current sandbox and block further transitions."""
        self._stopped.set()
        run = self._current
        if run is None:
            return
        LOGGER.info("Stopping run %s in state %s", run.id, run.state.value)
        self._release(run)

    # ------------------------------------------------------------- stepping
    def step(self, run: RunState) -> OrchestratorState:
        """Run the handler for the current state once and apply its transition."""
        if run.finished or self._stopped.is_set():
            return run.state
        run.steps += 1
        handler = self._handlers[run.state]
        try:
            next_state = handler(run)
        except (InvalidStateError, SandboxUnavailableError) as error:
            next_state = self._abort(run, str(error))
        except (ProposerError, NotFoundError, GitError) as error:
            next_state = self._step_failed(run, error)
        else:
            run.proposer_failures = 0
        self._transition(run, next_state)
        return run.state

    def _transition(self, run: RunState, next_state: OrchestratorState) -> None:
        if next_state is not run.state:
            LOGGER.info("Run %s: %s -> %s", run.id, run.state.value, next_state.value)
            run.history.append((run.state, next_state))
        run.state = next_state
        if next_state in (OrchestratorState.CONCLUDING, OrchestratorState.ABORTED):
            self._release(run)

    def _step_failed(self, run: RunState, error: Exception) -> OrchestratorState:
        run.proposer_failures += 1
        LOGGER.warning(
            "Step %s failed (%d/%d): %s",
            run.state.value,
            run.proposer_failures,
            self.settings.max_proposer_failures,
            error,
        )
        run.log.append(assistant_turn(f"The {run.state.value} step failed and will be retried: {error}"))
        if run.proposer_failures >= self.settings.max_proposer_failures:
            return self._abort(run, f"Giving up after {run.proposer_failures} failed step(s): {error}")
        return run.state

    def _abort(self, run: RunState, reason: str) -> OrchestratorState:
        LOGGER.error("Run %s aborted: %s", run.id, reason)
        run.abort_reason = reason
        run.log.append(assistant_turn(f"Run aborted: {reason}"))
        return OrchestratorState.ABORTED

    def _release(self, run: RunState) -> None:
        session = run.session
        if session is None or session.state in (SessionState.STOPPED, SessionState.DELETED):
            return
        try:
            run.session = self.sessions.release(session)
        except Exception as error:  # noqa: BLE001 - the run outcome does not depend on release
            LOGGER.warning("Failed to release sandbox %s: %s", session.id, error)

    # -------------------------------------------------------------- helpers
    def _require_session(self, run: RunState) -> SandboxSession:
        if run.session is None:
            raise SandboxUnavailableError("No sandbox session is attached to this run")
        return run.session

    def _proposal_context(self, run: RunState) -> ProposalContext:
        plan_prompt = ""
        actions = set(self.registry.names())
        if run.plan is not None and run.task_id is not None:
            plan_prompt = format_plan_prompt(get_active_items(run.plan))
            actions.add(UPDATE_PLAN_ACTION_NAME)
        session = run.session
        return ProposalContext(
            request=run.request,
            plan_prompt=plan_prompt,
            codebase_tree=(session.codebase_tree or "") if session else "",
            available_actions=sorted(actions),
            dependencies_installed=session.dependencies_installed if session else None,
        )

    def _persist(self, run: RunState) -> None:
        if run.plan is None:
            return
        self.plan_store.write_plan(run.plan_ref, run.plan)
        LOGGER.info("Persisted plan for %s", run.plan_ref)

    def _adopt_plan(self, run: RunState, title: str, items: Sequence[str], created_by: PlanAuthor) -> None:
        parent = get_active_task(run.plan).id if run.plan is not None and run.plan.tasks else None
        run.plan = create_task(
            run.plan,
            run.request,
            title,
            list(items),
            parent_task_id=parent,
            created_by=created_by,
        )
        run.task_id = get_active_task(run.plan).id
        self._persist(run)
        # Execution starts from the request and the plan, not the planning chatter.
        run.archived.append(run.log)
        run.log = TurnLog([user_turn(run.request)])
        LOGGER.info("Adopted plan '%s' with %d item(s)", title, len(items))

    def _route_after_results(self, run: RunState, resume_state: OrchestratorState) -> OrchestratorState:
        turns = run.log.model_view()
        if self.budget.needs_summary(turns):
            run.return_state = resume_state
            return OrchestratorState.SUMMARIZING
        if self.heuristic.should_diagnose(turns):
            run.return_state = resume_state
            return OrchestratorState.DIAGNOSING
        return resume_state

    def _execute(self, run: RunState, turn: ConversationTurn, *, read_only: bool) -> int:
        """Screen, run and record ``turn``'s actions; return how many ran."""
        session = self._require_session(run)
        notice = ""
        if self.safety_filter is not None and turn.actions:
            turn, result = self.safety_filter.apply(turn)
            notice = result.notice()
        run.log.append(turn)

        git = self.sessions.git(session)
        context = ActionContext(session=session, git=git, timeout=self.settings.action_timeout)
        results = [self.registry.to_turn(action, outcome) for action, outcome in self.registry.execute_batch(turn.actions, context)]

        changed = self.host.get_changed_files(git) if results else []
        if read_only and changed:
            LOGGER.warning("Read-only step changed %d file(s); reverting", len(changed))
            git.stash_and_discard()
            results = [result.with_content(READ_ONLY_WARNING + result.content) for result in results]
        run.log.extend(results)
        if notice:
            run.log.append(user_turn(notice))
        if not read_only and changed:
            self._commit(run, git, changed)
        return len(results)

    def _commit(self, run: RunState, git: SandboxGit, changed: Sequence[str]) -> None:
        try:
            sha = self.host.commit_and_push(git, run.branch_name, self.settings.commit_message)
        except GitError as error:
            LOGGER.warning("Commit or push failed on %s: %s", run.branch_name, error)
            run.log.append(user_turn(f"Committing the changes failed: {error}"))
            return
        run.committed_files.update(changed)
        if sha is None or run.plan is None or run.task_id is None:
            return
        if get_pull_request_number(run.plan) is not None:
            return
        task = get_task(run.plan, run.task_id)
        pull_request = self.host.create_or_update_pull_request(
            branch=run.branch_name,
            base_branch=self.sessions.repository.base_branch or "main",
            title=task.title or run.request[:80],
            body=embed_plan(run.request, run.plan),
            draft=True,
        )
        run.plan = set_pull_request_number(run.plan, pull_request.number)
        self._persist(run)

    # --------------------------------------------------------------- states
    def _planning(self, run: RunState) -> OrchestratorState:
        allow_context = not run.context_gathered and self.settings.max_context_actions > 0
        proposal = self.agent.plan(self._proposal_context(run), run.log.model_view(), allow_context=allow_context)
        if proposal.needs_context and allow_context:
            return OrchestratorState.GATHERING_CONTEXT
        if not proposal.items:
            raise ProposerError("The planner returned no plan items")

        listing = "\n".join(f"{position}. {item}" for position, item in enumerate(proposal.items))
        run.log.append(assistant_turn(f"Proposed plan: {proposal.title}\n{listing}"))
        if self.settings.require_plan_approval:
            session = run.session
            run.suspension = Suspension(
                token=uuid4().hex,
                request=run.request,
                title=proposal.title,
                items=tuple(proposal.items),
                session_id=session.id if session else None,
                branch_name=run.branch_name,
            )
            self._suspended[run.suspension.token] = run
            LOGGER.info("Run %s suspended for plan approval", run.id)
            return OrchestratorState.SUSPENDED

        self._adopt_plan(run, proposal.title, proposal.items, PlanAuthor.AGENT)
        return OrchestratorState.ACTING

    def _gathering_context(self, run: RunState) -> OrchestratorState:
        turn = self.agent.propose(ProposalMode.GATHER_CONTEXT, self._proposal_context(run), run.log.model_view())
        if not turn.actions:
            run.log.append(turn)
            run.context_gathered = True
            return OrchestratorState.PLANNING

        run.context_actions += self._execute(run, turn, read_only=True)
        resume_state = OrchestratorState.GATHERING_CONTEXT
        if run.context_actions >= self.settings.max_context_actions:
            LOGGER.info("Context gathering reached %d action(s)", run.context_actions)
            run.context_gathered = True
            resume_state = OrchestratorState.PLANNING
        return self._route_after_results(run, resume_state)

    def _acting(self, run: RunState) -> OrchestratorState:
        turn = self.agent.propose(ProposalMode.ACT, self._proposal_context(run), run.log.model_view())
        if not turn.actions:
            run.log.append(turn)
            run.idle_turns += 1
            return OrchestratorState.VERIFYING
        run.idle_turns = 0
        update = next((action for action in turn.actions if action.name == UPDATE_PLAN_ACTION_NAME), None)
        if update is not None:
            return self._update_plan(run, turn.with_actions([update]), update)
        self._execute(run, turn, read_only=False)
        return self._route_after_results(run, OrchestratorState.ACTING)

    def _update_plan(self, run: RunState, turn: ConversationTurn, action: ActionRequest) -> OrchestratorState:
        if run.plan is None or run.task_id is None:
            raise InvalidStateError("Updating the plan requires an adopted plan")
        run.log.append(turn)
        reasoning = str(action.arguments.get("reasoning") or turn.content)
        items = self.agent.update_plan(
            self._proposal_context(run),
            reasoning,
            get_active_items(run.plan),
            run.log.model_view(),
        )
        self.revise_plan(run, items, created_by=PlanAuthor.AGENT)
        listing = format_plan_items(get_active_items(run.plan))
        run.log.append(
            result_turn(
                action,
                f"Successfully updated the plan. The complete updated plan items are as follow:\n\n{listing}",
                ActionStatus.SUCCESS,
            )
        )
        if not get_remaining_items(run.plan):
            return OrchestratorState.REVIEWING
        return self._route_after_results(run, OrchestratorState.ACTING)

    def _verifying(self, run: RunState) -> OrchestratorState:
        if run.plan is None or run.task_id is None:
            raise InvalidStateError("Verification requires an adopted plan")
        item = get_current_item(run.plan)
        if item is None:
            return OrchestratorState.REVIEWING

        verdict = self.agent.verify(self._proposal_context(run), item, run.log.model_view())
        if verdict.completed:
            run.plan = complete_item(run.plan, run.task_id, item.index, verdict.summary or None)
            self._persist(run)
            run.idle_turns = 0
            run.log.append(user_turn(f"Plan item {item.index} is complete: {item.text}"))
            if get_remaining_items(run.plan):
                return OrchestratorState.ACTING
            return OrchestratorState.REVIEWING

        run.log.append(user_turn(f"Plan item {item.index} is not complete yet. {verdict.reasoning}".strip()))
        if run.idle_turns >= self.settings.max_idle_turns:
            LOGGER.warning(
                "No actions for %d consecutive turn(s) on item %d; moving on to review",
                run.idle_turns,
                item.index,
            )
            return OrchestratorState.REVIEWING
        return OrchestratorState.ACTING

    def _reviewing(self, run: RunState) -> OrchestratorState:
        if run.plan is None or run.task_id is None:
            raise InvalidStateError("Review requires an adopted plan")
        outcome = self.agent.review(
            self._proposal_context(run),
            run.log.model_view(),
            changed_files=sorted(run.committed_files),
            review_count=run.review_count,
        )
        if not outcome.complete and outcome.new_items and run.review_count < self.settings.max_review_count:
            run.plan = add_review_items(run.plan, outcome.new_items)
            run.review_count += 1
            run.idle_turns = 0
            self._persist(run)
            run.log.append(user_turn(f"Review added {len(outcome.new_items)} plan item(s)."))
            return OrchestratorState.ACTING

        run.plan = complete_task(run.plan, run.task_id, outcome.summary or None)
        self._persist(run)
        number = get_pull_request_number(run.plan)
        if number is not None:
            task = get_task(run.plan, run.task_id)
            self.host.create_or_update_pull_request(
                branch=run.branch_name,
                base_branch=self.sessions.repository.base_branch or "main",
                title=task.title or run.request[:80],
                body=embed_plan(run.request, run.plan),
                draft=False,
                number=number,
            )
        if outcome.summary:
            run.log.append(assistant_turn(outcome.summary))
        return OrchestratorState.CONCLUDING

    def _summarizing(self, run: RunState) -> OrchestratorState:
        context = self._proposal_context(run)
        self.budget.summarize(run.log, lambda turns: self.agent.summarize(context, turns))
        return self._resume_from_detour(run)

    def _diagnosing(self, run: RunState) -> OrchestratorState:
        turns = run.log.model_view()
        failed = last_failed_actions(turns)
        diagnosis = self.agent.diagnose(self._proposal_context(run), failed, turns)
        action = ActionRequest(name=DIAGNOSE_ACTION_NAME, arguments={"failed_actions": len(failed)})
        run.log.append(assistant_turn("Diagnosing the recent failures.", [action]))
        run.log.append(result_turn(action, diagnosis, ActionStatus.SUCCESS, is_diagnosis=True))
        return self._resume_from_detour(run)

    def _resume_from_detour(self, run: RunState) -> OrchestratorState:
        state = run.return_state or OrchestratorState.ACTING
        run.return_state = None
        return state


__all__ = [
    "OrchestratorSettings",
    "OrchestratorState",
    "Orchestrator",
    "READ_ONLY_WARNING",
    "RunState",
    "Suspension",
    "TERMINAL_STATES",
]
