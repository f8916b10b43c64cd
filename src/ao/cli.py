"""CLI commands for configuring the engine, inspecting plans, and running requests."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Optional

import typer

from .actions.builtin import default_registry
from .agent import LLMAgent, LLMSafetyClassifier
from .config import (
    DEFAULT_CONFIG_NAME,
    ConfigError,
    EngineConfig,
    copy_config_template,
    load_config,
    write_config,
)
from .context import ContextBudget, calculate_budget
from .conversation import load_turns
from .diagnosis import ErrorDiagnosisHeuristic
from .host import LocalRepositoryHost
from .models import LLMClient, ResponsesClient
from .orchestrator import Orchestrator, OrchestratorState, RunState
from .phases.base import PhaseContext
from .planning.durable import SqlitePlanStore, render_plan_block
from .planning.render import format_task_plan
from .resilience import CircuitBreakerRegistry
from .router import PhaseRouter
from .safety import CommandSafetyFilter, is_safe_read_command
from .sandbox import LocalSandboxProvider, SandboxSessionManager, SessionEvent, TargetRepository

APP_HELP = "Task orchestration engine for autonomous coding agents."
DEFAULT_PLAN_REF = "default"

app = typer.Typer(help=APP_HELP)

CONFIG_OPTION = typer.Option(
    DEFAULT_CONFIG_NAME,
    "--config",
    "-c",
    help="Path to the engine configuration file.",
)


def _load(config: str) -> EngineConfig:
    try:
        engine_config = load_config(Path(config))
    except ConfigError as error:
        typer.echo(str(error))
        raise typer.Exit(code=1) from error
    logging.basicConfig(
        level=getattr(logging, engine_config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return engine_config


def _echo_event(event: SessionEvent) -> None:
    detail = f" :: {event.detail}" if event.detail else ""
    typer.echo(f"[sandbox] {event.action} {event.status.value}{detail}")


def _build_client(engine_config: EngineConfig) -> LLMClient:
    try:
        return ResponsesClient(model=engine_config.model, timeout=engine_config.model_timeout)
    except ValueError as error:
        typer.echo(f"Failed to initialise the model client: {error}")
        raise typer.Exit(code=1) from error


def build_orchestrator(
    engine_config: EngineConfig,
    repo: Path,
    client: LLMClient,
    *,
    plan_store: SqlitePlanStore,
    base_branch: Optional[str] = None,
) -> Orchestrator:
    """Wire the LLM-backed agent, the local sandbox and the stores together."""
    breakers = CircuitBreakerRegistry(engine_config.breaker_config())
    router = PhaseRouter(
        client=client,
        context=PhaseContext(logs_root=engine_config.logs_path, model=engine_config.model),
    )
    sandbox_cfg = engine_config.section("sandbox")
    sessions = SandboxSessionManager(
        LocalSandboxProvider(engine_config.sandbox_root),
        TargetRepository(
            url=repo.resolve().as_posix(),
            name=str(sandbox_cfg.get("repo_dir") or "repo"),
            base_branch=base_branch,
        ),
        image=str(sandbox_cfg.get("image") or "ao-sandbox"),
        command_timeout=float(sandbox_cfg.get("command_timeout") or 60),
        event_sink=_echo_event,
    )
    actions_cfg = engine_config.section("actions")
    registry = default_registry(
        max_workers=int(actions_cfg["max_workers"]),
        output_start=int(actions_cfg["max_output_start"]),
        output_end=int(actions_cfg["max_output_end"]),
    )
    safety_cfg = engine_config.section("safety")
    safety_filter = None
    if safety_cfg.get("enabled"):
        safety_filter = CommandSafetyFilter(
            LLMSafetyClassifier(router, breakers),
            timeout=float(safety_cfg["timeout"]),
            max_workers=int(safety_cfg["max_workers"]),
        )
    diagnosis_cfg = engine_config.section("diagnosis")
    resilience_cfg = engine_config.section("resilience")
    return Orchestrator(
        agent=LLMAgent(router, breakers),
        registry=registry,
        sessions=sessions,
        host=LocalRepositoryHost(
            retries=int(resilience_cfg["retries"]),
            retry_delay=float(resilience_cfg["retry_delay"]),
        ),
        plan_store=plan_store,
        budget=ContextBudget(engine_config.budget_settings()),
        heuristic=ErrorDiagnosisHeuristic(
            window=int(diagnosis_cfg["window"]),
            threshold=float(diagnosis_cfg["error_threshold"]),
        ),
        safety_filter=safety_filter,
        settings=engine_config.orchestrator_settings(),
    )


def _print_run(run: RunState) -> None:
    typer.echo(f"Final state: {run.state.value}")
    if run.abort_reason:
        typer.echo(f"Reason: {run.abort_reason}")
    if run.committed_files:
        typer.echo("Changed files:")
        for path in sorted(run.committed_files):
            typer.echo(f"  - {path}")
    if run.plan is not None:
        typer.echo(format_task_plan(run.plan))


@app.command()
def init(
    config: str = CONFIG_OPTION,
    force: bool = typer.Option(False, "--force", help="Overwrite an existing configuration file."),
) -> None:
    """Write the default configuration file."""
    config_path = Path(config)
    if config_path.exists() and not force:
        typer.echo(f"Configuration already exists at {config_path}; use --force to overwrite.")
        raise typer.Exit(code=1)
    write_config(config_path, copy_config_template())
    typer.echo(f"Wrote default configuration to {config_path}.")


@app.command()
def status(
    config: str = CONFIG_OPTION,
    ref: Optional[str] = typer.Option(None, "--ref", "-r", help="Plan reference to display."),
) -> None:
    """Validate the configuration and summarise the stored plans."""
    engine_config = _load(config)
    typer.echo(f"Config: {config} (model {engine_config.model})")
    budget = engine_config.budget_settings()
    typer.echo(f"Budget: {budget.max_tokens} tokens, keep last {budget.keep_last_turns} turn(s)")
    with SqlitePlanStore(engine_config.db_path) as store:
        refs = store.list_refs()
        if not refs:
            typer.echo("No stored plans.")
            return
        typer.echo("Stored plans:")
        for item in refs:
            typer.echo(f"- {item}")
        if ref:
            plan = store.read_plan(ref)
            typer.echo(format_task_plan(plan) if plan else f"No plan stored for '{ref}'.")


@app.command("show-plan")
def show_plan(
    ref: str = typer.Argument(..., help="Plan reference."),
    config: str = CONFIG_OPTION,
    block: bool = typer.Option(False, "--block", help="Print the durable plan block instead of the overview."),
) -> None:
    """Print a stored plan."""
    engine_config = _load(config)
    with SqlitePlanStore(engine_config.db_path) as store:
        plan = store.read_plan(ref)
    if plan is None:
        typer.echo(f"No plan stored for '{ref}'.")
        raise typer.Exit(code=1)
    typer.echo(render_plan_block(plan) if block else format_task_plan(plan))


@app.command()
def tokens(
    transcript: Path = typer.Argument(..., help="JSON file holding a list of conversation turns."),
    config: str = CONFIG_OPTION,
    exclude_hidden: bool = typer.Option(False, "--exclude-hidden", help="Skip hidden turns."),
    keep_last: int = typer.Option(0, "--keep-last", help="Leave the last N turns out of the count."),
) -> None:
    """Estimate the token budget of a transcript."""
    engine_config = _load(config)
    try:
        payload = json.loads(transcript.read_text(encoding="utf-8"))
        turns = load_turns(payload)
    except (OSError, ValueError) as error:
        typer.echo(f"Failed to read transcript: {error}")
        raise typer.Exit(code=1) from error
    settings = engine_config.budget_settings()
    total = calculate_budget(
        turns,
        exclude_hidden=exclude_hidden,
        exclude_from_end=keep_last,
        settings=settings,
    )
    typer.echo(f"Turns: {len(turns)}")
    typer.echo(f"Estimated tokens: {total} / {settings.max_tokens}")
    if total > settings.max_tokens:
        typer.echo("Over budget: the next step would summarize.")


@app.command("check-command")
def check_command(command: str = typer.Argument(..., help="Shell command to check.")) -> None:
    """Report whether a shell command is a recognised read-only command."""
    if is_safe_read_command(command):
        typer.echo("safe read: a recognised read-only command, still sent to the safety classifier")
    else:
        typer.echo("needs review: the command may have side effects")


@app.command()
def run(
    request: str = typer.Argument(..., help="What the agent should do."),
    repo: Path = typer.Option(..., "--repo", help="Local git repository to work on."),
    config: str = CONFIG_OPTION,
    ref: str = typer.Option(DEFAULT_PLAN_REF, "--ref", "-r", help="Plan reference to persist under."),
    session: Optional[str] = typer.Option(None, "--session", help="Sandbox session to resume."),
    base_branch: Optional[str] = typer.Option(None, "--base-branch", help="Branch to start from."),
    approve: bool = typer.Option(False, "--yes", "-y", help="Approve the proposed plan without asking."),
    max_steps: int = typer.Option(500, "--max-steps", help="Upper bound on orchestrator steps."),
) -> None:
    """Run a request end to end against a local repository."""
    engine_config = _load(config)
    if not (repo / ".git").exists():
        raise typer.BadParameter(f"Not a git repository: {repo}", param_hint="--repo")

    with SqlitePlanStore(engine_config.db_path) as store:
        orchestrator = build_orchestrator(
            engine_config,
            repo,
            _build_client(engine_config),
            plan_store=store,
            base_branch=base_branch,
        )
        result = orchestrator.run(request, plan_ref=ref, session_id=session, max_steps=max_steps)
        if result.state is OrchestratorState.SUSPENDED and result.suspension is not None:
            typer.echo(f"Proposed plan: {result.suspension.title}")
            for position, item in enumerate(result.suspension.items):
                typer.echo(f"  {position}. {item}")
            if not approve and not typer.confirm("Approve this plan?", default=True):
                items: List[str] = []
            else:
                items = list(result.suspension.items)
            result = orchestrator.resume(result.suspension, items, max_steps=max_steps)
    _print_run(result)
    if result.state is OrchestratorState.ABORTED:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
