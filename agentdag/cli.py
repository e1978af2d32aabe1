"""Command line interface for validating and running agentdag workflows."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer

from agentdag import AgentRegistry, WorkflowEngine, get_repository
from agentdag.config import AgentDagConfig, load_config
from agentdag.errors import AgentDagError, WorkflowValidationError
from agentdag.loader import load_workflow_file
from agentdag.models import ExecutionResult, ExecutionStatus
from agentdag.providers import load_providers
from agentdag.status import estimate, summarize
from agentdag.validation import validate

app = typer.Typer(help="CLI for agentdag workflows")

# Command groups
workflow_app = typer.Typer(help="Commands for workflow definitions")
execution_app = typer.Typer(help="Commands for inspecting executions")

app.add_typer(workflow_app, name="workflow")
app.add_typer(execution_app, name="execution")

DatabaseUrlOption = typer.Option(
    None, "--database-url", help="Execution store URL (defaults to configuration)"
)


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, "--config", help="Path to agentdag.yaml"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging level"),
) -> None:
    """agentdag CLI entry point."""
    settings = load_config(str(config) if config else None)
    logging.basicConfig(
        level=(log_level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = settings


def _settings(ctx: typer.Context) -> AgentDagConfig:
    return ctx.obj if isinstance(ctx.obj, AgentDagConfig) else load_config()


def _build_engine(
    ctx: typer.Context, providers: Optional[str], database_url: Optional[str]
) -> WorkflowEngine:
    settings = _settings(ctx)
    registry = AgentRegistry()
    if providers:
        try:
            load_providers(providers, registry)
        except (ImportError, ValueError) as exc:
            typer.secho(f"Cannot load providers: {exc}", fg=typer.colors.RED)
            raise typer.Exit(code=1)
    repository = get_repository(database_url, settings)
    return WorkflowEngine(registry, repository, settings.engine)


def _echo_result(result: ExecutionResult) -> None:
    colour = (
        typer.colors.GREEN
        if result.status == ExecutionStatus.COMPLETED
        else typer.colors.RED
    )
    typer.secho(f"Execution {result.execution_id}: {result.status.value}", fg=colour)
    for step_id, step in result.step_results.items():
        line = f"- {step_id}: {step.status.value} (attempts={step.attempts})"
        if step.error:
            line += f" {step.error}"
        typer.echo(line)
    typer.echo(f"Tokens used: {result.final_context.metadata.total_tokens}")


@workflow_app.command("validate")
def workflow_validate(ctx: typer.Context, path: Path) -> None:
    """
    Check a workflow definition for structural errors.

    Reports missing identifiers, unknown dependencies and dependency cycles,
    plus non-fatal warnings.

    Example:
        agentdag workflow validate ./workflows/site.yaml
    """
    settings = _settings(ctx)
    try:
        workflow = load_workflow_file(path, settings.engine)
    except WorkflowValidationError as exc:
        for error in exc.errors:
            typer.secho(f"error: {error}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    except OSError as exc:
        typer.secho(f"Cannot read {path}: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    report = validate(workflow, settings.engine.large_workflow_threshold)
    for error in report.errors:
        typer.secho(f"error: {error}", fg=typer.colors.RED)
    for warning in report.warnings:
        typer.secho(f"warning: {warning}", fg=typer.colors.YELLOW)
    if not report.valid:
        raise typer.Exit(code=1)
    typer.echo(f"Workflow {workflow.id} is valid ({len(workflow.steps)} steps)")
    forecast = estimate(workflow)
    typer.echo(
        f"Estimate: {forecast.total_tokens} tokens, {forecast.duration_ms}ms, "
        f"cost {forecast.cost:.2f}, agents: {', '.join(forecast.agents)}"
    )


@workflow_app.command("run")
def workflow_run(
    ctx: typer.Context,
    path: Path,
    providers: str = typer.Option(
        ..., "--providers", help="Module exposing PROVIDERS or register(registry)"
    ),
    context: Optional[str] = typer.Option(
        None, "--context", help="JSON object used as initial context data"
    ),
    database_url: Optional[str] = DatabaseUrlOption,
) -> None:
    """
    Execute a workflow definition and wait for it to finish.

    Example:
        agentdag workflow run ./site.yaml --providers myproject.agents
        agentdag workflow run ./site.yaml --providers myproject.agents --context '{"topic": "dags"}'
    """
    engine = _build_engine(ctx, providers, database_url)
    try:
        workflow = engine.load_workflow_file(path)
    except WorkflowValidationError as exc:
        for error in exc.errors:
            typer.secho(f"error: {error}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    try:
        initial = json.loads(context) if context else None
    except json.JSONDecodeError as exc:
        typer.secho(f"Invalid --context JSON: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    result = asyncio.run(engine.execute(workflow.id, initial))
    _echo_result(result)
    if result.status != ExecutionStatus.COMPLETED:
        raise typer.Exit(code=1)


@execution_app.command("list")
def execution_list(
    ctx: typer.Context,
    workflow_id: Optional[str] = typer.Option(None, "--workflow-id"),
    status: Optional[ExecutionStatus] = typer.Option(None, "--status"),
    limit: Optional[int] = typer.Option(
        None, "--limit", min=1, help="Show at most N executions"
    ),
    database_url: Optional[str] = DatabaseUrlOption,
) -> None:
    """
    List persisted executions with their status.

    Example:
        agentdag execution list --status failed --limit 20
        # Output: exec-1f0c...    site-build    failed
    """
    repository = get_repository(database_url, _settings(ctx))
    executions = asyncio.run(repository.list_executions(workflow_id, status, limit))
    if not executions:
        typer.echo("No executions found")
        return
    for execution in executions:
        typer.echo(f"{execution.id}\t{execution.workflow_id}\t{execution.status.value}")


@execution_app.command("show")
def execution_show(
    ctx: typer.Context,
    execution_id: str,
    database_url: Optional[str] = DatabaseUrlOption,
) -> None:
    """
    Show per-step detail for one execution.

    Example:
        agentdag execution show exec-1f0c...
        # Output: Execution exec-1f0c... (site-build): failed
        #         - design: succeeded attempts=1
        #         - deploy: failed attempts=3 error=...
    """
    repository = get_repository(database_url, _settings(ctx))
    execution = asyncio.run(repository.load_execution(execution_id))
    if execution is None:
        typer.echo("Execution not found")
        raise typer.Exit(code=1)

    summary = summarize(execution)
    typer.echo(
        f"Execution {execution.id} ({execution.workflow_id}): {execution.status.value}"
    )
    typer.echo(
        f"Progress: {summary.completed_steps}/{summary.total_steps} steps, "
        f"{summary.total_tokens} tokens, {summary.duration_ms}ms"
    )
    if execution.error:
        typer.echo(f"Error: {execution.error}")
    for step_id, state in execution.steps.items():
        line = f"- {step_id}: {state.status.value} attempts={state.attempts}"
        if state.error:
            line += f" error={state.error}"
        typer.echo(line)


@execution_app.command("resume")
def execution_resume(
    ctx: typer.Context,
    execution_id: str,
    workflow: Path = typer.Option(..., "--workflow", help="Workflow definition file"),
    providers: str = typer.Option(..., "--providers"),
    database_url: Optional[str] = DatabaseUrlOption,
) -> None:
    """
    Resume an unfinished execution; succeeded steps are not re-run.

    Example:
        agentdag execution resume exec-1f0c... --workflow ./site.yaml --providers myproject.agents
    """
    engine = _build_engine(ctx, providers, database_url)
    try:
        engine.load_workflow_file(workflow)
        result = asyncio.run(engine.resume(execution_id))
    except (AgentDagError, ValueError) as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    _echo_result(result)
    if result.status != ExecutionStatus.COMPLETED:
        raise typer.Exit(code=1)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
