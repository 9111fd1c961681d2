"""Command line interface for managing flowgate workflows and runs."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar

import typer
import yaml
from pydantic import ValidationError

from .config import FlowgateConfig, load_config
from .connectors import default_connectors
from .contracts import HumanDecision, RunStatus, Workflow
from .engine import WorkflowEngine
from .errors import FlowgateError
from .graph import validate_workflow
from .patching import apply_operations
from .persistence import WorkflowRepository, get_repository
from .templating import infer_input_schema
from .steps import default_executors

T = TypeVar("T")

app = typer.Typer(help="CLI for flowgate workflows")

# Command groups
workflow_app = typer.Typer(help="Commands for managing workflows")
run_app = typer.Typer(help="Commands for starting and reviewing runs")

app.add_typer(workflow_app, name="workflow")
app.add_typer(run_app, name="run")


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None, "--config", help="Path to a flowgate YAML config file"
    ),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging level"),
) -> None:
    """flowgate CLI entry point."""
    settings = load_config(str(config) if config else None)
    logging.basicConfig(
        level=(log_level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = settings


def _settings(ctx: typer.Context) -> FlowgateConfig:
    return ctx.obj if isinstance(ctx.obj, FlowgateConfig) else load_config()


def _run(ctx: typer.Context, action: Callable[[WorkflowRepository], Awaitable[T]]) -> T:
    """Run ``action`` against a freshly connected repository, mapping errors to exit codes."""
    settings = _settings(ctx)

    async def _main() -> T:
        repository = get_repository(config=settings)
        await repository.connect()
        try:
            return await action(repository)
        finally:
            await repository.close()

    try:
        return asyncio.run(_main())
    except FlowgateError as e:
        typer.secho(str(e), fg=typer.colors.RED)
        raise typer.Exit(code=1)


def _load_document(path: Path) -> Any:
    # YAML is a superset of JSON, so one loader covers both formats.
    with open(path) as f:
        return yaml.safe_load(f)


def _parse_json_option(value: Optional[str], option: str) -> Optional[Any]:
    if value is None:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        typer.secho(f"{option} is not valid JSON: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


async def _with_engine(
    repo: WorkflowRepository,
    settings: FlowgateConfig,
    action: Callable[[WorkflowEngine], Awaitable[T]],
) -> T:
    connectors = default_connectors()
    engine = WorkflowEngine(
        repo, executors=default_executors(settings, connectors=connectors), config=settings
    )
    try:
        return await action(engine)
    finally:
        await connectors.aclose()


# ---------------------------------------------------------------------------
# workflow commands


@workflow_app.command("import")
def workflow_import(
    ctx: typer.Context,
    path: Path,
    force: bool = typer.Option(False, help="Save even if validation reports errors"),
) -> None:
    """
    Import a workflow definition from a JSON or YAML file.

    The workflow is validated first: warnings are printed, and errors stop the
    import unless --force is given.

    Example:
        flowgate workflow import ./support_triage.yaml
    """
    if not path.exists():
        typer.secho("Specified path does not exist", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    try:
        workflow = Workflow.model_validate(_load_document(path))
    except (ValidationError, yaml.YAMLError) as e:
        typer.secho(f"Invalid workflow file: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    report = validate_workflow(workflow)
    for warning in report.warnings:
        typer.secho(f"warning: {warning}", fg=typer.colors.YELLOW)
    for error in report.errors:
        typer.secho(f"error: {error}", fg=typer.colors.RED)
    if not report.ok and not force:
        typer.echo("Workflow not imported (use --force to import anyway)")
        raise typer.Exit(code=1)

    _run(ctx, lambda repo: repo.save_workflow(workflow))
    typer.echo(f"Imported workflow {workflow.id} ({workflow.name})")


@workflow_app.command("list")
def workflow_list(ctx: typer.Context) -> None:
    """List stored workflows as tab-separated id, name and step count."""
    workflows = _run(ctx, lambda repo: repo.list_workflows())
    if not workflows:
        typer.echo("No workflows found")
        return
    for wf in workflows:
        typer.echo(f"{wf.id}\t{wf.name}\t{len(wf.steps)} steps")


async def _require_workflow(repo: WorkflowRepository, workflow_id: str) -> Workflow:
    workflow = await repo.get_workflow(workflow_id)
    if workflow is None:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)
    return workflow


@workflow_app.command("show")
def workflow_show(
    ctx: typer.Context,
    workflow_id: str,
    inputs: bool = typer.Option(
        False, "--inputs", help="Also list the input fields the workflow expects"
    ),
) -> None:
    """Print a workflow's steps and edges."""
    wf = _run(ctx, lambda repo: _require_workflow(repo, workflow_id))
    typer.echo(f"Workflow {wf.id}: {wf.name}")
    if wf.description:
        typer.echo(wf.description)
    for step in wf.steps:
        typer.echo(f"- {step.id} [{step.type.value}] {step.name}")
    for edge in wf.edges:
        label = f" ({edge.label})" if edge.label else ""
        typer.echo(f"  {edge.source} -> {edge.target}{label}")
    if inputs:
        typer.echo("Inputs:")
        for field in infer_input_schema(wf):
            required = "" if field.required else " (optional)"
            typer.echo(f"  {field.name}: {field.type}{required}")


@workflow_app.command("validate")
def workflow_validate(ctx: typer.Context, workflow_id: str) -> None:
    """Check a stored workflow; exits non-zero when it has errors."""
    wf = _run(ctx, lambda repo: _require_workflow(repo, workflow_id))
    report = validate_workflow(wf)
    for warning in report.warnings:
        typer.secho(f"warning: {warning}", fg=typer.colors.YELLOW)
    for error in report.errors:
        typer.secho(f"error: {error}", fg=typer.colors.RED)
    if not report.ok:
        raise typer.Exit(code=1)
    typer.echo("Workflow is valid")


@workflow_app.command("patch")
def workflow_patch(
    ctx: typer.Context,
    workflow_id: str,
    operations_file: Path,
    dry_run: bool = typer.Option(False, help="Show the result without saving it"),
) -> None:
    """
    Apply a batch of graph edit operations to a stored workflow.

    The operations file holds a list of operations (or an object with an
    "operations" list). Each one is reported as applied or rejected.

    Example:
        flowgate workflow patch wf-123 ./ops.json --dry-run
    """
    document = _load_document(operations_file)
    operations = document.get("operations", []) if isinstance(document, dict) else document
    if not isinstance(operations, list):
        typer.secho("Operations file must contain a list of operations", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    async def _patch(repo: WorkflowRepository):
        workflow = await _require_workflow(repo, workflow_id)
        result = apply_operations(workflow, operations)
        if not dry_run:
            await repo.save_workflow(result.workflow)
        return result

    result = _run(ctx, _patch)
    for entry in result.audit:
        line = f"{entry.status}\t{entry.op.get('op', '?')}"
        if entry.reason:
            line += f"\t{entry.reason}"
        typer.echo(line)
    typer.echo(
        "diff: " + ", ".join(f"{k}={v}" for k, v in result.diff.model_dump().items())
    )
    for warning in result.validation.warnings:
        typer.secho(f"warning: {warning}", fg=typer.colors.YELLOW)
    for error in result.validation.errors:
        typer.secho(f"error: {error}", fg=typer.colors.RED)
    typer.echo("Dry run: workflow not saved" if dry_run else "Workflow saved")


# ---------------------------------------------------------------------------
# run commands


@run_app.command("start")
def run_start(
    ctx: typer.Context,
    workflow_id: str,
    input: Optional[str] = typer.Option(None, "--input", help="Run input as a JSON object"),
) -> None:
    """
    Start a run and wait until it completes, fails or pauses for review.

    Example:
        flowgate run start wf-123 --input '{"ticket": "Printer on fire"}'
    """
    run_input = _parse_json_option(input, "--input") or {}
    settings = _settings(ctx)

    async def _start(engine: WorkflowEngine):
        run = await engine.start_run(workflow_id, run_input)
        await engine.drain()
        return await engine.get_run(run.id)

    run = _run(ctx, lambda repo: _with_engine(repo, settings, _start))
    typer.echo(f"Run {run.id}: {run.status.value}")
    if run.error:
        typer.echo(f"Error: {run.error}")


@run_app.command("list")
def run_list(
    ctx: typer.Context,
    status: Optional[RunStatus] = typer.Option(None, help="Only runs with this status"),
) -> None:
    """List runs, newest first."""
    runs = _run(ctx, lambda repo: repo.list_runs(status=status))
    if not runs:
        typer.echo("No runs found")
        return
    for run in runs:
        typer.echo(f"{run.id}\t{run.workflow_name}\t{run.status.value}\t{run.created_at}")


@run_app.command("show")
def run_show(ctx: typer.Context, run_id: str) -> None:
    """Show a run's status, per-step states and token usage."""

    async def _show(repo: WorkflowRepository):
        run = await repo.get_run(run_id)
        if run is None:
            typer.echo("Run not found")
            raise typer.Exit(code=1)
        return run

    run = _run(ctx, _show)
    typer.echo(f"Run {run.id}: {run.status.value}")
    typer.echo(f"Workflow: {run.workflow_name} ({run.workflow_id})")
    if run.error:
        typer.echo(f"Error: {run.error}")
    for state in run.step_states.values():
        typer.echo(
            f"- {state.step_id}: {state.status.value}"
            + (
                f" ({state.started_at} -> {state.completed_at})"
                if state.started_at or state.completed_at
                else ""
            )
        )
    if run.usage is not None:
        total = run.usage.total
        typer.echo(
            f"Tokens: {total.total_tokens} "
            f"(prompt {total.prompt_tokens}, completion {total.completion_tokens}), "
            f"estimated cost ${run.usage.estimated_cost_usd:.6f}"
        )


@run_app.command("trace")
def run_trace(ctx: typer.Context, run_id: str) -> None:
    """Print a run's trace events in order."""
    events = _run(ctx, lambda repo: repo.list_trace(run_id))
    if not events:
        typer.echo("No trace events found")
        return
    for event in events:
        step = f" {event.step_id}" if event.step_id else ""
        typer.echo(f"{event.timestamp.isoformat()}\t{event.type.value}{step}")


@run_app.command("resume")
def run_resume(
    ctx: typer.Context,
    run_id: str,
    action: str = typer.Option(..., help="approve, edit or reject"),
    comment: Optional[str] = typer.Option(None, help="Reviewer comment"),
    edited_output: Optional[str] = typer.Option(
        None, "--edited-output", help="Replacement output as a JSON object"
    ),
    target_step: Optional[str] = typer.Option(
        None, "--target-step", help="Step whose output the edit replaces"
    ),
) -> None:
    """
    Resume a run paused for review.

    Example:
        flowgate run resume 1f0e... --action edit --edited-output '{"result": "Fixed"}'
    """
    try:
        decision = HumanDecision(
            action=action,
            comment=comment,
            edited_output=_parse_json_option(edited_output, "--edited-output"),
            target_step_id=target_step,
        )
    except ValidationError as e:
        typer.secho(f"Invalid decision: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    settings = _settings(ctx)

    async def _resume(engine: WorkflowEngine):
        run = await engine.resume_run(run_id, decision)
        await engine.drain()
        return await engine.get_run(run.id)

    run = _run(ctx, lambda repo: _with_engine(repo, settings, _resume))
    typer.echo(f"Run {run.id}: {run.status.value}")
    if run.error:
        typer.echo(f"Error: {run.error}")


@run_app.command("reconcile")
def run_reconcile(ctx: typer.Context) -> None:
    """Mark runs left running by a previous process as failed."""
    settings = _settings(ctx)

    stale = _run(
        ctx,
        lambda repo: _with_engine(repo, settings, lambda engine: engine.reconcile_stale_runs()),
    )
    typer.echo(f"Reconciled {len(stale)} stale runs")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
