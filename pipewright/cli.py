"""Command line interface for running and steering pipewright workflows."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

import typer

from .checkpoint import CheckpointManager
from .config import load_config, load_dotenv_defaults
from .contracts import ConfigurationError, WorkflowType, WorkingDirectoryError
from .events import EventLog
from .messages import (
    pause_workflow,
    request_cancel,
    root_workflow_id,
    send_instruction,
    unpause_workflow,
)
from .orchestrator import open_orchestrator
from .persistence import WorkflowRecord, WorkflowRepository, get_repository
from .vcs import GitAdapter

T = TypeVar("T")

app = typer.Typer(help="CLI for pipewright pipelines")

workflow_app = typer.Typer(help="Commands for managing workflows")
app.add_typer(workflow_app, name="workflow")


@app.callback()
def main(
    log_level: str = typer.Option("INFO", help="Logging level"),
    env_file: Path = typer.Option(Path(".env"), help="Dotenv file merged into the environment"),
) -> None:
    """pipewright CLI entry point."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        force=True,
    )
    load_dotenv_defaults(env_file)


def _with_repository(action: Callable[[WorkflowRepository], Awaitable[T]]) -> T:
    async def runner() -> T:
        repository = get_repository()
        try:
            return await action(repository)
        finally:
            await repository.close()

    return asyncio.run(runner())


def _require_workflow(record: Optional[WorkflowRecord], workflow_id: int) -> WorkflowRecord:
    if record is None:
        typer.secho(f"Workflow {workflow_id} not found", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    return record


@app.command("run")
def run(
    workflow_id: int,
    wait: bool = typer.Option(True, help="Wait for scheduled fix workflows to finish"),
) -> None:
    """
    Execute a persisted workflow through its stage sequence.

    Example:
        pipewright workflow create feature --working-dir ./checkout --task "Add login"
        pipewright run 1
    """

    async def runner():
        async with open_orchestrator(load_config()) as orchestrator:
            return await orchestrator.run(workflow_id, wait=wait)

    try:
        result = asyncio.run(runner())
    except (ConfigurationError, WorkingDirectoryError, LookupError) as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)

    colour = typer.colors.GREEN if result.success else typer.colors.YELLOW
    typer.secho(f"Workflow {workflow_id}: {'succeeded' if result.success else 'did not succeed'}", fg=colour)
    if result.summary:
        typer.echo(result.summary)
    if not result.success:
        raise typer.Exit(code=1)


@workflow_app.command("list")
def workflow_list() -> None:
    """List all workflows with their status, parent and type."""
    workflows = _with_repository(lambda repo: repo.list_workflows())
    if not workflows:
        typer.echo("No workflows found")
        return
    for wf in workflows:
        parent = wf.parent_workflow_id if wf.parent_workflow_id is not None else "-"
        typer.echo(f"{wf.id}\t{wf.status.value}\t{wf.workflow_type}\tparent={parent}")


@workflow_app.command("show")
def workflow_show(workflow_id: int) -> None:
    """Show a workflow's record, stage attempts and conversation."""

    async def gather(repo: WorkflowRepository):
        record = await repo.get_workflow(workflow_id)
        if record is None:
            return None, [], [], []
        return (
            record,
            await repo.list_agent_executions(workflow_id),
            await repo.list_messages(workflow_id),
            await repo.list_children(workflow_id),
        )

    record, executions, messages, children = _with_repository(gather)
    record = _require_workflow(record, workflow_id)
    typer.echo(f"Workflow {record.id} ({record.workflow_type}): {record.status.value}")
    if record.task_description:
        typer.echo(f"Task: {record.task_description}")
    if record.is_paused:
        typer.echo(f"Paused: {record.pause_reason or 'yes'}")
    if record.checkpoint_commit:
        typer.echo(f"Checkpoint: {record.checkpoint_commit} ({record.checkpoint_created_at})")
    for execution in executions:
        line = f"- {execution.agent_type.value}: {execution.status.value}"
        if execution.error_message:
            line += f" ({execution.error_message.splitlines()[0]})"
        typer.echo(line)
    for child in children:
        typer.echo(f"  child {child.id} [{child.execution_order}] {child.workflow_type}: {child.status.value}")
    for message in messages:
        typer.echo(f"  [{message.message_type.value}] {message.content}")


@workflow_app.command("create")
def workflow_create(
    workflow_type: WorkflowType,
    working_dir: Path = typer.Option(..., help="Checkout the pipeline operates on"),
    task: Optional[str] = typer.Option(None, help="Task description"),
    branch: Optional[str] = typer.Option(None, help="Branch to push on completion"),
    target_module: Optional[str] = typer.Option(None, help="Module the task targets"),
) -> None:
    """Create a pending root workflow and print its id."""
    record = WorkflowRecord(
        workflow_type=workflow_type.value,
        working_dir=str(working_dir.expanduser().resolve()),
        task_description=task,
        branch_name=branch,
        target_module=target_module,
    )
    workflow_id = _with_repository(lambda repo: repo.create_workflow(record))
    typer.echo(f"Created workflow {workflow_id}")


@workflow_app.command("pause")
def workflow_pause(
    workflow_id: int, reason: Optional[str] = typer.Option(None, help="Why the workflow is paused")
) -> None:
    """Pause a workflow at its next stage boundary."""

    async def action(repo: WorkflowRepository):
        _require_workflow(await repo.get_workflow(workflow_id), workflow_id)
        await pause_workflow(repo, workflow_id, reason)

    _with_repository(action)
    typer.echo(f"Workflow {workflow_id} paused")


@workflow_app.command("resume")
def workflow_resume(workflow_id: int) -> None:
    """Clear a workflow's paused flag."""

    async def action(repo: WorkflowRepository):
        _require_workflow(await repo.get_workflow(workflow_id), workflow_id)
        await unpause_workflow(repo, workflow_id)

    _with_repository(action)
    typer.echo(f"Workflow {workflow_id} resumed")


@workflow_app.command("cancel")
def workflow_cancel(
    workflow_id: int, reason: Optional[str] = typer.Option(None, help="Cancellation reason")
) -> None:
    """Ask a running workflow to stop before its next stage."""

    async def action(repo: WorkflowRepository):
        _require_workflow(await repo.get_workflow(workflow_id), workflow_id)
        await request_cancel(repo, workflow_id, reason)

    _with_repository(action)
    typer.echo(f"Cancel requested for workflow {workflow_id}")


@workflow_app.command("instruct")
def workflow_instruct(workflow_id: int, instruction: str) -> None:
    """Send an instruction that is acknowledged before the next stage."""

    async def action(repo: WorkflowRepository):
        _require_workflow(await repo.get_workflow(workflow_id), workflow_id)
        await send_instruction(repo, workflow_id, instruction)

    _with_repository(action)
    typer.echo(f"Instruction queued for workflow {workflow_id}")


@workflow_app.command("root")
def workflow_root(workflow_id: int) -> None:
    """Print the id of the root workflow of ``workflow_id``'s tree."""
    typer.echo(_with_repository(lambda repo: root_workflow_id(repo, workflow_id)))


@workflow_app.command("checkpoint")
def workflow_checkpoint(workflow_id: int) -> None:
    """Show the most recent checkpoint in ``workflow_id``'s tree."""

    async def action(repo: WorkflowRepository):
        root_id = await root_workflow_id(repo, workflow_id)
        manager = CheckpointManager(repo, GitAdapter(), EventLog(repo))
        return await manager.last_checkpoint(root_id)

    record = _with_repository(action)
    if record is None:
        typer.echo("No checkpoint recorded")
        return
    typer.echo(f"{record.checkpoint_commit}\tworkflow={record.id}\t{record.checkpoint_created_at}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
