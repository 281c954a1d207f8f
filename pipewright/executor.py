"""Pipeline executor: runs a workflow's stage sequence against a working tree."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Mapping, Optional, Sequence

from pydantic import BaseModel, Field

from .build import BuildVerifier
from .capabilities import StageRegistry
from .checkpoint import CheckpointManager
from .config import PipewrightConfig, resolve_stage_environment
from .constants import MAX_ERROR_MESSAGE_CHARS, REPO_SUBDIR
from .contracts import (
    Artifact,
    PipelineResult,
    StageInput,
    StageFailed,
    StageKind,
    StageOutput,
    WorkflowDescriptor,
    WorkflowStatus,
    WorkingDirectoryError,
    stage_sequence,
)
from .events import EventLog
from .interrupts import InterruptController, InterruptOutcome
from .persistence import AgentStatus, WorkflowRecord, WorkflowRepository
from .persistence.models import utcnow

if TYPE_CHECKING:
    from .decompose import SubWorkflowDecomposer
    from .healing import SelfHealingCoordinator

logger = logging.getLogger(__name__)


class StageRun(BaseModel):
    """Mutable progress of one pass through a stage list."""

    artifacts: List[Artifact] = Field(default_factory=list)
    summaries: List[str] = Field(default_factory=list)
    failed: bool = False
    cancelled: bool = False
    fix_workflow_id: Optional[int] = None

    @property
    def build_failed(self) -> bool:
        return self.fix_workflow_id is not None

    @property
    def summary(self) -> str:
        return "\n".join(self.summaries)


def resolve_working_dir(working_dir: Optional[str]) -> Path:
    """Validate ``working_dir`` and prefer its ``repo/`` subdirectory.

    Raises:
        WorkingDirectoryError: If no directory is given or it does not exist.
    """
    if not working_dir:
        raise WorkingDirectoryError("A working directory is required")
    root = Path(working_dir)
    if not root.is_dir():
        raise WorkingDirectoryError(f"Working directory does not exist: {working_dir}")
    nested = root / REPO_SUBDIR
    return nested if nested.is_dir() else root


def descriptor_from_record(record: WorkflowRecord, **overrides) -> WorkflowDescriptor:
    data = dict(
        workflow_id=record.id,
        workflow_type=record.workflow_type,
        working_dir=record.working_dir,
        parent_workflow_id=record.parent_workflow_id,
        target_module=record.target_module,
        task_description=record.task_description,
        branch_name=record.branch_name,
    )
    data.update(overrides)
    return WorkflowDescriptor(**data)


def truncate_error(message: str) -> str:
    return message[:MAX_ERROR_MESSAGE_CHARS]


class PipelineExecutor:
    """Drive a workflow through its stages, verifying and checkpointing code."""

    def __init__(
        self,
        repository: WorkflowRepository,
        registry: StageRegistry,
        verifier: BuildVerifier,
        interrupts: InterruptController,
        checkpoints: CheckpointManager,
        events: EventLog,
        config: Optional[PipewrightConfig] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.repository = repository
        self.registry = registry
        self.verifier = verifier
        self.interrupts = interrupts
        self.checkpoints = checkpoints
        self.events = events
        self.config = config or PipewrightConfig()
        self.environ = environ
        # Wired after construction; both depend on this executor.
        self.healer: Optional["SelfHealingCoordinator"] = None
        self.decomposer: Optional["SubWorkflowDecomposer"] = None

    def stage_environment(self) -> Dict[str, str]:
        return resolve_stage_environment(self.config.models, self.environ)

    async def execute(self, descriptor: WorkflowDescriptor) -> PipelineResult:
        """Run ``descriptor``'s full stage sequence.

        Raises:
            WorkingDirectoryError: If the working directory is missing.
            ConfigurationError: If the model credential is not configured.
        """
        working_dir = resolve_working_dir(descriptor.working_dir)
        env = self.stage_environment()
        workflow_id = descriptor.workflow_id
        run = StageRun()

        try:
            await self.repository.update_workflow(
                workflow_id, status=WorkflowStatus.RUNNING, started_at=utcnow()
            )
            stages = stage_sequence(descriptor.workflow_type)
            await self.events.info(
                workflow_id,
                "workflow_started",
                f"Running {descriptor.workflow_type} pipeline",
                stages=[s.value for s in stages],
                working_dir=str(working_dir),
            )
            await self.execute_stages(descriptor, stages, working_dir, env, run=run)

            if run.cancelled:
                return PipelineResult(success=False, artifacts=run.artifacts, summary=run.summary)
            if run.build_failed:
                run.summaries.append(
                    f"Build failed; fix workflow #{run.fix_workflow_id} scheduled"
                )
                return PipelineResult(success=False, artifacts=run.artifacts, summary=run.summary)

            if self.decomposer is not None:
                await self.decomposer.handle(workflow_id, run.artifacts)
            if descriptor.is_root and not run.failed:
                record = await self.repository.get_workflow(workflow_id)
                if record is not None:
                    await self.checkpoints.push_if_ahead(record, working_dir)

            status = (
                WorkflowStatus.COMPLETED_WITH_WARNINGS if run.failed else WorkflowStatus.COMPLETED
            )
            await self.repository.update_workflow(
                workflow_id, status=status, completed_at=utcnow()
            )
            await self.events.info(workflow_id, "workflow_completed", f"Workflow {status.value}")
            return PipelineResult(
                success=not run.failed, artifacts=run.artifacts, summary=run.summary
            )
        except Exception as exc:
            logger.exception(f"Workflow {workflow_id} failed")
            await self.events.error(workflow_id, "workflow_failed", str(exc))
            try:
                await self.fail_workflow(workflow_id, str(exc))
            except Exception as persist_exc:
                logger.error(f"Could not mark workflow {workflow_id} failed: {persist_exc}")
            run.summaries.append(f"Workflow failed: {exc}")
            return PipelineResult(success=False, artifacts=run.artifacts, summary=run.summary)

    async def execute_stages(
        self,
        descriptor: WorkflowDescriptor,
        stages: Sequence[StageKind],
        working_dir: Path,
        env: Dict[str, str],
        run: Optional[StageRun] = None,
        verify_build: bool = True,
    ) -> StageRun:
        """Run ``stages`` in order, honouring interrupts at every boundary.

        A failed stage marks the run failed and the loop continues. A failed
        build after ``code`` hands off to the healer and stops the loop.
        """
        run = run if run is not None else StageRun()
        workflow_id = descriptor.workflow_id

        for stage in stages:
            if await self.interrupts.check(workflow_id, stage) == InterruptOutcome.CANCEL:
                run.cancelled = True
                run.summaries.append(f"Cancelled before {stage.value} stage")
                return run

            output = await self.invoke_stage(descriptor, stage, working_dir, env, run)
            if output is None or not output.success:
                run.failed = True
                run.summaries.append(f"{stage.value}: failed")
                continue
            run.artifacts.extend(output.artifacts)
            run.summaries.append(f"{stage.value}: {output.summary}" if output.summary else f"{stage.value}: ok")

            if stage == StageKind.CODE and verify_build:
                build = await self.verifier.verify(working_dir)
                if not build.success:
                    await self.events.warning(
                        workflow_id,
                        "build_failed",
                        build.error or "Build failed",
                        phase=build.phase,
                        command=build.command,
                    )
                    if self.healer is None:
                        run.failed = True
                        run.summaries.append(f"Build failed: {build.error}")
                        return run
                    parent = await self.repository.get_workflow(workflow_id)
                    run.fix_workflow_id = await self.healer.handle_build_failure(
                        parent, working_dir, build.error or "Build failed", 1
                    )
                    return run
                record = await self.repository.get_workflow(workflow_id)
                run.summaries.append(await self.checkpoints.commit_checkpoint(record, working_dir))
        return run

    async def invoke_stage(
        self,
        descriptor: WorkflowDescriptor,
        stage: StageKind,
        working_dir: Path,
        env: Dict[str, str],
        run: StageRun,
    ) -> Optional[StageOutput]:
        """Invoke one stage and record the attempt. Returns ``None`` on error."""
        workflow_id = descriptor.workflow_id
        stage_input = StageInput(
            workflow_id=workflow_id,
            workflow_type=descriptor.workflow_type,
            stage=stage,
            working_dir=str(working_dir),
            target_module=descriptor.target_module,
            task_description=descriptor.task_description,
            branch_name=descriptor.branch_name,
            metadata=descriptor.metadata,
            context={
                **descriptor.context,
                "artifacts": [a.model_dump() for a in run.artifacts],
            },
            env=env,
        )
        execution_id = await self.repository.create_agent_execution(
            workflow_id, stage, stage_input.model_dump(mode="json", exclude={"env"})
        )
        await self.events.info(workflow_id, "stage_started", f"Starting {stage.value} stage")

        try:
            output = await self.registry.get(stage).invoke(stage_input)
        except Exception as exc:
            if isinstance(exc, StageFailed):
                logger.warning(f"Stage {stage.value} failed for workflow {workflow_id}: {exc}")
            else:
                logger.exception(f"Stage {stage.value} raised for workflow {workflow_id}")
            await self.repository.complete_agent_execution(
                execution_id, AgentStatus.FAILED, error_message=truncate_error(str(exc))
            )
            await self.events.error(workflow_id, "stage_failed", str(exc), stage=stage.value)
            return None

        if output.success:
            await self.repository.complete_agent_execution(
                execution_id, AgentStatus.COMPLETED, output=output.model_dump(mode="json")
            )
            await self.events.info(workflow_id, "stage_completed", f"{stage.value} completed")
        else:
            await self.repository.complete_agent_execution(
                execution_id,
                AgentStatus.FAILED,
                output=output.model_dump(mode="json"),
                error_message=truncate_error(output.summary or f"{stage.value} reported failure"),
            )
            await self.events.warning(
                workflow_id, "stage_failed", output.summary or "stage reported failure", stage=stage.value
            )
        return output

    async def fail_workflow(
        self, workflow_id: int, error: str, status: WorkflowStatus = WorkflowStatus.FAILED
    ) -> None:
        """Mark the workflow failed along with any agent executions still running."""
        await self.repository.update_workflow(workflow_id, status=status, completed_at=utcnow())
        for execution in await self.repository.list_agent_executions(workflow_id):
            if execution.status == AgentStatus.RUNNING:
                await self.repository.complete_agent_execution(
                    execution.id,
                    AgentStatus.FAILED,
                    error_message=truncate_error(f"Workflow failed: {error}"),
                )
