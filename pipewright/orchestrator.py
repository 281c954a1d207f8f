"""Wiring of the orchestrator's components from configuration."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable, Mapping, Optional

from .build import BuildVerifier
from .capabilities import StageRegistry, default_registry
from .checkpoint import CheckpointManager
from .config import PipewrightConfig, load_config
from .contracts import PipelineResult, WorkflowType
from .decompose import (
    HttpSubWorkflowCreator,
    RepositorySubWorkflowCreator,
    SubWorkflowCreator,
    SubWorkflowDecomposer,
)
from .events import EventLog
from .executor import PipelineExecutor, descriptor_from_record
from .healing import SelfHealingCoordinator
from .interrupts import InterruptController
from .persistence import WorkflowRecord, WorkflowRepository, get_repository
from .vcs import GitAdapter

logger = logging.getLogger(__name__)


class Orchestrator:
    """Owns one set of collaborating components sharing a repository."""

    def __init__(
        self,
        config: Optional[PipewrightConfig] = None,
        registry: Optional[StageRegistry] = None,
        repository: Optional[WorkflowRepository] = None,
        git: Optional[GitAdapter] = None,
        verifier: Optional[BuildVerifier] = None,
        creator: Optional[SubWorkflowCreator] = None,
        environ: Optional[Mapping[str, str]] = None,
        workflow_types: Optional[Iterable[WorkflowType]] = None,
    ) -> None:
        self.config = config or load_config()
        self.repository = repository or get_repository(config=self.config)
        self.registry = registry or default_registry()
        self.registry.require_workflow_types(workflow_types or list(WorkflowType))

        self.events = EventLog(self.repository)
        self.git = git or GitAdapter(remote=self.config.git_remote)
        self.verifier = verifier or BuildVerifier(self.config.build)
        self.interrupts = InterruptController(self.repository, self.events, self.config.interrupts)
        self.checkpoints = CheckpointManager(self.repository, self.git, self.events)
        self.executor = PipelineExecutor(
            self.repository,
            self.registry,
            self.verifier,
            self.interrupts,
            self.checkpoints,
            self.events,
            config=self.config,
            environ=environ,
        )
        self.healer = SelfHealingCoordinator(
            self.repository,
            self.executor,
            self.verifier,
            self.checkpoints,
            self.events,
            self.config.healing,
        )
        if creator is None:
            if self.config.sub_workflow_creator == "repository":
                creator = RepositorySubWorkflowCreator(self.repository)
            else:
                creator = HttpSubWorkflowCreator(self.config.api_url)
        self.decomposer = SubWorkflowDecomposer(self.repository, creator, self.events)
        self.executor.healer = self.healer
        self.executor.decomposer = self.decomposer

    async def create_workflow(
        self,
        workflow_type: WorkflowType | str,
        working_dir: str,
        task_description: Optional[str] = None,
        branch_name: Optional[str] = None,
        target_module: Optional[str] = None,
    ) -> int:
        return await self.repository.create_workflow(
            WorkflowRecord(
                workflow_type=WorkflowType(workflow_type).value,
                working_dir=working_dir,
                task_description=task_description,
                branch_name=branch_name,
                target_module=target_module,
            )
        )

    async def run(self, workflow_id: int, wait: bool = True) -> PipelineResult:
        """Execute a persisted workflow.

        With ``wait`` the call also waits for any fix workflows it scheduled.
        """
        record = await self.repository.get_workflow(workflow_id)
        if record is None:
            raise LookupError(f"Workflow {workflow_id} not found")
        result = await self.executor.execute(descriptor_from_record(record))
        if wait:
            await self.healer.wait_idle()
        return result

    async def close(self) -> None:
        self.interrupts.close()
        await self.healer.cancel_all()
        await self.repository.close()


@asynccontextmanager
async def open_orchestrator(
    config: Optional[PipewrightConfig] = None,
    registry: Optional[StageRegistry] = None,
    **kwargs,
) -> AsyncIterator[Orchestrator]:
    """Build an :class:`Orchestrator` and release its resources on exit."""
    orchestrator = Orchestrator(config=config, registry=registry, **kwargs)
    try:
        yield orchestrator
    finally:
        await orchestrator.close()
        logger.debug("Orchestrator closed")
