"""Self-healing retry coordinator.

When a build fails after the code stage, a bugfix child workflow is created
and run in the background. If the fix makes the build pass, the parent resumes
with its remaining stages; otherwise another fix is attempted, up to
``HealingConfig.max_attempts``.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Dict, Optional, Set

from .build import BuildVerifier
from .checkpoint import CheckpointManager
from .config import HealingConfig
from .contracts import (
    FIX_STAGES,
    RESUME_STAGES,
    TERMINAL_STATUSES,
    WorkflowStatus,
    WorkflowType,
)
from .events import EventLog
from .executor import PipelineExecutor, descriptor_from_record
from .persistence import WorkflowRecord, WorkflowRepository
from .persistence.models import utcnow

logger = logging.getLogger(__name__)


def fix_task_description(parent: WorkflowRecord, diagnostic: str, attempt: int, max_attempts: int) -> str:
    return (
        f"Fix build errors in workflow #{parent.id} "
        f"(attempt {attempt}/{max_attempts}).\n\nBuild output:\n{diagnostic}"
    )


class SelfHealingCoordinator:
    """Schedules and tracks fix workflows for failed builds."""

    def __init__(
        self,
        repository: WorkflowRepository,
        executor: PipelineExecutor,
        verifier: BuildVerifier,
        checkpoints: CheckpointManager,
        events: EventLog,
        config: Optional[HealingConfig] = None,
    ) -> None:
        self.repository = repository
        self.executor = executor
        self.verifier = verifier
        self.checkpoints = checkpoints
        self.events = events
        self.config = config or HealingConfig()
        self._tasks: Set[asyncio.Task] = set()

    @property
    def max_attempts(self) -> int:
        return self.config.max_attempts

    async def handle_build_failure(
        self,
        parent: WorkflowRecord,
        working_dir: Path,
        diagnostic: str,
        attempt: int,
    ) -> Optional[int]:
        """Create and schedule a fix workflow for ``parent``.

        Returns the fix workflow id, or ``None`` when the attempt bound is
        exceeded, in which case the parent is marked failed.
        """
        if attempt > self.max_attempts:
            await self.events.error(
                parent.id,
                "fix_attempts_exhausted",
                f"Build still failing after {self.max_attempts} fix attempts",
            )
            await self.executor.fail_workflow(parent.id, "fix attempts exhausted")
            return None

        child = WorkflowRecord(
            parent_workflow_id=parent.id,
            workflow_type=WorkflowType.BUGFIX.value,
            branch_name=parent.branch_name,
            target_module=parent.target_module,
            task_description=fix_task_description(parent, diagnostic, attempt, self.max_attempts),
            working_dir=parent.working_dir,
            execution_order=attempt,
            workflow_depth=parent.workflow_depth + 1,
            auto_execute_children=False,
        )
        fix_id = await self.repository.create_workflow(child)
        await self.repository.update_workflow(parent.id, status=WorkflowStatus.PENDING_FIX)
        await self.events.info(
            parent.id,
            "fix_workflow_created",
            f"Scheduled fix workflow #{fix_id} (attempt {attempt})",
            fix_workflow_id=fix_id,
            attempt=attempt,
        )

        task = asyncio.create_task(self.run_fix(parent.id, fix_id, working_dir, attempt))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return fix_id

    async def run_fix(self, parent_id: int, fix_id: int, working_dir: Path, attempt: int) -> None:
        try:
            await self._run_fix(parent_id, fix_id, working_dir, attempt)
        except asyncio.CancelledError:
            logger.warning(f"Fix workflow #{fix_id} cancelled during shutdown")
            await self._record_shutdown(parent_id, fix_id)
            raise
        except Exception as exc:
            logger.exception(f"Fix workflow #{fix_id} crashed")
            await self.events.error(fix_id, "workflow_failed", str(exc))
            for workflow_id in (fix_id, parent_id):
                try:
                    await self.executor.fail_workflow(workflow_id, str(exc))
                except Exception as persist_exc:
                    logger.error(f"Could not mark workflow {workflow_id} failed: {persist_exc}")

    async def _record_shutdown(self, parent_id: int, fix_id: int) -> None:
        try:
            reason = f"fix workflow #{fix_id} interrupted by shutdown"
            await self.executor.fail_workflow(fix_id, reason, status=WorkflowStatus.CANCELLED)
            await self.executor.fail_workflow(parent_id, reason)
            await self.events.warning(parent_id, "fix_interrupted", reason)
        except Exception as exc:
            logger.error(f"Could not record shutdown of fix workflow #{fix_id}: {exc}")

    async def _run_fix(self, parent_id: int, fix_id: int, working_dir: Path, attempt: int) -> None:
        env = self.executor.stage_environment()
        fix = await self.repository.get_workflow(fix_id)
        await self.repository.update_workflow(
            fix_id, status=WorkflowStatus.RUNNING, started_at=utcnow()
        )
        run = await self.executor.execute_stages(
            descriptor_from_record(fix), FIX_STAGES, working_dir, env, verify_build=False
        )

        if run.cancelled:
            await self.repository.update_workflow(
                fix_id, status=WorkflowStatus.CANCELLED, completed_at=utcnow()
            )
            await self.executor.fail_workflow(parent_id, f"fix workflow #{fix_id} was cancelled")
            await self.events.warning(parent_id, "fix_cancelled", f"Fix workflow #{fix_id} cancelled")
            return

        build = await self.verifier.verify(working_dir)
        if build.success:
            await self.repository.update_workflow(
                fix_id, status=WorkflowStatus.COMPLETED, completed_at=utcnow()
            )
            await self.checkpoints.commit_checkpoint(fix, working_dir)
            await self.events.info(parent_id, "fix_succeeded", f"Fix workflow #{fix_id} fixed the build")
            await self.resume_parent(parent_id, working_dir, env)
            return

        diagnostic = build.error or "Build failed"
        if attempt < self.max_attempts:
            await self.repository.update_workflow(
                fix_id, status=WorkflowStatus.COMPLETED, completed_at=utcnow()
            )
            await self.events.warning(
                parent_id,
                "fix_build_failed",
                f"Build still failing after fix attempt {attempt}",
                diagnostic=diagnostic,
            )
            parent = await self.repository.get_workflow(parent_id)
            await self.handle_build_failure(parent, working_dir, diagnostic, attempt + 1)
            return

        await self.executor.fail_workflow(fix_id, diagnostic)
        await self.executor.fail_workflow(
            parent_id, f"Build still failing after {self.max_attempts} fix attempts"
        )
        await self.events.error(
            parent_id,
            "fix_attempts_exhausted",
            f"Build still failing after {self.max_attempts} fix attempts",
            diagnostic=diagnostic,
        )

    async def resume_parent(self, parent_id: int, working_dir: Path, env: Dict[str, str]) -> None:
        """Run the parent's post-build stages and finalize its status."""
        parent = await self.repository.get_workflow(parent_id)
        if parent is None or parent.status in TERMINAL_STATUSES:
            logger.info(f"Not resuming workflow {parent_id}; it is no longer waiting on a fix")
            return
        await self.repository.update_workflow(parent_id, status=WorkflowStatus.RUNNING)
        await self.events.info(parent_id, "workflow_resumed", "Resuming after successful fix")
        run = await self.executor.execute_stages(
            descriptor_from_record(parent), RESUME_STAGES, working_dir, env, verify_build=False
        )
        if run.cancelled:
            return

        status = WorkflowStatus.COMPLETED_WITH_WARNINGS if run.failed else WorkflowStatus.COMPLETED
        await self.repository.update_workflow(parent_id, status=status, completed_at=utcnow())
        await self.events.info(parent_id, "workflow_completed", f"Workflow {status.value}")
        if parent.is_root and not run.failed:
            await self.checkpoints.push_if_ahead(parent, working_dir)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def wait_idle(self) -> None:
        """Wait until no fix workflow is running, including ones scheduled meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
