"""Commit, checkpoint and push bookkeeping for workflows."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from .contracts import VersionControlError, WorkflowStatus
from .events import EventLog
from .messages import workflow_tree_ids
from .persistence import WorkflowRecord, WorkflowRepository
from .persistence.models import utcnow
from .vcs import GitAdapter

logger = logging.getLogger(__name__)

MAX_SUBJECT_TASK_CHARS = 72


def commit_message(workflow: WorkflowRecord) -> str:
    lines = (workflow.task_description or "").strip().splitlines()
    task = lines[0] if lines else workflow.workflow_type
    if len(task) > MAX_SUBJECT_TASK_CHARS:
        task = task[: MAX_SUBJECT_TASK_CHARS - 3] + "..."
    return f"pipewright: workflow #{workflow.id} - {task}"


class CheckpointManager:
    """Records known-good commits against workflows."""

    def __init__(
        self, repository: WorkflowRepository, git: GitAdapter, events: EventLog
    ) -> None:
        self.repository = repository
        self.git = git
        self.events = events

    async def commit_checkpoint(self, workflow: WorkflowRecord, working_dir: str | Path) -> str:
        """Commit any pending changes and checkpoint the resulting HEAD.

        Never raises; failures are logged and described in the returned
        summary line.
        """
        try:
            if await self.git.is_dirty(working_dir):
                await self.git.stage_all(working_dir)
                sha = await self.git.commit(working_dir, commit_message(workflow))
                summary = f"Committed {sha[:8]}"
            else:
                sha = await self.git.head_sha(working_dir)
                summary = f"No changes to commit; checkpoint at {sha[:8]}"
            await self.save_checkpoint(workflow.id, sha, working_dir)
        except Exception as exc:
            logger.warning(f"Checkpoint failed for workflow {workflow.id}: {exc}")
            await self.events.warning(workflow.id, "checkpoint_failed", str(exc))
            return f"Checkpoint failed: {exc}"
        await self.events.info(workflow.id, "checkpoint_created", summary, commit=sha)
        return summary

    async def save_checkpoint(self, workflow_id: int, sha: str, working_dir: str | Path) -> None:
        """Persist ``sha`` as the workflow's checkpoint.

        Raises:
            VersionControlError: If ``sha`` is not reachable from HEAD.
        """
        if not await self.git.is_ancestor(working_dir, sha):
            raise VersionControlError(f"Commit {sha} is not reachable from HEAD")
        await self.repository.update_workflow(
            workflow_id, checkpoint_commit=sha, checkpoint_created_at=utcnow()
        )

    async def push_if_ahead(self, workflow: WorkflowRecord, working_dir: str | Path) -> bool:
        """Push the workflow branch when HEAD differs from the remote branch."""
        try:
            branch = workflow.branch_name or await self.git.current_branch(working_dir)
            head = await self.git.head_sha(working_dir)
            remote = await self.git.remote_sha(working_dir, branch)
            if head == remote:
                logger.debug(f"Branch {branch} already up to date with remote")
                return False
            await self.git.push(working_dir, branch)
        except Exception as exc:
            logger.warning(f"Push failed for workflow {workflow.id}: {exc}")
            await self.events.warning(workflow.id, "push_failed", str(exc))
            return False
        await self.events.info(workflow.id, "workflow_pushed", f"Pushed {branch}", commit=head)
        return True

    async def last_checkpoint(self, root_id: int) -> Optional[WorkflowRecord]:
        """Most recent checkpointed, completed workflow in ``root_id``'s tree."""
        best: Optional[WorkflowRecord] = None
        for workflow_id in await workflow_tree_ids(self.repository, root_id):
            record = await self.repository.get_workflow(workflow_id)
            if (
                record is None
                or not record.checkpoint_commit
                or record.checkpoint_created_at is None
                or record.status
                not in (WorkflowStatus.COMPLETED, WorkflowStatus.COMPLETED_WITH_WARNINGS)
            ):
                continue
            if best is None or record.checkpoint_created_at > best.checkpoint_created_at:
                best = record
        return best
