from datetime import timedelta

import pytest

from pipewright.capabilities import StageRegistry
from pipewright.checkpoint import CheckpointManager, commit_message
from pipewright.contracts import VersionControlError, WorkflowStatus
from pipewright.events import EventLog
from pipewright.orchestrator import Orchestrator
from pipewright.persistence import InMemoryWorkflowRepository, WorkflowRecord
from pipewright.persistence.models import utcnow


def _manager(repository, git):
    return CheckpointManager(repository, git, EventLog(repository))


def test_commit_message_truncates_task():
    record = WorkflowRecord(id=4, task_description="x" * 100 + "\nsecond line")
    message = commit_message(record)
    assert message.startswith("pipewright: workflow #4 - ")
    assert len(message.split(" - ", 1)[1]) == 72
    assert commit_message(WorkflowRecord(id=5, workflow_type="bugfix")) == "pipewright: workflow #5 - bugfix"


@pytest.mark.asyncio
async def test_commit_checkpoint_records_sha(repository, make_harness):
    git = make_harness().git
    workflow_id = await repository.create_workflow(WorkflowRecord(task_description="Add cache"))
    record = await repository.get_workflow(workflow_id)

    summary = await _manager(repository, git).commit_checkpoint(record, "/work")

    saved = await repository.get_workflow(workflow_id)
    assert saved.checkpoint_commit == git.commits[-1]
    assert saved.checkpoint_created_at is not None
    assert git.messages == [f"pipewright: workflow #{workflow_id} - Add cache"]
    assert summary.startswith("Committed")


@pytest.mark.asyncio
async def test_commit_failure_is_summarised_not_raised(repository, make_harness):
    git = make_harness().git

    async def broken_commit(cwd, message):
        raise VersionControlError("nothing added to commit")

    git.commit = broken_commit
    workflow_id = await repository.create_workflow(WorkflowRecord())
    summary = await _manager(repository, git).commit_checkpoint(
        await repository.get_workflow(workflow_id), "/work"
    )
    assert summary == "Checkpoint failed: nothing added to commit"
    assert (await repository.get_workflow(workflow_id)).checkpoint_commit is None


@pytest.mark.asyncio
async def test_save_checkpoint_requires_reachable_commit(repository, make_harness):
    git = make_harness().git
    workflow_id = await repository.create_workflow(WorkflowRecord())
    with pytest.raises(VersionControlError):
        await _manager(repository, git).save_checkpoint(workflow_id, "f" * 40, "/work")


@pytest.mark.asyncio
async def test_push_only_when_ahead(repository, make_harness):
    git = make_harness().git
    manager = _manager(repository, git)
    record = WorkflowRecord(id=await repository.create_workflow(WorkflowRecord()), branch_name="feat/x")

    await git.commit("/work", "c1")
    assert await manager.push_if_ahead(record, "/work") is True
    assert await manager.push_if_ahead(record, "/work") is False
    assert git.pushed == ["feat/x"]


@pytest.mark.asyncio
async def test_last_checkpoint_picks_newest_completed(repository, make_harness):
    manager = _manager(repository, make_harness().git)
    now = utcnow()
    root = await repository.create_workflow(WorkflowRecord())
    older = await repository.create_workflow(WorkflowRecord(parent_workflow_id=root))
    newer = await repository.create_workflow(WorkflowRecord(parent_workflow_id=root))
    failed = await repository.create_workflow(WorkflowRecord(parent_workflow_id=newer))
    await repository.update_workflow(
        older, status=WorkflowStatus.COMPLETED, checkpoint_commit="a" * 40,
        checkpoint_created_at=now - timedelta(minutes=5),
    )
    await repository.update_workflow(
        newer, status=WorkflowStatus.COMPLETED_WITH_WARNINGS, checkpoint_commit="b" * 40,
        checkpoint_created_at=now - timedelta(minutes=1),
    )
    await repository.update_workflow(
        failed, status=WorkflowStatus.FAILED, checkpoint_commit="c" * 40, checkpoint_created_at=now,
    )

    best = await manager.last_checkpoint(root)
    assert best.id == newer
    assert best.checkpoint_commit == "b" * 40


class CheckpointWriteFailingRepository(InMemoryWorkflowRepository):
    async def update_workflow(self, workflow_id, **fields):
        if "checkpoint_commit" in fields:
            raise ConnectionError("database unavailable")
        return await super().update_workflow(workflow_id, **fields)


@pytest.mark.asyncio
async def test_checkpoint_persistence_failure_is_summarised(make_harness):
    git = make_harness().git
    repository = CheckpointWriteFailingRepository()
    workflow_id = await repository.create_workflow(WorkflowRecord(task_description="Add cache"))

    summary = await _manager(repository, git).commit_checkpoint(
        await repository.get_workflow(workflow_id), "/work"
    )

    assert summary == "Checkpoint failed: database unavailable"
    assert len(git.commits) == 1


@pytest.mark.asyncio
async def test_pipeline_survives_checkpoint_write_failure(make_harness, tmp_path, test_config):
    harness = make_harness()
    repository = CheckpointWriteFailingRepository()
    orchestrator = Orchestrator(
        config=test_config,
        registry=StageRegistry(harness.stages),
        repository=repository,
        git=harness.git,
        verifier=harness.verifier,
        environ={"OPENROUTER_API_KEY": "test-key"},
    )
    workflow_id = await orchestrator.create_workflow("feature", str(tmp_path))

    result = await orchestrator.run(workflow_id)

    assert result.success
    assert "Checkpoint failed: database unavailable" in result.summary
    assert (await repository.get_workflow(workflow_id)).status == WorkflowStatus.COMPLETED
