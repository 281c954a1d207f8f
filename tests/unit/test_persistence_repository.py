import pytest

from pipewright.contracts import StageKind, WorkflowStatus
from pipewright.persistence import (
    ActionStatus,
    ActionType,
    AgentStatus,
    ExecutionLogEntry,
    InMemoryWorkflowRepository,
    LogLevel,
    MessageType,
    SQLiteWorkflowRepository,
    WorkflowMessage,
    WorkflowRecord,
    get_repository,
)


@pytest.fixture(params=["memory", "sqlite"])
def repo(request, tmp_path):
    if request.param == "memory":
        return InMemoryWorkflowRepository()
    return SQLiteWorkflowRepository(tmp_path / "wf.db")


@pytest.mark.asyncio
async def test_workflow_crud(repo):
    root_id = await repo.create_workflow(
        WorkflowRecord(workflow_type="feature", task_description="Add search", working_dir="/src")
    )
    child_b = await repo.create_workflow(
        WorkflowRecord(parent_workflow_id=root_id, workflow_type="bugfix", execution_order=2, workflow_depth=1)
    )
    child_a = await repo.create_workflow(
        WorkflowRecord(
            parent_workflow_id=root_id,
            workflow_type="bugfix",
            execution_order=1,
            workflow_depth=1,
            auto_execute_children=False,
        )
    )

    await repo.update_workflow(
        root_id,
        status=WorkflowStatus.PENDING_FIX,
        is_paused=True,
        pause_reason="lunch",
        plan_json={"objective": "x", "subTasks": []},
    )

    root = await repo.get_workflow(root_id)
    assert root.status == WorkflowStatus.PENDING_FIX
    assert root.is_paused is True
    assert root.pause_reason == "lunch"
    assert root.plan_json == {"objective": "x", "subTasks": []}
    assert root.is_root

    children = await repo.list_children(root_id)
    assert [c.id for c in children] == [child_a, child_b]
    assert children[0].auto_execute_children is False
    assert children[1].auto_execute_children is None
    assert children[0].workflow_depth == 1

    assert len(await repo.list_workflows()) == 3
    assert await repo.get_workflow(999) is None
    await repo.close()


@pytest.mark.asyncio
async def test_update_rejects_unknown_fields(repo):
    workflow_id = await repo.create_workflow(WorkflowRecord())
    with pytest.raises(ValueError):
        await repo.update_workflow(workflow_id, parent_workflow_id=42)


@pytest.mark.asyncio
async def test_agent_executions(repo):
    workflow_id = await repo.create_workflow(WorkflowRecord())
    first = await repo.create_agent_execution(workflow_id, StageKind.PLAN, {"task": "t"})
    second = await repo.create_agent_execution(workflow_id, StageKind.CODE, {})
    await repo.complete_agent_execution(first, AgentStatus.COMPLETED, output={"summary": "ok"})
    await repo.complete_agent_execution(second, AgentStatus.FAILED, error_message="boom")

    records = await repo.list_agent_executions(workflow_id)
    assert [r.agent_type for r in records] == [StageKind.PLAN, StageKind.CODE]
    assert records[0].status == AgentStatus.COMPLETED
    assert records[0].input == {"task": "t"}
    assert records[0].output == {"summary": "ok"}
    assert records[1].status == AgentStatus.FAILED
    assert records[1].error_message == "boom"
    assert records[1].completed_at is not None


@pytest.mark.asyncio
async def test_logs_and_messages(repo):
    workflow_id = await repo.create_workflow(WorkflowRecord())
    await repo.append_log(
        ExecutionLogEntry(
            workflow_id=workflow_id,
            level=LogLevel.WARNING,
            event_type="build_failed",
            message="tsc failed",
            data={"phase": "build"},
        )
    )
    logs = await repo.list_logs(workflow_id)
    assert logs[0].level == LogLevel.WARNING
    assert logs[0].data == {"phase": "build"}

    pause_id = await repo.add_message(
        WorkflowMessage(
            workflow_id=workflow_id,
            message_type=MessageType.USER,
            content="hold on",
            action_type=ActionType.PAUSE,
        )
    )
    await repo.add_message(
        WorkflowMessage(
            workflow_id=workflow_id,
            message_type=MessageType.SYSTEM,
            content="noted",
            action_status=ActionStatus.PROCESSED,
        )
    )
    cancel_id = await repo.add_message(
        WorkflowMessage(
            workflow_id=workflow_id,
            message_type=MessageType.USER,
            content="stop",
            action_type=ActionType.CANCEL,
            metadata={"source": "cli"},
        )
    )

    pending = await repo.get_pending_user_messages(workflow_id)
    assert [m.id for m in pending] == [pause_id, cancel_id]
    assert pending[1].metadata == {"source": "cli"}

    await repo.set_message_status(pause_id, ActionStatus.PROCESSED)
    pending = await repo.get_pending_user_messages(workflow_id)
    assert [m.id for m in pending] == [cancel_id]
    assert len(await repo.list_messages(workflow_id)) == 3


@pytest.mark.asyncio
async def test_in_memory_records_are_copies():
    repo = InMemoryWorkflowRepository()
    workflow_id = await repo.create_workflow(WorkflowRecord())
    record = await repo.get_workflow(workflow_id)
    record.status = WorkflowStatus.FAILED
    assert (await repo.get_workflow(workflow_id)).status == WorkflowStatus.PENDING


def test_get_repository_selects_backend(tmp_path, monkeypatch):
    monkeypatch.delenv("PIPEWRIGHT_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setenv("PIPEWRIGHT_CONFIG", str(tmp_path / "absent.yaml"))

    assert isinstance(get_repository(), InMemoryWorkflowRepository)
    assert get_repository() is not get_repository()
    sqlite_repo = get_repository(f"sqlite://{tmp_path / 'wf.db'}")
    assert isinstance(sqlite_repo, SQLiteWorkflowRepository)
    with pytest.raises(ValueError):
        get_repository("mysql://localhost/db")
