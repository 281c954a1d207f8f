"""Build failures handed to bugfix child workflows."""

import asyncio

import pytest

from pipewright.build import BuildResult
from pipewright.config import HealingConfig, InterruptConfig, PipewrightConfig
from pipewright.contracts import StageKind, StageOutput, WorkflowStatus
from pipewright.messages import request_cancel
from pipewright.persistence import AgentStatus

BROKEN = BuildResult(success=False, error="src/app.ts(3,1): error TS2322", phase="typecheck")
FIXED = BuildResult(success=True)


async def _create(harness, tmp_path, **kwargs):
    return await harness.orchestrator.create_workflow(
        "feature", str(tmp_path), kwargs.pop("task", "Add login"), **kwargs
    )


@pytest.mark.asyncio
async def test_build_failure_schedules_one_fix_workflow(make_harness, tmp_path):
    harness = make_harness(build_results=[BROKEN, FIXED])
    workflow_id = await _create(harness, tmp_path)

    result = await harness.orchestrator.run(workflow_id, wait=False)

    assert not result.success
    assert "fix workflow" in result.summary
    parent = await harness.repository.get_workflow(workflow_id)
    assert parent.status == WorkflowStatus.PENDING_FIX

    children = await harness.repository.list_children(workflow_id)
    assert len(children) == 1
    fix = children[0]
    assert fix.workflow_type == "bugfix"
    assert fix.execution_order == 1
    assert fix.workflow_depth == 1
    assert fix.auto_execute_children is False
    assert "error TS2322" in fix.task_description
    assert "attempt 1/3" in fix.task_description

    await harness.orchestrator.healer.wait_idle()
    assert len(await harness.repository.list_children(workflow_id)) == 1


@pytest.mark.asyncio
async def test_successful_fix_resumes_parent(make_harness, tmp_path):
    harness = make_harness(build_results=[BROKEN, FIXED])
    workflow_id = await _create(harness, tmp_path, branch_name="feat/login")

    await harness.orchestrator.run(workflow_id)

    fix = (await harness.repository.list_children(workflow_id))[0]
    assert fix.status == WorkflowStatus.COMPLETED
    assert fix.checkpoint_commit == harness.git.commits[-1]

    assert [s.workflow_type for s in harness.calls(StageKind.PLAN)] == ["feature", "bugfix"]
    assert [s.workflow_id for s in harness.calls(StageKind.CODE)] == [workflow_id, fix.id]
    for kind in (StageKind.TEST, StageKind.REVIEW, StageKind.DOCUMENT):
        assert [s.workflow_id for s in harness.calls(kind)] == [workflow_id]
    assert len(harness.verifier.calls) == 2

    parent = await harness.repository.get_workflow(workflow_id)
    assert parent.status == WorkflowStatus.COMPLETED
    assert harness.git.pushed == ["feat/login"]

    parent_stages = [e.agent_type for e in await harness.repository.list_agent_executions(workflow_id)]
    assert parent_stages == [
        StageKind.PLAN,
        StageKind.CODE,
        StageKind.TEST,
        StageKind.REVIEW,
        StageKind.DOCUMENT,
    ]


@pytest.mark.asyncio
async def test_resumed_parent_with_failed_stage_completes_with_warnings(make_harness, tmp_path):
    harness = make_harness(
        build_results=[BROKEN, FIXED],
        handlers={StageKind.TEST: lambda stage_input: StageOutput(success=False, summary="2 failing")},
    )
    workflow_id = await _create(harness, tmp_path)

    await harness.orchestrator.run(workflow_id)

    parent = await harness.repository.get_workflow(workflow_id)
    assert parent.status == WorkflowStatus.COMPLETED_WITH_WARNINGS
    assert harness.git.pushed == []


@pytest.mark.asyncio
async def test_attempts_are_bounded(make_harness, tmp_path):
    harness = make_harness(build_results=[BROKEN])
    workflow_id = await _create(harness, tmp_path)

    await harness.orchestrator.run(workflow_id)

    children = await harness.repository.list_children(workflow_id)
    assert [c.execution_order for c in children] == [1, 2, 3]
    assert [c.status for c in children] == [
        WorkflowStatus.COMPLETED,
        WorkflowStatus.COMPLETED,
        WorkflowStatus.FAILED,
    ]
    assert all(c.workflow_type == "bugfix" for c in children)

    parent = await harness.repository.get_workflow(workflow_id)
    assert parent.status == WorkflowStatus.FAILED
    assert harness.calls(StageKind.TEST) == []
    assert harness.git.pushed == []

    logs = await harness.repository.list_logs(workflow_id)
    assert [e.event_type for e in logs].count("fix_workflow_created") == 3
    assert any(e.event_type == "fix_attempts_exhausted" for e in logs)


@pytest.mark.asyncio
async def test_max_attempts_follows_configuration(make_harness, tmp_path):
    config = PipewrightConfig(
        healing=HealingConfig(max_attempts=1),
        interrupts=InterruptConfig(poll_interval=0.01, pause_timeout=5.0),
    )
    harness = make_harness(build_results=[BROKEN], config=config)
    workflow_id = await _create(harness, tmp_path)

    await harness.orchestrator.run(workflow_id)

    children = await harness.repository.list_children(workflow_id)
    assert len(children) == 1
    assert children[0].status == WorkflowStatus.FAILED
    assert (await harness.repository.get_workflow(workflow_id)).status == WorkflowStatus.FAILED


@pytest.mark.asyncio
async def test_cancelled_fix_fails_parent(make_harness, tmp_path):
    async def plan(stage_input):
        if stage_input.workflow_type == "bugfix":
            await request_cancel(harness.repository, stage_input.workflow_id)
        return StageOutput(success=True)

    harness = make_harness(build_results=[BROKEN, FIXED], handlers={StageKind.PLAN: plan})
    workflow_id = await _create(harness, tmp_path)

    await harness.orchestrator.run(workflow_id)

    fix = (await harness.repository.list_children(workflow_id))[0]
    assert fix.status == WorkflowStatus.CANCELLED
    assert [s.workflow_id for s in harness.calls(StageKind.CODE)] == [workflow_id]
    parent = await harness.repository.get_workflow(workflow_id)
    assert parent.status == WorkflowStatus.FAILED
    assert harness.calls(StageKind.TEST) == []


@pytest.mark.asyncio
async def test_close_cancels_running_fix(make_harness, tmp_path):
    started = asyncio.Event()

    async def plan(stage_input):
        if stage_input.workflow_type == "bugfix":
            started.set()
            await asyncio.Event().wait()
        return StageOutput(success=True)

    harness = make_harness(build_results=[BROKEN], handlers={StageKind.PLAN: plan})
    workflow_id = await _create(harness, tmp_path)

    await harness.orchestrator.run(workflow_id, wait=False)
    await asyncio.wait_for(started.wait(), timeout=5)
    assert harness.orchestrator.healer.pending == 1

    await harness.orchestrator.close()

    assert harness.orchestrator.healer.pending == 0
    assert harness.calls(StageKind.CODE)[-1].workflow_id == workflow_id

    fix = (await harness.repository.list_children(workflow_id))[0]
    assert fix.status == WorkflowStatus.CANCELLED
    fix_executions = await harness.repository.list_agent_executions(fix.id)
    assert [e.status for e in fix_executions] == [AgentStatus.FAILED]
    parent = await harness.repository.get_workflow(workflow_id)
    assert parent.status == WorkflowStatus.FAILED
    assert "fix_interrupted" in [e.event_type for e in await harness.repository.list_logs(workflow_id)]


@pytest.mark.asyncio
async def test_parent_finished_elsewhere_is_not_resumed(make_harness, tmp_path):
    async def plan(stage_input):
        if stage_input.workflow_type == "bugfix":
            fix = await harness.repository.get_workflow(stage_input.workflow_id)
            await harness.repository.update_workflow(
                fix.parent_workflow_id, status=WorkflowStatus.CANCELLED
            )
        return StageOutput(success=True)

    harness = make_harness(build_results=[BROKEN, FIXED], handlers={StageKind.PLAN: plan})
    workflow_id = await _create(harness, tmp_path)

    await harness.orchestrator.run(workflow_id)

    fix = (await harness.repository.list_children(workflow_id))[0]
    assert fix.status == WorkflowStatus.COMPLETED
    assert harness.calls(StageKind.TEST) == []
    parent = await harness.repository.get_workflow(workflow_id)
    assert parent.status == WorkflowStatus.CANCELLED
