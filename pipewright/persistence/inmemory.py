"""In-memory implementation of the workflow repository."""

from __future__ import annotations

from typing import Any, Dict, List

from ..contracts import StageKind
from .models import (
    MUTABLE_WORKFLOW_FIELDS,
    ActionStatus,
    AgentExecutionRecord,
    AgentStatus,
    ExecutionLogEntry,
    MessageType,
    WorkflowMessage,
    WorkflowRecord,
    utcnow,
)
from .repository import WorkflowRepository


def check_fields(fields: Dict[str, Any]) -> None:
    unknown = set(fields) - MUTABLE_WORKFLOW_FIELDS
    if unknown:
        raise ValueError(f"Cannot update workflow fields: {sorted(unknown)}")


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflow state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Records are copied on the way in
    and out so callers never share state with the store.
    """

    def __init__(self) -> None:
        self._workflows: Dict[int, WorkflowRecord] = {}
        self._executions: Dict[int, AgentExecutionRecord] = {}
        self._logs: List[ExecutionLogEntry] = []
        self._messages: Dict[int, WorkflowMessage] = {}
        self._next_id = {"workflow": 0, "execution": 0, "log": 0, "message": 0}

    def _allocate(self, kind: str) -> int:
        self._next_id[kind] += 1
        return self._next_id[kind]

    async def close(self) -> None:
        return None

    # ------------------------------------------------------------------
    async def create_workflow(self, workflow: WorkflowRecord) -> int:
        workflow_id = self._allocate("workflow")
        self._workflows[workflow_id] = workflow.model_copy(
            update={"id": workflow_id}, deep=True
        )
        return workflow_id

    async def get_workflow(self, workflow_id: int) -> WorkflowRecord | None:
        wf = self._workflows.get(workflow_id)
        return wf.model_copy(deep=True) if wf else None

    async def update_workflow(self, workflow_id: int, **fields: Any) -> None:
        check_fields(fields)
        wf = self._workflows.get(workflow_id)
        if wf:
            fields["updated_at"] = utcnow()
            self._workflows[workflow_id] = wf.model_copy(update=fields)

    async def list_workflows(self) -> list[WorkflowRecord]:
        return [wf.model_copy(deep=True) for wf in self._workflows.values()]

    async def list_children(self, parent_workflow_id: int) -> list[WorkflowRecord]:
        children = [
            wf.model_copy(deep=True)
            for wf in self._workflows.values()
            if wf.parent_workflow_id == parent_workflow_id
        ]
        return sorted(children, key=lambda wf: (wf.execution_order, wf.id))

    # ------------------------------------------------------------------
    async def create_agent_execution(
        self, workflow_id: int, agent_type: StageKind, input: dict
    ) -> int:
        execution_id = self._allocate("execution")
        self._executions[execution_id] = AgentExecutionRecord(
            id=execution_id,
            workflow_id=workflow_id,
            agent_type=agent_type,
            input=dict(input),
        )
        return execution_id

    async def complete_agent_execution(
        self,
        execution_id: int,
        status: AgentStatus,
        output: dict | None = None,
        error_message: str | None = None,
    ) -> None:
        record = self._executions.get(execution_id)
        if record:
            record.status = status
            record.output = output
            record.error_message = error_message
            record.completed_at = utcnow()

    async def list_agent_executions(self, workflow_id: int) -> list[AgentExecutionRecord]:
        return [
            r.model_copy(deep=True)
            for r in self._executions.values()
            if r.workflow_id == workflow_id
        ]

    # ------------------------------------------------------------------
    async def append_log(self, entry: ExecutionLogEntry) -> None:
        self._logs.append(entry.model_copy(update={"id": self._allocate("log")}))

    async def list_logs(self, workflow_id: int) -> list[ExecutionLogEntry]:
        return [e.model_copy() for e in self._logs if e.workflow_id == workflow_id]

    # ------------------------------------------------------------------
    async def add_message(self, message: WorkflowMessage) -> int:
        message_id = self._allocate("message")
        self._messages[message_id] = message.model_copy(
            update={"id": message_id}, deep=True
        )
        return message_id

    async def list_messages(self, workflow_id: int) -> list[WorkflowMessage]:
        messages = [
            m.model_copy(deep=True)
            for m in self._messages.values()
            if m.workflow_id == workflow_id
        ]
        return sorted(messages, key=lambda m: (m.created_at, m.id))

    async def get_pending_user_messages(self, workflow_id: int) -> list[WorkflowMessage]:
        return [
            m
            for m in await self.list_messages(workflow_id)
            if m.message_type == MessageType.USER
            and m.action_status == ActionStatus.PENDING
        ]

    async def set_message_status(self, message_id: int, status: ActionStatus) -> None:
        message = self._messages.get(message_id)
        if message:
            message.action_status = status
