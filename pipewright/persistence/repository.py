"""Repository abstraction for workflow state persistence."""

from __future__ import annotations

from typing import Any, Protocol

from ..contracts import StageKind
from .models import (
    ActionStatus,
    AgentExecutionRecord,
    AgentStatus,
    ExecutionLogEntry,
    WorkflowMessage,
    WorkflowRecord,
)


class WorkflowRepository(Protocol):
    """Protocol for workflow state persistence backends."""

    async def close(self) -> None:
        """Release connections."""

    # Workflows ---------------------------------------------------------
    async def create_workflow(self, workflow: WorkflowRecord) -> int:
        """Persist a new workflow and return its id."""

    async def get_workflow(self, workflow_id: int) -> WorkflowRecord | None:
        """Retrieve the workflow by id."""

    async def update_workflow(self, workflow_id: int, **fields: Any) -> None:
        """Update the given columns and bump ``updated_at``."""

    async def list_workflows(self) -> list[WorkflowRecord]:
        """Return all persisted workflows."""

    async def list_children(self, parent_workflow_id: int) -> list[WorkflowRecord]:
        """Return direct children ordered by ``execution_order``."""

    # Agent executions --------------------------------------------------
    async def create_agent_execution(
        self, workflow_id: int, agent_type: StageKind, input: dict
    ) -> int:
        """Record the start of a stage attempt."""

    async def complete_agent_execution(
        self,
        execution_id: int,
        status: AgentStatus,
        output: dict | None = None,
        error_message: str | None = None,
    ) -> None:
        """Finalize a stage attempt."""

    async def list_agent_executions(self, workflow_id: int) -> list[AgentExecutionRecord]:
        """Return a workflow's stage attempts in creation order."""

    # Execution logs ----------------------------------------------------
    async def append_log(self, entry: ExecutionLogEntry) -> None:
        """Append a diagnostic event."""

    async def list_logs(self, workflow_id: int) -> list[ExecutionLogEntry]:
        """Return a workflow's events in creation order."""

    # Messages ----------------------------------------------------------
    async def add_message(self, message: WorkflowMessage) -> int:
        """Persist a conversation message and return its id."""

    async def list_messages(self, workflow_id: int) -> list[WorkflowMessage]:
        """Return a workflow's messages in creation order."""

    async def get_pending_user_messages(self, workflow_id: int) -> list[WorkflowMessage]:
        """Return pending user messages, oldest first."""

    async def set_message_status(self, message_id: int, status: ActionStatus) -> None:
        """Move a message along pending → acknowledged → processed."""
