"""Data models for persisted workflow state."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..contracts import StageKind, WorkflowStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AgentStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class LogLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class MessageType(str, Enum):
    USER = "user"
    AGENT = "agent"
    SYSTEM = "system"


class ActionType(str, Enum):
    COMMENT = "comment"
    INSTRUCTION = "instruction"
    PAUSE = "pause"
    RESUME = "resume"
    CANCEL = "cancel"
    REDIRECT = "redirect"


class ActionStatus(str, Enum):
    PENDING = "pending"
    ACKNOWLEDGED = "acknowledged"
    PROCESSED = "processed"
    IGNORED = "ignored"


# Fields the executor, checkpoint logic and interrupt controller may change.
MUTABLE_WORKFLOW_FIELDS = frozenset(
    {
        "status",
        "branch_name",
        "task_description",
        "working_dir",
        "is_paused",
        "pause_reason",
        "pause_requested_at",
        "checkpoint_commit",
        "checkpoint_created_at",
        "auto_execute_children",
        "plan_json",
        "started_at",
        "completed_at",
    }
)


class WorkflowRecord(BaseModel):
    """Persisted workflow instance."""

    id: Optional[int] = None
    parent_workflow_id: Optional[int] = None
    workflow_type: str = "feature"
    status: WorkflowStatus = WorkflowStatus.PENDING
    branch_name: Optional[str] = None
    target_module: Optional[str] = None
    task_description: Optional[str] = None
    working_dir: Optional[str] = None
    execution_order: int = 0
    workflow_depth: int = 0
    is_paused: bool = False
    pause_reason: Optional[str] = None
    pause_requested_at: Optional[datetime] = None
    checkpoint_commit: Optional[str] = None
    checkpoint_created_at: Optional[datetime] = None
    auto_execute_children: Optional[bool] = None
    plan_json: Optional[dict[str, Any]] = None
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_root(self) -> bool:
        return self.parent_workflow_id is None


class AgentExecutionRecord(BaseModel):
    """Record of one stage attempt."""

    id: Optional[int] = None
    workflow_id: int
    agent_type: StageKind
    status: AgentStatus = AgentStatus.RUNNING
    input: dict[str, Any] = Field(default_factory=dict)
    output: Optional[dict[str, Any]] = None
    error_message: Optional[str] = None
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None


class ExecutionLogEntry(BaseModel):
    """Append-only diagnostic event."""

    id: Optional[int] = None
    workflow_id: int
    level: LogLevel = LogLevel.INFO
    event_type: str
    message: str
    data: Optional[dict[str, Any]] = None
    created_at: datetime = Field(default_factory=utcnow)


class WorkflowMessage(BaseModel):
    """Conversation entry; user messages may carry an interrupt action."""

    id: Optional[int] = None
    workflow_id: int
    agent_execution_id: Optional[int] = None
    message_type: MessageType
    agent_type: Optional[str] = None
    content: str
    action_type: ActionType = ActionType.COMMENT
    action_status: ActionStatus = ActionStatus.PENDING
    metadata: Optional[dict[str, Any]] = None
    created_at: datetime = Field(default_factory=utcnow)
