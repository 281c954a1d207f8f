"""Core contracts for pipewright pipelines."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class PipewrightError(Exception):
    """Base class for orchestrator errors."""


class ConfigurationError(PipewrightError):
    """Raised when required configuration or credentials are missing."""


class WorkingDirectoryError(PipewrightError):
    """Raised when a pipeline is started without a usable working directory."""


class UnboundStageError(PipewrightError):
    """Raised when a stage has no capability bound in the registry."""


class StageFailed(PipewrightError):
    """Raised by capabilities to signal a stage failure."""


class CommandTimeoutError(PipewrightError):
    """Raised when an external command exceeds its timeout."""

    def __init__(self, command: str, timeout: float) -> None:
        super().__init__(f"{command} timed out after {timeout:g}s")
        self.command = command
        self.timeout = timeout


class VersionControlError(PipewrightError):
    """Raised when a git command fails."""


class StageKind(str, Enum):
    PLAN = "plan"
    CODE = "code"
    TEST = "test"
    REVIEW = "review"
    DOCUMENT = "document"
    SCAFFOLD = "scaffold"


class WorkflowType(str, Enum):
    FEATURE = "feature"
    BUGFIX = "bugfix"
    REFACTOR = "refactor"
    DOCUMENTATION = "documentation"
    REVIEW = "review"
    NEW_MODULE = "new_module"


class WorkflowStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PENDING_FIX = "pending_fix"
    COMPLETED = "completed"
    COMPLETED_WITH_WARNINGS = "completed_with_warnings"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {
        WorkflowStatus.COMPLETED,
        WorkflowStatus.COMPLETED_WITH_WARNINGS,
        WorkflowStatus.FAILED,
        WorkflowStatus.CANCELLED,
    }
)

STAGE_SEQUENCES: Dict[WorkflowType, tuple[StageKind, ...]] = {
    WorkflowType.FEATURE: (
        StageKind.PLAN,
        StageKind.CODE,
        StageKind.TEST,
        StageKind.REVIEW,
        StageKind.DOCUMENT,
    ),
    WorkflowType.BUGFIX: (
        StageKind.PLAN,
        StageKind.CODE,
        StageKind.TEST,
        StageKind.REVIEW,
    ),
    WorkflowType.REFACTOR: (
        StageKind.PLAN,
        StageKind.CODE,
        StageKind.TEST,
        StageKind.REVIEW,
        StageKind.DOCUMENT,
    ),
    WorkflowType.DOCUMENTATION: (StageKind.DOCUMENT,),
    WorkflowType.REVIEW: (StageKind.REVIEW,),
    WorkflowType.NEW_MODULE: (StageKind.SCAFFOLD,),
}

# Stages a fix sub-pipeline runs before re-verifying the build.
FIX_STAGES: tuple[StageKind, ...] = (StageKind.PLAN, StageKind.CODE)

# Stages a parent resumes with once a fix made the build pass again.
RESUME_STAGES: tuple[StageKind, ...] = (
    StageKind.TEST,
    StageKind.REVIEW,
    StageKind.DOCUMENT,
)


def stage_sequence(workflow_type: str | WorkflowType | None) -> tuple[StageKind, ...]:
    """Return the stage sequence for ``workflow_type``.

    Unknown or missing types run the feature sequence.
    """
    try:
        key = WorkflowType(workflow_type) if workflow_type else WorkflowType.FEATURE
    except ValueError:
        key = WorkflowType.FEATURE
    return STAGE_SEQUENCES[key]


class Artifact(BaseModel):
    """Something a stage produced: a plan, a diff, a report."""

    type: str
    content: str
    file_path: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class StageInput(BaseModel):
    """Input handed to a stage capability."""

    workflow_id: int
    workflow_type: str = WorkflowType.FEATURE.value
    stage: StageKind
    working_dir: str
    target_module: Optional[str] = None
    task_description: Optional[str] = None
    branch_name: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    context: Dict[str, Any] = Field(default_factory=dict)
    env: Dict[str, str] = Field(default_factory=dict)


class StageOutput(BaseModel):
    """Result returned by a stage capability."""

    success: bool
    artifacts: List[Artifact] = Field(default_factory=list)
    summary: str = ""
    suggestions: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class WorkflowDescriptor(BaseModel):
    """Everything the executor needs to run one workflow."""

    workflow_id: int
    workflow_type: str = WorkflowType.FEATURE.value
    working_dir: Optional[str] = None
    parent_workflow_id: Optional[int] = None
    target_module: Optional[str] = None
    task_description: Optional[str] = None
    branch_name: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    context: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_root(self) -> bool:
        return self.parent_workflow_id is None


class PipelineResult(BaseModel):
    """Aggregate outcome of a pipeline run."""

    success: bool
    artifacts: List[Artifact] = Field(default_factory=list)
    summary: str = ""


class SubTask(BaseModel):
    """One child workflow proposed by a structured plan."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    title: str
    description: str = ""
    workflow_type: WorkflowType = Field(
        default=WorkflowType.FEATURE, alias="workflowType"
    )
    target_module: Optional[str] = Field(default=None, alias="targetModule")
    priority: int = 0
    depends_on: List[int] = Field(default_factory=list, alias="dependsOn")
    metadata: Dict[str, Any] = Field(default_factory=dict)


class StructuredPlan(BaseModel):
    """Plan artifact that can be expanded into child workflows."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    objective: str = ""
    sub_tasks: List[SubTask] = Field(default_factory=list, alias="subTasks")
    dependencies: Optional[Any] = None
