"""pipewright: self-healing pipeline orchestration for coding agents."""

from .capabilities import AgentStage, FunctionStage, StageRegistry
from .contracts import (
    Artifact,
    PipelineResult,
    StageInput,
    StageKind,
    StageOutput,
    WorkflowDescriptor,
    WorkflowStatus,
    WorkflowType,
)
from .executor import PipelineExecutor
from .healing import SelfHealingCoordinator
from .orchestrator import Orchestrator, open_orchestrator
from .persistence import get_repository

__version__ = "0.1.0"
__all__ = [
    "AgentStage",
    "Artifact",
    "FunctionStage",
    "Orchestrator",
    "PipelineExecutor",
    "PipelineResult",
    "SelfHealingCoordinator",
    "StageInput",
    "StageKind",
    "StageOutput",
    "StageRegistry",
    "WorkflowDescriptor",
    "WorkflowStatus",
    "WorkflowType",
    "get_repository",
    "open_orchestrator",
]
