"""Stage capabilities and their registry."""

from .agent import AgentStage, build_prompt, default_registry
from .base import FunctionStage, StageCapability
from .registry import StageRegistry

__all__ = [
    "AgentStage",
    "FunctionStage",
    "StageCapability",
    "StageRegistry",
    "build_prompt",
    "default_registry",
]
