"""Adapter that runs a stage through a pydantic-ai agent."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel
from pydantic_ai import Agent

from ..config import STAGE_MODEL_SUFFIXES
from ..constants import STRUCTURED_PLAN_ARTIFACT
from ..contracts import (
    Artifact,
    ConfigurationError,
    StageInput,
    StageFailed,
    StageKind,
    StageOutput,
    StructuredPlan,
)
from .base import StageCapability
from .registry import StageRegistry

logger = logging.getLogger(__name__)

DEFAULT_INSTRUCTIONS: Dict[StageKind, str] = {
    StageKind.PLAN: (
        "You are a planning agent. Break the task into concrete implementation "
        "steps for the code in the working directory."
    ),
    StageKind.CODE: (
        "You are a coding agent. Implement the planned change in the working "
        "directory and summarise the files you touched."
    ),
    StageKind.TEST: "You are a testing agent. Write and run tests for the change.",
    StageKind.REVIEW: (
        "You are a review agent. Review the change for correctness and list "
        "concrete suggestions."
    ),
    StageKind.DOCUMENT: "You are a documentation agent. Update docs for the change.",
    StageKind.SCAFFOLD: "You are a scaffolding agent. Create the skeleton of a new module.",
}


def build_prompt(stage_input: StageInput) -> str:
    lines = [
        f"Stage: {stage_input.stage.value}",
        f"Workflow #{stage_input.workflow_id} ({stage_input.workflow_type})",
        f"Working directory: {stage_input.working_dir}",
    ]
    if stage_input.target_module:
        lines.append(f"Target module: {stage_input.target_module}")
    if stage_input.branch_name:
        lines.append(f"Branch: {stage_input.branch_name}")
    if stage_input.task_description:
        lines.append(f"Task: {stage_input.task_description}")
    if stage_input.context:
        lines.append("Context:")
        lines.append(json.dumps(stage_input.context, indent=2, default=str))
    return "\n".join(lines)


class AgentStage:
    """Wrap a pydantic-ai :class:`Agent` (or anything with ``async run``).

    When no agent is supplied, one is created per invocation for the model
    named in the stage environment (``OPENROUTER_MODEL_<STAGE>``).
    """

    def __init__(
        self,
        agent: Any = None,
        instructions: Optional[str] = None,
        provider_prefix: str = "openrouter",
    ) -> None:
        self.agent = agent
        self.instructions = instructions
        self.provider_prefix = provider_prefix

    def _agent_for(self, stage_input: StageInput) -> Any:
        if self.agent is not None:
            return self.agent
        suffix = STAGE_MODEL_SUFFIXES[stage_input.stage]
        model = stage_input.env.get(f"OPENROUTER_MODEL_{suffix}")
        if not model:
            raise ConfigurationError(
                f"No model configured for stage '{stage_input.stage.value}'"
            )
        instructions = self.instructions or DEFAULT_INSTRUCTIONS[stage_input.stage]
        return Agent(f"{self.provider_prefix}:{model}", system_prompt=instructions)

    async def invoke(self, stage_input: StageInput) -> StageOutput:
        agent = self._agent_for(stage_input)
        try:
            result = await agent.run(build_prompt(stage_input), deps=stage_input)
        except Exception as exc:
            raise StageFailed(f"{stage_input.stage.value} agent failed: {exc}") from exc
        output = result.output if hasattr(result, "output") else result
        logger.debug(f"Agent for stage {stage_input.stage.value} returned {type(output).__name__}")
        return self._to_stage_output(stage_input.stage, output)

    @staticmethod
    def _to_stage_output(stage: StageKind, output: Any) -> StageOutput:
        if isinstance(output, StageOutput):
            return output
        if isinstance(output, StructuredPlan):
            return StageOutput(
                success=True,
                artifacts=[
                    Artifact(
                        type=STRUCTURED_PLAN_ARTIFACT,
                        content=output.model_dump_json(by_alias=True),
                    )
                ],
                summary=output.objective or f"{stage.value} produced a structured plan",
            )
        if isinstance(output, BaseModel):
            content = output.model_dump_json()
        elif isinstance(output, (dict, list)):
            content = json.dumps(output, default=str)
        else:
            content = "" if output is None else str(output)
        return StageOutput(
            success=True,
            artifacts=[Artifact(type=f"{stage.value}_output", content=content)],
            summary=content[:200],
        )


def default_registry(
    overrides: Optional[Mapping[StageKind, StageCapability]] = None,
) -> StageRegistry:
    """Registry binding every stage kind to an :class:`AgentStage`."""
    bindings: Dict[StageKind, StageCapability] = {
        kind: AgentStage() for kind in StageKind
    }
    bindings.update(overrides or {})
    return StageRegistry(bindings)
