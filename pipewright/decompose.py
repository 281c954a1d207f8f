"""Expansion of a structured plan artifact into child workflows."""

from __future__ import annotations

import json
import logging
from typing import List, Optional, Protocol, Sequence

import httpx
from pydantic import ValidationError

from .constants import STRUCTURED_PLAN_ARTIFACT
from .contracts import Artifact, StructuredPlan, SubTask
from .events import EventLog
from .persistence import WorkflowRecord, WorkflowRepository

logger = logging.getLogger(__name__)


class SubWorkflowCreator(Protocol):
    async def create(self, parent_id: int, sub_tasks: Sequence[SubTask]) -> List[int]:
        """Create child workflows and return their ids."""


class HttpSubWorkflowCreator:
    """Create children through the workflow service's HTTP API."""

    def __init__(
        self,
        api_url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self._client = client
        self.timeout = timeout

    async def create(self, parent_id: int, sub_tasks: Sequence[SubTask]) -> List[int]:
        url = f"{self.api_url}/api/workflows/{parent_id}/sub-workflows"
        body = {"subTasks": [t.model_dump(by_alias=True, mode="json") for t in sub_tasks]}
        if self._client is not None:
            response = await self._client.post(url, json=body)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, json=body)
        response.raise_for_status()
        return list(response.json()["data"]["childWorkflowIds"])


class RepositorySubWorkflowCreator:
    """Create children directly in the workflow repository."""

    def __init__(self, repository: WorkflowRepository) -> None:
        self.repository = repository

    async def create(self, parent_id: int, sub_tasks: Sequence[SubTask]) -> List[int]:
        parent = await self.repository.get_workflow(parent_id)
        if parent is None:
            raise LookupError(f"Workflow {parent_id} not found")
        ids: List[int] = []
        for index, task in enumerate(sub_tasks):
            description = task.title if not task.description else f"{task.title}\n\n{task.description}"
            ids.append(
                await self.repository.create_workflow(
                    WorkflowRecord(
                        parent_workflow_id=parent_id,
                        workflow_type=task.workflow_type.value,
                        branch_name=parent.branch_name,
                        target_module=task.target_module or parent.target_module,
                        task_description=description,
                        working_dir=parent.working_dir,
                        execution_order=index,
                        workflow_depth=parent.workflow_depth + 1,
                        auto_execute_children=False,
                        plan_json={
                            "depends_on": task.depends_on,
                            "priority": task.priority,
                            "metadata": task.metadata,
                            **(task.model_extra or {}),
                        },
                    )
                )
            )
        return ids


def find_structured_plan(artifacts: Sequence[Artifact]) -> Optional[Artifact]:
    return next((a for a in artifacts if a.type == STRUCTURED_PLAN_ARTIFACT), None)


class SubWorkflowDecomposer:
    """Turns a ``structured_plan`` artifact into child workflows. Never raises."""

    def __init__(
        self,
        repository: WorkflowRepository,
        creator: SubWorkflowCreator,
        events: EventLog,
    ) -> None:
        self.repository = repository
        self.creator = creator
        self.events = events

    async def handle(self, workflow_id: int, artifacts: Sequence[Artifact]) -> List[int]:
        artifact = find_structured_plan(artifacts)
        if artifact is None:
            return []
        try:
            return await self._handle(workflow_id, artifact)
        except Exception as exc:
            logger.warning(f"Sub-workflow creation failed for workflow {workflow_id}: {exc}")
            await self.events.error(workflow_id, "sub_workflow_creation_failed", str(exc))
            return []

    async def _handle(self, workflow_id: int, artifact: Artifact) -> List[int]:
        try:
            plan = StructuredPlan.model_validate(json.loads(artifact.content))
        except (json.JSONDecodeError, ValidationError) as exc:
            raise ValueError(f"Invalid structured plan: {exc}") from exc

        record = await self.repository.get_workflow(workflow_id)
        if record is not None and record.auto_execute_children is False:
            await self.events.info(
                workflow_id,
                "sub_workflow_skipped",
                "Automatic sub-workflow creation is disabled for this workflow",
            )
            return []

        await self.repository.update_workflow(
            workflow_id, plan_json=plan.model_dump(by_alias=True, mode="json")
        )
        if not plan.sub_tasks:
            return []

        child_ids = await self.creator.create(workflow_id, plan.sub_tasks)
        await self.events.info(
            workflow_id,
            "sub_workflows_created",
            f"Created {len(child_ids)} sub-workflows",
            child_workflow_ids=child_ids,
        )
        return child_ids
