"""Helpers for the workflow conversation: posting messages and raising signals.

User messages are created ``pending`` so the interrupt controller can pick
them up at the next stage boundary. Agent and system messages are informational
and are stored as ``processed``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .persistence import (
    ActionStatus,
    ActionType,
    MessageType,
    WorkflowMessage,
    WorkflowRepository,
)
from .persistence.models import utcnow

logger = logging.getLogger(__name__)


async def post_user_message(
    repository: WorkflowRepository,
    workflow_id: int,
    content: str,
    action_type: ActionType = ActionType.COMMENT,
    metadata: Optional[Dict[str, Any]] = None,
) -> int:
    return await repository.add_message(
        WorkflowMessage(
            workflow_id=workflow_id,
            message_type=MessageType.USER,
            content=content,
            action_type=action_type,
            action_status=ActionStatus.PENDING,
            metadata=metadata,
        )
    )


async def post_system_message(
    repository: WorkflowRepository,
    workflow_id: int,
    content: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> int:
    return await repository.add_message(
        WorkflowMessage(
            workflow_id=workflow_id,
            message_type=MessageType.SYSTEM,
            content=content,
            action_status=ActionStatus.PROCESSED,
            metadata=metadata,
        )
    )


async def post_agent_comment(
    repository: WorkflowRepository,
    workflow_id: int,
    agent_type: str,
    content: str,
    agent_execution_id: Optional[int] = None,
) -> int:
    return await repository.add_message(
        WorkflowMessage(
            workflow_id=workflow_id,
            agent_execution_id=agent_execution_id,
            message_type=MessageType.AGENT,
            agent_type=agent_type,
            content=content,
            action_status=ActionStatus.PROCESSED,
        )
    )


async def pause_workflow(
    repository: WorkflowRepository, workflow_id: int, reason: Optional[str] = None
) -> None:
    """Raise the paused flag; the executor stops at its next stage boundary."""
    await repository.update_workflow(
        workflow_id,
        is_paused=True,
        pause_reason=reason,
        pause_requested_at=utcnow(),
    )
    await post_system_message(
        repository, workflow_id, f"Workflow paused: {reason or 'requested by user'}"
    )
    logger.info(f"Paused workflow {workflow_id}")


async def unpause_workflow(repository: WorkflowRepository, workflow_id: int) -> None:
    await repository.update_workflow(
        workflow_id, is_paused=False, pause_reason=None, pause_requested_at=None
    )
    await post_system_message(repository, workflow_id, "Workflow resumed")
    logger.info(f"Resumed workflow {workflow_id}")


async def request_cancel(
    repository: WorkflowRepository, workflow_id: int, reason: Optional[str] = None
) -> int:
    return await post_user_message(
        repository,
        workflow_id,
        reason or "Cancel requested",
        action_type=ActionType.CANCEL,
    )


async def send_instruction(
    repository: WorkflowRepository, workflow_id: int, content: str
) -> int:
    return await post_user_message(
        repository, workflow_id, content, action_type=ActionType.INSTRUCTION
    )


async def root_workflow_id(repository: WorkflowRepository, workflow_id: int) -> int:
    """Follow parent links up to the root of ``workflow_id``'s tree."""
    seen = set()
    current = workflow_id
    while current not in seen:
        seen.add(current)
        record = await repository.get_workflow(current)
        if record is None or record.parent_workflow_id is None:
            return current
        current = record.parent_workflow_id
    raise ValueError(f"Workflow {workflow_id} has a cyclic parent chain")


async def workflow_tree_ids(repository: WorkflowRepository, root_id: int) -> List[int]:
    """Return ``root_id`` and all of its descendants, breadth first."""
    ids: List[int] = []
    queue = [root_id]
    while queue:
        current = queue.pop(0)
        if current in ids:
            continue
        ids.append(current)
        queue.extend(child.id for child in await repository.list_children(current))
    return ids
