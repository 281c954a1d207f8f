"""Stage-boundary handling of pause, cancel and instruction signals.

Signals arrive either as pending user messages carrying an action or as the
workflow's paused flag. At most one signal is handled per boundary: the oldest
actionable message, else the flag.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from .config import InterruptConfig
from .contracts import StageKind, WorkflowStatus
from .events import EventLog
from .messages import post_agent_comment, post_system_message
from .persistence import (
    ActionStatus,
    ActionType,
    WorkflowMessage,
    WorkflowRepository,
)
from .persistence.models import utcnow

logger = logging.getLogger(__name__)

ACTIONABLE = (
    ActionType.PAUSE,
    ActionType.CANCEL,
    ActionType.INSTRUCTION,
    ActionType.REDIRECT,
)


class InterruptOutcome(str, Enum):
    PROCEED = "proceed"
    CANCEL = "cancel"


class InterruptController:
    """Checks for and acts on interrupt signals between stages."""

    def __init__(
        self,
        repository: WorkflowRepository,
        events: EventLog,
        config: Optional[InterruptConfig] = None,
    ) -> None:
        self.repository = repository
        self.events = events
        self.config = config or InterruptConfig()
        self._wakeups: Dict[int, asyncio.Event] = {}
        self._closed = False

    async def check(self, workflow_id: int, upcoming_stage: StageKind) -> InterruptOutcome:
        try:
            return await self._check(workflow_id, upcoming_stage)
        except Exception as exc:
            logger.warning(f"Interrupt check failed for workflow {workflow_id}: {exc}")
            return InterruptOutcome.PROCEED

    async def _check(self, workflow_id: int, upcoming_stage: StageKind) -> InterruptOutcome:
        record = await self.repository.get_workflow(workflow_id)
        paused = record is not None and record.is_paused
        message = await self._next_message(workflow_id, paused)
        if message is None:
            if not paused:
                return InterruptOutcome.PROCEED
            return await self._pause(
                workflow_id,
                upcoming_stage,
                None,
                record.pause_reason,
                record.pause_requested_at or utcnow(),
            )

        if message.action_type == ActionType.PAUSE:
            return await self._pause(
                workflow_id, upcoming_stage, message, message.content, message.created_at
            )
        if message.action_type == ActionType.CANCEL:
            return await self._cancel(workflow_id, upcoming_stage, message)
        if message.action_type == ActionType.INSTRUCTION:
            return await self._instruction(workflow_id, upcoming_stage, message)
        return await self._redirect(workflow_id, message)

    async def _next_message(self, workflow_id: int, paused: bool) -> Optional[WorkflowMessage]:
        for message in await self.repository.get_pending_user_messages(workflow_id):
            if message.action_type == ActionType.RESUME and not paused:
                # Nothing to resume; a later pause must not consume it.
                await self.repository.set_message_status(message.id, ActionStatus.IGNORED)
                continue
            if message.action_type in ACTIONABLE:
                return message
        return None

    # ------------------------------------------------------------------
    async def _pause(
        self,
        workflow_id: int,
        stage: StageKind,
        message: Optional[WorkflowMessage],
        reason: Optional[str],
        requested_at: datetime,
    ) -> InterruptOutcome:
        reason = reason or "requested by user"
        if message is not None:
            await self.repository.set_message_status(message.id, ActionStatus.ACKNOWLEDGED)
        await post_system_message(
            self.repository,
            workflow_id,
            f"Workflow paused before {stage.value} stage: {reason}",
        )
        await self.repository.update_workflow(
            workflow_id,
            is_paused=True,
            pause_reason=reason,
            pause_requested_at=requested_at,
        )
        await self.events.info(workflow_id, "workflow_paused", reason, stage=stage.value)

        resumed = await self._wait_for_resume(workflow_id)
        if self._closed and not resumed:
            logger.info(f"Controller closed while workflow {workflow_id} was paused")
            return InterruptOutcome.CANCEL

        if resumed:
            await post_system_message(
                self.repository, workflow_id, f"Resuming with {stage.value} stage"
            )
        else:
            await self.repository.update_workflow(
                workflow_id, is_paused=False, pause_reason=None, pause_requested_at=None
            )
            await self.events.warning(
                workflow_id,
                "pause_timeout",
                f"Pause exceeded {self.config.pause_timeout:g}s; resuming automatically",
            )
        if message is not None:
            await self.repository.set_message_status(message.id, ActionStatus.PROCESSED)
        return InterruptOutcome.PROCEED

    async def _wait_for_resume(self, workflow_id: int) -> bool:
        """Block until the paused flag clears (True) or the ceiling passes (False)."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.pause_timeout
        wakeup = self._wakeups.setdefault(workflow_id, asyncio.Event())
        try:
            while not self._closed:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    return False
                try:
                    await asyncio.wait_for(
                        wakeup.wait(), min(self.config.poll_interval, remaining)
                    )
                except asyncio.TimeoutError:
                    pass
                wakeup.clear()
                if await self._resume_requested(workflow_id):
                    return True
            return False
        finally:
            self._wakeups.pop(workflow_id, None)

    async def _resume_requested(self, workflow_id: int) -> bool:
        try:
            record = await self.repository.get_workflow(workflow_id)
            if record is not None and not record.is_paused:
                return True
            since = record.pause_requested_at if record is not None else None
            for message in await self.repository.get_pending_user_messages(workflow_id):
                if message.action_type != ActionType.RESUME:
                    continue
                if since is not None and message.created_at < since:
                    await self.repository.set_message_status(message.id, ActionStatus.IGNORED)
                    continue
                await self.repository.set_message_status(message.id, ActionStatus.PROCESSED)
                await self.repository.update_workflow(
                    workflow_id, is_paused=False, pause_reason=None, pause_requested_at=None
                )
                return True
        except Exception as exc:
            logger.warning(f"Pause poll failed for workflow {workflow_id}: {exc}")
        return False

    def close(self) -> None:
        """Release every paused wait; they stop the pipeline without resuming."""
        self._closed = True
        for wakeup in self._wakeups.values():
            wakeup.set()

    # ------------------------------------------------------------------
    async def _cancel(
        self, workflow_id: int, stage: StageKind, message: WorkflowMessage
    ) -> InterruptOutcome:
        await self.repository.set_message_status(message.id, ActionStatus.ACKNOWLEDGED)
        await post_system_message(
            self.repository,
            workflow_id,
            f"Workflow cancelled before {stage.value} stage: {message.content}",
        )
        await self.repository.set_message_status(message.id, ActionStatus.PROCESSED)
        await self.repository.update_workflow(
            workflow_id, status=WorkflowStatus.CANCELLED, completed_at=utcnow()
        )
        await self.events.info(workflow_id, "workflow_cancelled", message.content, stage=stage.value)
        return InterruptOutcome.CANCEL

    async def _instruction(
        self, workflow_id: int, stage: StageKind, message: WorkflowMessage
    ) -> InterruptOutcome:
        await self.repository.set_message_status(message.id, ActionStatus.ACKNOWLEDGED)
        await post_agent_comment(
            self.repository,
            workflow_id,
            stage.value,
            f"Acknowledged instruction for the {stage.value} stage: {message.content}",
        )
        await self.repository.set_message_status(message.id, ActionStatus.PROCESSED)
        return InterruptOutcome.PROCEED

    async def _redirect(self, workflow_id: int, message: WorkflowMessage) -> InterruptOutcome:
        # Redirect has no defined semantics yet; record that it was seen.
        await self.repository.set_message_status(message.id, ActionStatus.IGNORED)
        await self.events.warning(
            workflow_id, "redirect_ignored", "Redirect requests are not supported", message_id=message.id
        )
        return InterruptOutcome.PROCEED
