"""Fire-and-forget writer for the per-workflow execution log."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from .persistence import ExecutionLogEntry, LogLevel, WorkflowRepository

logger = logging.getLogger(__name__)
diagnostics = logging.getLogger("pipewright.diagnostics")

_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


class EventLog:
    """Append execution-log entries without ever failing the caller."""

    def __init__(self, repository: WorkflowRepository) -> None:
        self._repository = repository

    async def emit(
        self,
        workflow_id: int,
        level: LogLevel | str,
        event_type: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        level = LogLevel(level)
        logger.log(_LEVELS[level], f"[workflow {workflow_id}] {event_type}: {message}")
        try:
            await self._repository.append_log(
                ExecutionLogEntry(
                    workflow_id=workflow_id,
                    level=level,
                    event_type=event_type,
                    message=message,
                    data=data,
                )
            )
        except Exception as exc:
            diagnostics.warning(
                f"Failed to write {event_type} log for workflow {workflow_id}: {exc}"
            )

    async def info(self, workflow_id: int, event_type: str, message: str, **data: Any) -> None:
        await self.emit(workflow_id, LogLevel.INFO, event_type, message, data or None)

    async def warning(self, workflow_id: int, event_type: str, message: str, **data: Any) -> None:
        await self.emit(workflow_id, LogLevel.WARNING, event_type, message, data or None)

    async def error(self, workflow_id: int, event_type: str, message: str, **data: Any) -> None:
        await self.emit(workflow_id, LogLevel.ERROR, event_type, message, data or None)
