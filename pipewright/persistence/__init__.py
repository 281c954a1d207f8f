"""Persistence layer for pipewright workflows."""

from __future__ import annotations

import os
from typing import Optional

from ..config import PipewrightConfig, load_config
from .inmemory import InMemoryWorkflowRepository
from .models import (
    ActionStatus,
    ActionType,
    AgentExecutionRecord,
    AgentStatus,
    ExecutionLogEntry,
    LogLevel,
    MessageType,
    WorkflowMessage,
    WorkflowRecord,
)
from .postgres import PostgresWorkflowRepository
from .repository import WorkflowRepository
from .sqlite import SQLiteWorkflowRepository


def get_repository(
    database_url: Optional[str] = None, config: Optional[PipewrightConfig] = None
) -> WorkflowRepository:
    """Factory function to obtain a workflow repository.

    The backend is selected from ``database_url``, which can be provided
    explicitly, via ``PIPEWRIGHT_DATABASE_URL`` or ``DATABASE_URL``, or from
    loaded configuration. When no database is configured an in-memory
    repository is returned. Every call builds a new repository; callers own
    its lifetime.
    """

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("PIPEWRIGHT_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or config.database_url
    )

    if not database_url:
        return InMemoryWorkflowRepository()

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        return SQLiteWorkflowRepository(path)
    if database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        return PostgresWorkflowRepository(database_url)
    raise ValueError(f"Unsupported database backend: {database_url}")


__all__ = [
    "ActionStatus",
    "ActionType",
    "AgentExecutionRecord",
    "AgentStatus",
    "ExecutionLogEntry",
    "LogLevel",
    "MessageType",
    "WorkflowMessage",
    "WorkflowRecord",
    "WorkflowRepository",
    "SQLiteWorkflowRepository",
    "PostgresWorkflowRepository",
    "InMemoryWorkflowRepository",
    "get_repository",
]
