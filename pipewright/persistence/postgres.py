"""PostgreSQL implementation of the workflow repository."""

from __future__ import annotations

import json
from enum import Enum
from typing import Any

import asyncpg

from ..contracts import StageKind
from .inmemory import check_fields
from .models import (
    ActionStatus,
    AgentExecutionRecord,
    AgentStatus,
    ExecutionLogEntry,
    MessageType,
    WorkflowMessage,
    WorkflowRecord,
    utcnow,
)
from .repository import WorkflowRepository
from .sqlite import MESSAGE_COLUMNS, WORKFLOW_COLUMNS

JSON_COLUMNS = frozenset({"plan_json", "metadata", "input", "output", "data"})


def _encode(name: str, value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if name in JSON_COLUMNS and value is not None:
        return json.dumps(value)
    return value


def _decode(row: asyncpg.Record) -> dict[str, Any]:
    data = dict(row)
    for name in JSON_COLUMNS & data.keys():
        if isinstance(data[name], str):
            data[name] = json.loads(data[name])
    return data


class PostgresWorkflowRepository(WorkflowRepository):
    """Persist workflow state using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                id SERIAL PRIMARY KEY,
                parent_workflow_id INTEGER REFERENCES workflows(id),
                workflow_type TEXT NOT NULL,
                status TEXT NOT NULL,
                branch_name TEXT,
                target_module TEXT,
                task_description TEXT,
                working_dir TEXT,
                execution_order INTEGER NOT NULL DEFAULT 0,
                workflow_depth INTEGER NOT NULL DEFAULT 0,
                is_paused BOOLEAN NOT NULL DEFAULT FALSE,
                pause_reason TEXT,
                pause_requested_at TIMESTAMPTZ,
                checkpoint_commit VARCHAR(40),
                checkpoint_created_at TIMESTAMPTZ,
                auto_execute_children BOOLEAN,
                plan_json JSONB,
                created_at TIMESTAMPTZ NOT NULL,
                started_at TIMESTAMPTZ,
                completed_at TIMESTAMPTZ,
                updated_at TIMESTAMPTZ NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS agent_executions (
                id SERIAL PRIMARY KEY,
                workflow_id INTEGER NOT NULL REFERENCES workflows(id),
                agent_type TEXT NOT NULL,
                status TEXT NOT NULL,
                input JSONB,
                output JSONB,
                error_message TEXT,
                started_at TIMESTAMPTZ NOT NULL,
                completed_at TIMESTAMPTZ
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS execution_logs (
                id SERIAL PRIMARY KEY,
                workflow_id INTEGER NOT NULL,
                log_level TEXT NOT NULL,
                event_type TEXT NOT NULL,
                message TEXT NOT NULL,
                data JSONB,
                created_at TIMESTAMPTZ NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_messages (
                id SERIAL PRIMARY KEY,
                workflow_id INTEGER NOT NULL REFERENCES workflows(id),
                agent_execution_id INTEGER,
                message_type TEXT NOT NULL,
                agent_type TEXT,
                content TEXT NOT NULL,
                action_type TEXT NOT NULL,
                action_status TEXT NOT NULL,
                metadata JSONB,
                created_at TIMESTAMPTZ NOT NULL
            )
            """
        )

    async def close(self) -> None:
        return None

    async def _fetchval(self, query: str, *params: Any) -> Any:
        conn = await self._connect()
        try:
            return await conn.fetchval(query, *params)
        finally:
            await conn.close()

    async def _execute(self, query: str, *params: Any) -> None:
        conn = await self._connect()
        try:
            await conn.execute(query, *params)
        finally:
            await conn.close()

    async def _fetch(self, query: str, *params: Any) -> list[asyncpg.Record]:
        conn = await self._connect()
        try:
            return await conn.fetch(query, *params)
        finally:
            await conn.close()

    # ------------------------------------------------------------------
    async def create_workflow(self, workflow: WorkflowRecord) -> int:
        placeholders = ", ".join(f"${i}" for i in range(1, len(WORKFLOW_COLUMNS) + 1))
        return await self._fetchval(
            f"INSERT INTO workflows ({', '.join(WORKFLOW_COLUMNS)}) VALUES ({placeholders}) RETURNING id",
            *[_encode(c, getattr(workflow, c)) for c in WORKFLOW_COLUMNS],
        )

    async def get_workflow(self, workflow_id: int) -> WorkflowRecord | None:
        rows = await self._fetch("SELECT * FROM workflows WHERE id = $1", workflow_id)
        return WorkflowRecord(**_decode(rows[0])) if rows else None

    async def update_workflow(self, workflow_id: int, **fields: Any) -> None:
        check_fields(fields)
        fields["updated_at"] = utcnow()
        assignments = ", ".join(
            f"{name} = ${i}" for i, name in enumerate(fields, start=1)
        )
        await self._execute(
            f"UPDATE workflows SET {assignments} WHERE id = ${len(fields) + 1}",
            *[_encode(k, v) for k, v in fields.items()],
            workflow_id,
        )

    async def list_workflows(self) -> list[WorkflowRecord]:
        rows = await self._fetch("SELECT * FROM workflows ORDER BY id")
        return [WorkflowRecord(**_decode(r)) for r in rows]

    async def list_children(self, parent_workflow_id: int) -> list[WorkflowRecord]:
        rows = await self._fetch(
            "SELECT * FROM workflows WHERE parent_workflow_id = $1 ORDER BY execution_order, id",
            parent_workflow_id,
        )
        return [WorkflowRecord(**_decode(r)) for r in rows]

    # ------------------------------------------------------------------
    async def create_agent_execution(
        self, workflow_id: int, agent_type: StageKind, input: dict
    ) -> int:
        return await self._fetchval(
            "INSERT INTO agent_executions (workflow_id, agent_type, status, input, started_at) VALUES ($1, $2, $3, $4, $5) RETURNING id",
            workflow_id,
            agent_type.value,
            AgentStatus.RUNNING.value,
            json.dumps(input),
            utcnow(),
        )

    async def complete_agent_execution(
        self,
        execution_id: int,
        status: AgentStatus,
        output: dict | None = None,
        error_message: str | None = None,
    ) -> None:
        await self._execute(
            """
            UPDATE agent_executions
            SET status = $1, output = $2, error_message = $3, completed_at = $4
            WHERE id = $5
            """,
            status.value,
            _encode("output", output),
            error_message,
            utcnow(),
            execution_id,
        )

    async def list_agent_executions(self, workflow_id: int) -> list[AgentExecutionRecord]:
        rows = await self._fetch(
            "SELECT * FROM agent_executions WHERE workflow_id = $1 ORDER BY id",
            workflow_id,
        )
        records = []
        for r in rows:
            data = _decode(r)
            data["input"] = data["input"] or {}
            records.append(AgentExecutionRecord(**data))
        return records

    # ------------------------------------------------------------------
    async def append_log(self, entry: ExecutionLogEntry) -> None:
        await self._execute(
            "INSERT INTO execution_logs (workflow_id, log_level, event_type, message, data, created_at) VALUES ($1, $2, $3, $4, $5, $6)",
            entry.workflow_id,
            entry.level.value,
            entry.event_type,
            entry.message,
            _encode("data", entry.data),
            entry.created_at,
        )

    async def list_logs(self, workflow_id: int) -> list[ExecutionLogEntry]:
        rows = await self._fetch(
            "SELECT * FROM execution_logs WHERE workflow_id = $1 ORDER BY id",
            workflow_id,
        )
        entries = []
        for r in rows:
            data = _decode(r)
            data["level"] = data.pop("log_level")
            entries.append(ExecutionLogEntry(**data))
        return entries

    # ------------------------------------------------------------------
    async def add_message(self, message: WorkflowMessage) -> int:
        placeholders = ", ".join(f"${i}" for i in range(1, len(MESSAGE_COLUMNS) + 1))
        return await self._fetchval(
            f"INSERT INTO workflow_messages ({', '.join(MESSAGE_COLUMNS)}) VALUES ({placeholders}) RETURNING id",
            *[_encode(c, getattr(message, c)) for c in MESSAGE_COLUMNS],
        )

    async def list_messages(self, workflow_id: int) -> list[WorkflowMessage]:
        rows = await self._fetch(
            "SELECT * FROM workflow_messages WHERE workflow_id = $1 ORDER BY created_at, id",
            workflow_id,
        )
        return [WorkflowMessage(**_decode(r)) for r in rows]

    async def get_pending_user_messages(self, workflow_id: int) -> list[WorkflowMessage]:
        rows = await self._fetch(
            """
            SELECT * FROM workflow_messages
            WHERE workflow_id = $1 AND message_type = $2 AND action_status = $3
            ORDER BY created_at, id
            """,
            workflow_id,
            MessageType.USER.value,
            ActionStatus.PENDING.value,
        )
        return [WorkflowMessage(**_decode(r)) for r in rows]

    async def set_message_status(self, message_id: int, status: ActionStatus) -> None:
        await self._execute(
            "UPDATE workflow_messages SET action_status = $1 WHERE id = $2",
            status.value,
            message_id,
        )
