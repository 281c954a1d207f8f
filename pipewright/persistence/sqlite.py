"""SQLite implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

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

WORKFLOW_COLUMNS = (
    "parent_workflow_id",
    "workflow_type",
    "status",
    "branch_name",
    "target_module",
    "task_description",
    "working_dir",
    "execution_order",
    "workflow_depth",
    "is_paused",
    "pause_reason",
    "pause_requested_at",
    "checkpoint_commit",
    "checkpoint_created_at",
    "auto_execute_children",
    "plan_json",
    "created_at",
    "started_at",
    "completed_at",
    "updated_at",
)

MESSAGE_COLUMNS = (
    "workflow_id",
    "agent_execution_id",
    "message_type",
    "agent_type",
    "content",
    "action_type",
    "action_status",
    "metadata",
    "created_at",
)


def _encode(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return value


def _decode_json(value: str | None) -> Any:
    return json.loads(value) if value else None


class SQLiteWorkflowRepository(WorkflowRepository):
    """Persist workflow state using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        # Background fix pipelines share this connection across threads.
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                parent_workflow_id INTEGER REFERENCES workflows(id),
                workflow_type TEXT NOT NULL,
                status TEXT NOT NULL,
                branch_name TEXT,
                target_module TEXT,
                task_description TEXT,
                working_dir TEXT,
                execution_order INTEGER NOT NULL DEFAULT 0,
                workflow_depth INTEGER NOT NULL DEFAULT 0,
                is_paused INTEGER NOT NULL DEFAULT 0,
                pause_reason TEXT,
                pause_requested_at TEXT,
                checkpoint_commit VARCHAR(40),
                checkpoint_created_at TEXT,
                auto_execute_children INTEGER,
                plan_json TEXT,
                created_at TEXT NOT NULL,
                started_at TEXT,
                completed_at TEXT,
                updated_at TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS agent_executions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                workflow_id INTEGER NOT NULL REFERENCES workflows(id),
                agent_type TEXT NOT NULL,
                status TEXT NOT NULL,
                input TEXT,
                output TEXT,
                error_message TEXT,
                started_at TEXT NOT NULL,
                completed_at TEXT
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS execution_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                workflow_id INTEGER NOT NULL,
                log_level TEXT NOT NULL,
                event_type TEXT NOT NULL,
                message TEXT NOT NULL,
                data TEXT,
                created_at TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                workflow_id INTEGER NOT NULL REFERENCES workflows(id),
                agent_execution_id INTEGER,
                message_type TEXT NOT NULL,
                agent_type TEXT,
                content TEXT NOT NULL,
                action_type TEXT NOT NULL,
                action_status TEXT NOT NULL,
                metadata TEXT,
                created_at TEXT NOT NULL
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int | None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()
            return cur.lastrowid

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    @staticmethod
    def _workflow(row: sqlite3.Row) -> WorkflowRecord:
        data = dict(row)
        data["plan_json"] = _decode_json(data["plan_json"])
        data["is_paused"] = bool(data["is_paused"])
        if data["auto_execute_children"] is not None:
            data["auto_execute_children"] = bool(data["auto_execute_children"])
        return WorkflowRecord(**data)

    @staticmethod
    def _message(row: sqlite3.Row) -> WorkflowMessage:
        data = dict(row)
        data["metadata"] = _decode_json(data["metadata"])
        return WorkflowMessage(**data)

    async def close(self) -> None:
        await asyncio.to_thread(self._conn.close)

    # ------------------------------------------------------------------
    # Workflows
    async def create_workflow(self, workflow: WorkflowRecord) -> int:
        placeholders = ", ".join("?" for _ in WORKFLOW_COLUMNS)
        values = [_encode(getattr(workflow, c)) for c in WORKFLOW_COLUMNS]
        return await asyncio.to_thread(
            self._execute,
            f"INSERT INTO workflows ({', '.join(WORKFLOW_COLUMNS)}) VALUES ({placeholders})",
            *values,
        )

    async def get_workflow(self, workflow_id: int) -> WorkflowRecord | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT * FROM workflows WHERE id = ?", workflow_id
        )
        return self._workflow(row) if row else None

    async def update_workflow(self, workflow_id: int, **fields: Any) -> None:
        check_fields(fields)
        fields["updated_at"] = utcnow()
        assignments = ", ".join(f"{name} = ?" for name in fields)
        await asyncio.to_thread(
            self._execute,
            f"UPDATE workflows SET {assignments} WHERE id = ?",
            *[_encode(v) for v in fields.values()],
            workflow_id,
        )

    async def list_workflows(self) -> list[WorkflowRecord]:
        rows = await asyncio.to_thread(
            self._fetchall, "SELECT * FROM workflows ORDER BY id"
        )
        return [self._workflow(r) for r in rows]

    async def list_children(self, parent_workflow_id: int) -> list[WorkflowRecord]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT * FROM workflows WHERE parent_workflow_id = ? ORDER BY execution_order, id",
            parent_workflow_id,
        )
        return [self._workflow(r) for r in rows]

    # ------------------------------------------------------------------
    # Agent executions
    async def create_agent_execution(
        self, workflow_id: int, agent_type: StageKind, input: dict
    ) -> int:
        return await asyncio.to_thread(
            self._execute,
            "INSERT INTO agent_executions (workflow_id, agent_type, status, input, started_at) VALUES (?, ?, ?, ?, ?)",
            workflow_id,
            _encode(agent_type),
            AgentStatus.RUNNING.value,
            json.dumps(input),
            utcnow().isoformat(),
        )

    async def complete_agent_execution(
        self,
        execution_id: int,
        status: AgentStatus,
        output: dict | None = None,
        error_message: str | None = None,
    ) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            UPDATE agent_executions
            SET status = ?, output = ?, error_message = ?, completed_at = ?
            WHERE id = ?
            """,
            _encode(status),
            json.dumps(output) if output is not None else None,
            error_message,
            utcnow().isoformat(),
            execution_id,
        )

    async def list_agent_executions(self, workflow_id: int) -> list[AgentExecutionRecord]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT * FROM agent_executions WHERE workflow_id = ? ORDER BY id",
            workflow_id,
        )
        records = []
        for r in rows:
            data = dict(r)
            data["input"] = _decode_json(data["input"]) or {}
            data["output"] = _decode_json(data["output"])
            records.append(AgentExecutionRecord(**data))
        return records

    # ------------------------------------------------------------------
    # Execution logs
    async def append_log(self, entry: ExecutionLogEntry) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT INTO execution_logs (workflow_id, log_level, event_type, message, data, created_at) VALUES (?, ?, ?, ?, ?, ?)",
            entry.workflow_id,
            _encode(entry.level),
            entry.event_type,
            entry.message,
            json.dumps(entry.data) if entry.data is not None else None,
            entry.created_at.isoformat(),
        )

    async def list_logs(self, workflow_id: int) -> list[ExecutionLogEntry]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT * FROM execution_logs WHERE workflow_id = ? ORDER BY id",
            workflow_id,
        )
        return [
            ExecutionLogEntry(
                id=r["id"],
                workflow_id=r["workflow_id"],
                level=r["log_level"],
                event_type=r["event_type"],
                message=r["message"],
                data=_decode_json(r["data"]),
                created_at=datetime.fromisoformat(r["created_at"]),
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Messages
    async def add_message(self, message: WorkflowMessage) -> int:
        placeholders = ", ".join("?" for _ in MESSAGE_COLUMNS)
        values = [_encode(getattr(message, c)) for c in MESSAGE_COLUMNS]
        return await asyncio.to_thread(
            self._execute,
            f"INSERT INTO workflow_messages ({', '.join(MESSAGE_COLUMNS)}) VALUES ({placeholders})",
            *values,
        )

    async def list_messages(self, workflow_id: int) -> list[WorkflowMessage]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT * FROM workflow_messages WHERE workflow_id = ? ORDER BY created_at, id",
            workflow_id,
        )
        return [self._message(r) for r in rows]

    async def get_pending_user_messages(self, workflow_id: int) -> list[WorkflowMessage]:
        rows = await asyncio.to_thread(
            self._fetchall,
            """
            SELECT * FROM workflow_messages
            WHERE workflow_id = ? AND message_type = ? AND action_status = ?
            ORDER BY created_at, id
            """,
            workflow_id,
            MessageType.USER.value,
            ActionStatus.PENDING.value,
        )
        return [self._message(r) for r in rows]

    async def set_message_status(self, message_id: int, status: ActionStatus) -> None:
        await asyncio.to_thread(
            self._execute,
            "UPDATE workflow_messages SET action_status = ? WHERE id = ?",
            _encode(status),
            message_id,
        )
