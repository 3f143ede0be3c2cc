"""SQLite implementation of the execution repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, TypeVar

from ..contracts import ExecutionStatus, StepStatus, WorkflowDefinition, utcnow
from ..errors import ExecutionNotFoundError, PersistenceError
from .models import StepExecutionRecord, WorkflowExecution
from .repository import (
    ExecutionRepository,
    check_step_update,
    check_transition,
    transition_fields,
)

T = TypeVar("T")

_EXECUTION_COLUMNS = (
    "id, workflow_id, status, input_data, output_data, error_message, "
    "created_at, started_at, completed_at"
)
_STEP_COLUMNS = (
    "execution_id, step_id, step_name, status, output_data, error_message, "
    "started_at, completed_at"
)


def _dumps(value: Any) -> str | None:
    return None if value is None else json.dumps(value)


def _loads(value: str | None) -> Any:
    return None if value is None else json.loads(value)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SQLiteExecutionRepository(ExecutionRepository):
    """Persist workflows and executions using SQLite.

    Statements run on worker threads via :func:`asyncio.to_thread`; a lock
    serializes them so that read-check-write sequences are atomic.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                status TEXT NOT NULL,
                priority INTEGER NOT NULL DEFAULT 0,
                definition TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS executions (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                status TEXT NOT NULL,
                input_data TEXT,
                output_data TEXT,
                error_message TEXT,
                created_at TEXT NOT NULL,
                started_at TEXT,
                completed_at TEXT
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS step_executions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                execution_id TEXT NOT NULL,
                step_id TEXT NOT NULL,
                step_name TEXT,
                status TEXT NOT NULL,
                output_data TEXT,
                error_message TEXT,
                started_at TEXT,
                completed_at TEXT,
                UNIQUE (execution_id, step_id)
            )
            """
        )
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # Helper methods
    def _locked(self, func: Callable[..., T], *args: Any) -> T:
        with self._lock:
            try:
                return func(*args)
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise PersistenceError(f"SQLite error: {exc}") from exc

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        return await asyncio.to_thread(self._locked, func, *args)

    def _execute(self, query: str, *params: Any) -> int:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()
        return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    @staticmethod
    def _execution_from_row(row: sqlite3.Row) -> WorkflowExecution:
        return WorkflowExecution(
            id=row["id"],
            workflow_id=row["workflow_id"],
            status=row["status"],
            input_data=_loads(row["input_data"]),
            output_data=_loads(row["output_data"]),
            error_message=row["error_message"],
            created_at=_dt(row["created_at"]),
            started_at=_dt(row["started_at"]),
            completed_at=_dt(row["completed_at"]),
        )

    @staticmethod
    def _step_from_row(row: sqlite3.Row) -> StepExecutionRecord:
        return StepExecutionRecord(
            execution_id=row["execution_id"],
            step_id=row["step_id"],
            step_name=row["step_name"],
            status=row["status"],
            output_data=_loads(row["output_data"]),
            error_message=row["error_message"],
            started_at=_dt(row["started_at"]),
            completed_at=_dt(row["completed_at"]),
        )

    def _load_execution(self, execution_id: str) -> WorkflowExecution:
        row = self._fetchone(
            f"SELECT {_EXECUTION_COLUMNS} FROM executions WHERE id = ?", execution_id
        )
        if row is None:
            raise ExecutionNotFoundError(execution_id)
        return self._execution_from_row(row)

    # ------------------------------------------------------------------
    # Repository API
    async def save_workflow(self, definition: WorkflowDefinition) -> None:
        await self._run(
            self._execute,
            "INSERT OR REPLACE INTO workflows (id, name, status, priority, definition) "
            "VALUES (?, ?, ?, ?, ?)",
            definition.id,
            definition.name,
            definition.status.value,
            definition.priority,
            definition.model_dump_json(),
        )

    async def get_workflow_with_steps(self, workflow_id: str) -> WorkflowDefinition | None:
        row = await self._run(
            self._fetchone, "SELECT definition FROM workflows WHERE id = ?", workflow_id
        )
        if not row:
            return None
        return WorkflowDefinition.model_validate_json(row["definition"])

    async def list_workflows(self) -> list[WorkflowDefinition]:
        rows = await self._run(self._fetchall, "SELECT definition FROM workflows ORDER BY name")
        return [WorkflowDefinition.model_validate_json(r["definition"]) for r in rows]

    async def create_execution(self, workflow_id: str, input_data: Any = None) -> str:
        execution_id = str(uuid.uuid4())
        await self._run(
            self._execute,
            "INSERT INTO executions (id, workflow_id, status, input_data, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            execution_id,
            workflow_id,
            ExecutionStatus.PENDING.value,
            _dumps(input_data),
            utcnow().isoformat(),
        )
        return execution_id

    def _transition(
        self, execution_id: str, status: ExecutionStatus, fields: dict[str, Any]
    ) -> WorkflowExecution:
        execution = self._load_execution(execution_id)
        check_transition(execution_id, execution.status, status)
        values = transition_fields(status, execution.started_at, fields)
        assignments = ["status = ?"]
        params: list[Any] = [status.value]
        for key, value in values.items():
            assignments.append(f"{key} = ?")
            if key == "output_data":
                params.append(_dumps(value))
            elif isinstance(value, datetime):
                params.append(_iso(value))
            else:
                params.append(value)
        self._execute(
            f"UPDATE executions SET {', '.join(assignments)} WHERE id = ?",
            *params,
            execution_id,
        )
        return self._load_execution(execution_id)

    async def update_execution_status(
        self, execution_id: str, status: ExecutionStatus, **fields: Any
    ) -> WorkflowExecution:
        return await self._run(
            self._transition, execution_id, ExecutionStatus(status), fields
        )

    def _write_step(
        self,
        execution_id: str,
        step_id: str,
        status: StepStatus,
        output: Any,
        error: str | None,
        step_name: str | None,
    ) -> StepExecutionRecord:
        self._load_execution(execution_id)
        row = self._fetchone(
            f"SELECT {_STEP_COLUMNS} FROM step_executions "
            "WHERE execution_id = ? AND step_id = ?",
            execution_id,
            step_id,
        )
        record = self._step_from_row(row) if row else None
        check_step_update(execution_id, step_id, record.status if record else None, status)
        if record is None:
            record = StepExecutionRecord(execution_id=execution_id, step_id=step_id)
        now = utcnow()
        record.status = status
        if step_name is not None:
            record.step_name = step_name
        if status == StepStatus.RUNNING:
            record.started_at = now
        if status.is_final:
            record.completed_at = now
            record.output_data = output
            record.error_message = error
        self._execute(
            f"INSERT INTO step_executions ({_STEP_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT (execution_id, step_id) DO UPDATE SET "
            "step_name = excluded.step_name, status = excluded.status, "
            "output_data = excluded.output_data, error_message = excluded.error_message, "
            "started_at = excluded.started_at, completed_at = excluded.completed_at",
            execution_id,
            step_id,
            record.step_name,
            record.status.value,
            _dumps(record.output_data),
            record.error_message,
            _iso(record.started_at),
            _iso(record.completed_at),
        )
        return record

    async def update_step_record(
        self,
        execution_id: str,
        step_id: str,
        status: StepStatus,
        output: Any = None,
        error: str | None = None,
        step_name: str | None = None,
    ) -> StepExecutionRecord:
        return await self._run(
            self._write_step, execution_id, step_id, StepStatus(status), output, error, step_name
        )

    async def get_execution(
        self, execution_id: str, include_steps: bool = True
    ) -> WorkflowExecution | None:
        row = await self._run(
            self._fetchone,
            f"SELECT {_EXECUTION_COLUMNS} FROM executions WHERE id = ?",
            execution_id,
        )
        if not row:
            return None
        execution = self._execution_from_row(row)
        if include_steps:
            step_rows = await self._run(
                self._fetchall,
                f"SELECT {_STEP_COLUMNS} FROM step_executions WHERE execution_id = ? ORDER BY id",
                execution_id,
            )
            execution.steps = [self._step_from_row(r) for r in step_rows]
        return execution

    async def list_executions(
        self, workflow_id: str | None = None, status: ExecutionStatus | None = None
    ) -> list[WorkflowExecution]:
        clauses = []
        params: list[Any] = []
        if workflow_id is not None:
            clauses.append("workflow_id = ?")
            params.append(workflow_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(ExecutionStatus(status).value)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = await self._run(
            self._fetchall,
            f"SELECT {_EXECUTION_COLUMNS} FROM executions{where} "
            "ORDER BY created_at DESC, rowid DESC",
            *params,
        )
        return [self._execution_from_row(r) for r in rows]
