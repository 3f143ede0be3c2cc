"""PostgreSQL implementation of the execution repository."""

from __future__ import annotations

import json
import uuid
from typing import Any

import asyncpg

from ..contracts import ExecutionStatus, StepStatus, WorkflowDefinition, utcnow
from ..errors import ExecutionNotFoundError, InvalidTransitionError, PersistenceError
from .models import StepExecutionRecord, WorkflowExecution
from .repository import ExecutionRepository, transition_fields

_EXECUTION_COLUMNS = (
    "id, workflow_id, status, input_data, output_data, error_message, "
    "created_at, started_at, completed_at"
)
_STEP_COLUMNS = (
    "execution_id, step_id, step_name, status, output_data, error_message, "
    "started_at, completed_at"
)
_FINAL_STEP_STATUSES = [s.value for s in StepStatus if s.is_final]


def _dumps(value: Any) -> str | None:
    return None if value is None else json.dumps(value)


def _loads(value: Any) -> Any:
    # asyncpg hands JSONB back as text unless a codec is registered
    if isinstance(value, str):
        return json.loads(value)
    return value


class PostgresExecutionRepository(ExecutionRepository):
    """Persist workflows and executions using PostgreSQL.

    Status changes are conditional ``UPDATE`` statements, so two writers
    racing on the same execution cannot both win an illegal transition.
    """

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        try:
            conn = await asyncpg.connect(self._dsn)
        except (OSError, asyncpg.PostgresError) as exc:
            raise PersistenceError(f"Cannot connect to PostgreSQL: {exc}") from exc
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                status TEXT NOT NULL,
                priority INTEGER NOT NULL DEFAULT 0,
                definition JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS executions (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                status TEXT NOT NULL,
                input_data JSONB,
                output_data JSONB,
                error_message TEXT,
                created_at TIMESTAMPTZ NOT NULL,
                started_at TIMESTAMPTZ,
                completed_at TIMESTAMPTZ
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS step_executions (
                id SERIAL PRIMARY KEY,
                execution_id TEXT NOT NULL REFERENCES executions (id),
                step_id TEXT NOT NULL,
                step_name TEXT,
                status TEXT NOT NULL,
                output_data JSONB,
                error_message TEXT,
                started_at TIMESTAMPTZ,
                completed_at TIMESTAMPTZ,
                UNIQUE (execution_id, step_id)
            )
            """
        )

    @staticmethod
    def _execution_from_row(row: asyncpg.Record) -> WorkflowExecution:
        return WorkflowExecution(
            id=row["id"],
            workflow_id=row["workflow_id"],
            status=row["status"],
            input_data=_loads(row["input_data"]),
            output_data=_loads(row["output_data"]),
            error_message=row["error_message"],
            created_at=row["created_at"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
        )

    @staticmethod
    def _step_from_row(row: asyncpg.Record) -> StepExecutionRecord:
        return StepExecutionRecord(
            execution_id=row["execution_id"],
            step_id=row["step_id"],
            step_name=row["step_name"],
            status=row["status"],
            output_data=_loads(row["output_data"]),
            error_message=row["error_message"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
        )

    # ------------------------------------------------------------------
    async def save_workflow(self, definition: WorkflowDefinition) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO workflows (id, name, status, priority, definition)
                VALUES ($1, $2, $3, $4, $5::jsonb)
                ON CONFLICT (id) DO UPDATE SET
                    name = EXCLUDED.name, status = EXCLUDED.status,
                    priority = EXCLUDED.priority, definition = EXCLUDED.definition
                """,
                definition.id,
                definition.name,
                definition.status.value,
                definition.priority,
                definition.model_dump_json(),
            )
        finally:
            await conn.close()

    async def get_workflow_with_steps(self, workflow_id: str) -> WorkflowDefinition | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT definition FROM workflows WHERE id = $1", workflow_id
            )
        finally:
            await conn.close()
        if not row:
            return None
        return WorkflowDefinition.model_validate(_loads(row["definition"]))

    async def list_workflows(self) -> list[WorkflowDefinition]:
        conn = await self._connect()
        try:
            rows = await conn.fetch("SELECT definition FROM workflows ORDER BY name")
        finally:
            await conn.close()
        return [WorkflowDefinition.model_validate(_loads(r["definition"])) for r in rows]

    async def create_execution(self, workflow_id: str, input_data: Any = None) -> str:
        execution_id = str(uuid.uuid4())
        conn = await self._connect()
        try:
            await conn.execute(
                "INSERT INTO executions (id, workflow_id, status, input_data, created_at) "
                "VALUES ($1, $2, $3, $4::jsonb, $5)",
                execution_id,
                workflow_id,
                ExecutionStatus.PENDING.value,
                _dumps(input_data),
                utcnow(),
            )
        finally:
            await conn.close()
        return execution_id

    async def update_execution_status(
        self, execution_id: str, status: ExecutionStatus, **fields: Any
    ) -> WorkflowExecution:
        status = ExecutionStatus(status)
        sources = [s.value for s in ExecutionStatus if s.can_transition_to(status)]
        conn = await self._connect()
        try:
            current = await conn.fetchrow(
                "SELECT status, started_at FROM executions WHERE id = $1", execution_id
            )
            if current is None:
                raise ExecutionNotFoundError(execution_id)
            values = transition_fields(status, current["started_at"], fields)
            assignments = ["status = $1"]
            params: list[Any] = [status.value]
            for key, value in values.items():
                params.append(_dumps(value) if key == "output_data" else value)
                cast = "::jsonb" if key == "output_data" else ""
                assignments.append(f"{key} = ${len(params)}{cast}")
            params.extend([execution_id, sources])
            row = await conn.fetchrow(
                f"UPDATE executions SET {', '.join(assignments)} "
                f"WHERE id = ${len(params) - 1} AND status = ANY(${len(params)}::text[]) "
                f"RETURNING {_EXECUTION_COLUMNS}",
                *params,
            )
            if row is None:
                latest = await conn.fetchval(
                    "SELECT status FROM executions WHERE id = $1", execution_id
                )
                raise InvalidTransitionError(execution_id, latest, status.value)
        finally:
            await conn.close()
        return self._execution_from_row(row)

    async def update_step_record(
        self,
        execution_id: str,
        step_id: str,
        status: StepStatus,
        output: Any = None,
        error: str | None = None,
        step_name: str | None = None,
    ) -> StepExecutionRecord:
        status = StepStatus(status)
        now = utcnow()
        final = status.is_final
        conn = await self._connect()
        try:
            exists = await conn.fetchval(
                "SELECT 1 FROM executions WHERE id = $1", execution_id
            )
            if not exists:
                raise ExecutionNotFoundError(execution_id)
            row = await conn.fetchrow(
                f"""
                INSERT INTO step_executions ({_STEP_COLUMNS})
                VALUES ($1, $2, $3, $4, $5::jsonb, $6, $7, $8)
                ON CONFLICT (execution_id, step_id) DO UPDATE SET
                    step_name = COALESCE(EXCLUDED.step_name, step_executions.step_name),
                    status = EXCLUDED.status,
                    output_data = EXCLUDED.output_data,
                    error_message = EXCLUDED.error_message,
                    started_at = COALESCE(EXCLUDED.started_at, step_executions.started_at),
                    completed_at = EXCLUDED.completed_at
                WHERE step_executions.status <> ALL($9::text[])
                RETURNING {_STEP_COLUMNS}
                """,
                execution_id,
                step_id,
                step_name,
                status.value,
                _dumps(output) if final else None,
                error if final else None,
                now if status == StepStatus.RUNNING else None,
                now if final else None,
                _FINAL_STEP_STATUSES,
            )
            if row is None:
                current = await conn.fetchval(
                    "SELECT status FROM step_executions WHERE execution_id = $1 AND step_id = $2",
                    execution_id,
                    step_id,
                )
                raise InvalidTransitionError(
                    execution_id, current, status.value, step_id=step_id
                )
        finally:
            await conn.close()
        return self._step_from_row(row)

    async def get_execution(
        self, execution_id: str, include_steps: bool = True
    ) -> WorkflowExecution | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                f"SELECT {_EXECUTION_COLUMNS} FROM executions WHERE id = $1", execution_id
            )
            if not row:
                return None
            step_rows = []
            if include_steps:
                step_rows = await conn.fetch(
                    f"SELECT {_STEP_COLUMNS} FROM step_executions "
                    "WHERE execution_id = $1 ORDER BY id",
                    execution_id,
                )
        finally:
            await conn.close()
        execution = self._execution_from_row(row)
        execution.steps = [self._step_from_row(r) for r in step_rows]
        return execution

    async def list_executions(
        self, workflow_id: str | None = None, status: ExecutionStatus | None = None
    ) -> list[WorkflowExecution]:
        clauses = []
        params: list[Any] = []
        if workflow_id is not None:
            params.append(workflow_id)
            clauses.append(f"workflow_id = ${len(params)}")
        if status is not None:
            params.append(ExecutionStatus(status).value)
            clauses.append(f"status = ${len(params)}")
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                f"SELECT {_EXECUTION_COLUMNS} FROM executions{where} ORDER BY created_at DESC",
                *params,
            )
        finally:
            await conn.close()
        return [self._execution_from_row(r) for r in rows]
