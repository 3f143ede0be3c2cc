"""Persistence layer for stepflow workflows and executions."""

from __future__ import annotations

from typing import Optional

from ..config import StepflowConfig, load_config
from .inmemory import InMemoryExecutionRepository
from .models import StepExecutionRecord, WorkflowExecution
from .repository import ExecutionRepository
from .sqlite import SQLiteExecutionRepository

try:  # pragma: no cover - optional dependency
    from .postgres import PostgresExecutionRepository
except ImportError:  # pragma: no cover - optional dependency
    PostgresExecutionRepository = None  # type: ignore


def get_repository(
    database_url: Optional[str] = None, config: Optional[StepflowConfig] = None
) -> ExecutionRepository:
    """Factory function to obtain an execution repository.

    The backend is selected from ``database_url``, given explicitly or taken
    from the loaded configuration (which honours ``STEPFLOW_DATABASE_URL``
    and ``DATABASE_URL``). Without a database an in-memory repository is
    returned.
    """

    if database_url is None:
        config = config or load_config()
        database_url = config.database_url

    if not database_url:
        return InMemoryExecutionRepository()

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        return SQLiteExecutionRepository(path)
    if database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        if PostgresExecutionRepository is None:
            raise RuntimeError("Postgres support not available")
        return PostgresExecutionRepository(database_url)
    raise ValueError(f"Unsupported database backend: {database_url}")


__all__ = [
    "StepExecutionRecord",
    "WorkflowExecution",
    "ExecutionRepository",
    "InMemoryExecutionRepository",
    "SQLiteExecutionRepository",
    "PostgresExecutionRepository",
    "get_repository",
]
