"""Storage backends for workflows, runs and their traces."""

from __future__ import annotations

import os
from typing import Optional

from ..config import FlowgateConfig, load_config
from .inmemory import InMemoryWorkflowRepository
from .postgres import PostgresWorkflowRepository
from .repository import WorkflowRepository
from .sqlite import SQLiteWorkflowRepository

_POSTGRES_SCHEMES = ("postgres://", "postgresql://")
_SQLITE_SCHEME = "sqlite://"


def get_repository(
    database_url: Optional[str] = None, config: Optional[FlowgateConfig] = None
) -> WorkflowRepository:
    """Build a repository handle for the configured database.

    The URL is taken from ``database_url``, then ``FLOWGATE_DATABASE_URL`` or
    ``DATABASE_URL``, then ``config.database_url``. Without one the run state
    lives in memory only.

    Each call returns a fresh handle; the caller connects and closes it.
    """
    url = (
        database_url
        or os.getenv("FLOWGATE_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or (config or load_config()).database_url
    )
    if not url:
        return InMemoryWorkflowRepository()
    if url.startswith(_SQLITE_SCHEME):
        return SQLiteWorkflowRepository(url[len(_SQLITE_SCHEME):])
    if url.startswith(_POSTGRES_SCHEMES):
        return PostgresWorkflowRepository(url)
    raise ValueError(f"Unsupported database backend: {url}")


__all__ = [
    "InMemoryWorkflowRepository",
    "PostgresWorkflowRepository",
    "SQLiteWorkflowRepository",
    "WorkflowRepository",
    "get_repository",
]
