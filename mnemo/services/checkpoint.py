"""LangGraph checkpointer selection.

PostgreSQL URLs get ``AsyncPostgresSaver`` so thread state survives restarts
and is shared between workers; anything else (SQLite, tests) uses the
in-process ``MemorySaver``.  Checkpoints are never evicted.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from langgraph.checkpoint.base import BaseCheckpointSaver
from langgraph.checkpoint.memory import MemorySaver

logger = logging.getLogger(__name__)


def _postgres_conninfo(url: str) -> str | None:
    """Strip the SQLAlchemy driver suffix; ``None`` for non-Postgres URLs."""
    scheme, sep, rest = url.partition("://")
    if not sep or not scheme.startswith("postgres"):
        return None
    return f"postgresql://{rest}"


@asynccontextmanager
async def open_checkpointer(database_url: str) -> AsyncIterator[BaseCheckpointSaver]:
    conninfo = _postgres_conninfo(database_url)
    if conninfo is None:
        logger.info("Using in-memory checkpointer")
        yield MemorySaver()
        return

    from langgraph.checkpoint.postgres.aio import AsyncPostgresSaver  # noqa: PLC0415

    async with AsyncPostgresSaver.from_conn_string(conninfo) as saver:
        await saver.setup()
        logger.info("Using PostgreSQL checkpointer")
        yield saver
