"""Shared asyncpg helpers for repositories."""
from __future__ import annotations

from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any, AsyncIterator, Iterable

import asyncpg  # type: ignore[import-untyped]

# Connection pinned by an open ``transaction()`` block in the current task.
_current_conn: ContextVar[asyncpg.Connection | None] = ContextVar(
    "sbtc_gateway_current_conn", default=None
)


class BaseRepository:
    """Thin wrapper over asyncpg pool operations.

    Queries issued inside :meth:`transaction` (by this or any other
    repository sharing the task) run on the same connection, so a status
    transition and the webhook events it emits commit together.
    """

    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        conn = _current_conn.get()
        if conn is not None:
            async with conn.transaction():
                yield
            return
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                token = _current_conn.set(conn)
                try:
                    yield
                finally:
                    _current_conn.reset(token)

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        conn = _current_conn.get()
        if conn is not None:
            yield conn
            return
        async with self._pool.acquire() as conn:
            yield conn

    async def _fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        async with self._connection() as conn:
            return await conn.fetchrow(query, *args)

    async def _fetch(self, query: str, *args: Any) -> Iterable[asyncpg.Record]:
        async with self._connection() as conn:
            return await conn.fetch(query, *args)

    async def _execute(self, query: str, *args: Any) -> str:
        async with self._connection() as conn:
            return await conn.execute(query, *args)


def affected_rows(status: str) -> int:
    """Parse the row count out of an asyncpg command status (``UPDATE 3``)."""
    try:
        return int(status.split()[-1])
    except (IndexError, ValueError):
        return 0
