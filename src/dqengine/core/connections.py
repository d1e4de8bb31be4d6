"""Read-only data access against the embedded DuckDB engine.

Analyzers and the profiler only need SELECT-style access. Every query runs
on its own cursor in a worker thread, so awaiting a query is the suspension
point of a state computation and concurrent partitions never share a cursor.

Usage:
    conn = duckdb.connect(":memory:")
    source = DuckDBDataSource(conn)
    ctx = ExecutionContext(table_name="orders")

    row = await source.fetch_one(f"SELECT COUNT(*) {ctx.from_clause}")

    async for batch in source.iter_batches(f'SELECT "amount" {ctx.from_clause}'):
        ...
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from typing import Any, TypeVar

import duckdb

from dqengine.core.config import get_settings
from dqengine.core.errors import DataAccessError
from dqengine.core.logging import get_logger, increment_query, record_rows_scanned
from dqengine.core.models.base import quote_identifier

logger = get_logger(__name__)

T = TypeVar("T")


class DataSource(ABC):
    """Capability to run read-only queries and receive scalar/columnar results."""

    @abstractmethod
    async def fetch_one(self, sql: str) -> tuple[Any, ...] | None:
        """Run a query and return its first row."""

    @abstractmethod
    async def fetch_all(self, sql: str) -> list[tuple[Any, ...]]:
        """Run a query and return all rows."""

    @abstractmethod
    def iter_batches(
        self, sql: str, batch_size: int | None = None
    ) -> AsyncIterator[list[tuple[Any, ...]]]:
        """Stream the rows of a query in batches."""

    @abstractmethod
    async def column_names(self, table_name: str) -> list[str]:
        """Column names of a table or view."""

    async def iter_column(
        self, sql: str, batch_size: int | None = None
    ) -> AsyncIterator[list[Any]]:
        """Stream the first column of a query as plain value lists."""
        async for rows in self.iter_batches(sql, batch_size):
            yield [row[0] for row in rows]


class DuckDBDataSource(DataSource):
    """DataSource backed by a DuckDB connection.

    Reads go through ``conn.cursor()`` which is safe to use from several
    worker threads at once. The source never writes.
    """

    def __init__(self, conn: duckdb.DuckDBPyConnection, batch_size: int | None = None):
        self._conn = conn
        self._batch_size = batch_size or get_settings().scan_batch_size

    async def _run(self, sql: str, fn: Callable[[duckdb.DuckDBPyConnection], T]) -> T:
        def work() -> T:
            cursor = self._conn.cursor()
            try:
                cursor.execute(sql)
                return fn(cursor)
            finally:
                cursor.close()

        increment_query()
        try:
            return await asyncio.to_thread(work)
        except duckdb.Error as e:
            logger.warning("query_failed", error=str(e), sql=sql)
            raise DataAccessError(f"Query failed: {e}", sql=sql) from e

    async def fetch_one(self, sql: str) -> tuple[Any, ...] | None:
        return await self._run(sql, lambda cursor: cursor.fetchone())

    async def fetch_all(self, sql: str) -> list[tuple[Any, ...]]:
        return await self._run(sql, lambda cursor: cursor.fetchall())

    async def iter_batches(
        self, sql: str, batch_size: int | None = None
    ) -> AsyncIterator[list[tuple[Any, ...]]]:
        size = batch_size or self._batch_size
        cursor = self._conn.cursor()
        increment_query()
        try:
            try:
                await asyncio.to_thread(cursor.execute, sql)
            except duckdb.Error as e:
                logger.warning("query_failed", error=str(e), sql=sql)
                raise DataAccessError(f"Query failed: {e}", sql=sql) from e

            while True:
                try:
                    rows = await asyncio.to_thread(cursor.fetchmany, size)
                except duckdb.Error as e:
                    raise DataAccessError(f"Fetch failed: {e}", sql=sql) from e
                if not rows:
                    break
                record_rows_scanned(len(rows))
                yield rows
        finally:
            cursor.close()

    async def column_names(self, table_name: str) -> list[str]:
        rows = await self.fetch_all(f"DESCRIBE SELECT * FROM {quote_identifier(table_name)}")
        return [row[0] for row in rows]
