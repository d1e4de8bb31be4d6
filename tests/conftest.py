"""Shared pytest fixtures for all tests."""

import duckdb
import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from dqengine.core.connections import DuckDBDataSource
from dqengine.core.models.base import ExecutionContext


@pytest.fixture
def duckdb_conn():
    """Create an in-memory DuckDB connection for testing."""
    conn = duckdb.connect(":memory:")
    yield conn
    conn.close()


@pytest.fixture
def source(duckdb_conn) -> DuckDBDataSource:
    """DataSource over the test connection with small batches to exercise streaming."""
    return DuckDBDataSource(duckdb_conn, batch_size=1000)


@pytest.fixture
def orders(duckdb_conn) -> ExecutionContext:
    """Small orders table with nulls, split over two days."""
    duckdb_conn.execute(
        """
        CREATE TABLE orders AS
        SELECT * FROM (VALUES
            (1, DATE '2024-01-01', 10.0, 'alice@example.com', 'DE'),
            (2, DATE '2024-01-01', 20.0, NULL, 'DE'),
            (3, DATE '2024-01-02', 30.0, 'carol@example.com', 'FR'),
            (4, DATE '2024-01-02', NULL, 'dave@example.com', 'US')
        ) AS t(id, day, amount, email, country)
        """
    )
    return ExecutionContext(table_name="orders")


@pytest.fixture
async def engine(tmp_path) -> AsyncEngine:
    """File-backed SQLite engine, fresh for each test function."""
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'state.db'}",
        echo=False,
    )
    yield test_engine
    await test_engine.dispose()
