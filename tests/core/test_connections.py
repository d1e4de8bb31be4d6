"""Tests for the DuckDB data source and execution contexts."""

import pytest

from dqengine.core.errors import DataAccessError
from dqengine.core.models.base import ExecutionContext, quote_identifier


class TestExecutionContext:
    """Tests for SQL clause construction."""

    def test_from_clause_without_predicate(self):
        ctx = ExecutionContext(table_name="orders")
        assert ctx.from_clause == 'FROM "orders"'

    def test_from_clause_with_predicate(self):
        ctx = ExecutionContext(table_name="orders", predicate="day = '2024-01-01'")
        assert ctx.from_clause == "FROM \"orders\" WHERE (day = '2024-01-01')"

    def test_where_combines_predicate_and_condition(self):
        ctx = ExecutionContext(table_name="orders", predicate="a > 1")
        assert ctx.where("b IS NOT NULL") == 'FROM "orders" WHERE (a > 1) AND (b IS NOT NULL)'
        assert ExecutionContext(table_name="t").where("x") == 'FROM "t" WHERE (x)'

    def test_with_predicate_returns_copy(self):
        ctx = ExecutionContext(table_name="orders")
        sliced = ctx.with_predicate("id < 3")

        assert ctx.predicate is None
        assert sliced.predicate == "id < 3"
        assert str(sliced) == "orders [id < 3]"

    def test_quote_identifier_escapes_quotes(self):
        assert quote_identifier('we"ird') == '"we""ird"'


class TestDuckDBDataSource:
    """Tests for query execution."""

    async def test_fetch_one_and_all(self, source, orders):
        row = await source.fetch_one(f"SELECT COUNT(*) {orders.from_clause}")
        assert row == (4,)

        rows = await source.fetch_all(f"SELECT id {orders.from_clause} ORDER BY id")
        assert [r[0] for r in rows] == [1, 2, 3, 4]

    async def test_iter_batches_respects_batch_size(self, duckdb_conn, source):
        duckdb_conn.execute("CREATE TABLE numbers AS SELECT range AS n FROM range(2500)")

        sizes = [len(batch) async for batch in source.iter_batches('SELECT n FROM "numbers"')]

        assert sizes == [1000, 1000, 500]

    async def test_iter_column_yields_values(self, duckdb_conn, source):
        duckdb_conn.execute("CREATE TABLE numbers AS SELECT range AS n FROM range(5)")

        values = []
        async for batch in source.iter_column('SELECT n FROM "numbers" ORDER BY n', batch_size=2):
            values.extend(batch)

        assert values == [0, 1, 2, 3, 4]

    async def test_column_names(self, source, orders):
        assert await source.column_names("orders") == ["id", "day", "amount", "email", "country"]

    async def test_invalid_query_raises_data_access_error(self, source):
        with pytest.raises(DataAccessError) as exc_info:
            await source.fetch_one("SELECT * FROM missing_table")

        assert exc_info.value.sql == "SELECT * FROM missing_table"

    async def test_invalid_streaming_query_raises_data_access_error(self, source):
        with pytest.raises(DataAccessError):
            async for _ in source.iter_batches("SELECT nope FROM missing_table"):
                pass
