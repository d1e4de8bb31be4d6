"""Tests for exact and sketch-backed analyzers."""

import math

import pytest

from dqengine.analyzers import (
    ApproxCountDistinct,
    ApproxQuantile,
    ApproxQuantiles,
    Completeness,
    Maximum,
    Mean,
    Minimum,
    Size,
    StandardDeviation,
    Sum,
)
from dqengine.core.errors import AnalyzerError, ConfigurationError
from dqengine.core.models.base import ExecutionContext
from dqengine.metrics.values import DistributionMetric, DoubleMetric, LongMetric

DAY_1 = "day = DATE '2024-01-01'"
DAY_2 = "day = DATE '2024-01-02'"


class TestExactAnalyzers:
    """Single-query analyzers over the orders fixture."""

    async def test_size(self, source, orders):
        assert await Size().calculate(source, orders) == LongMetric(value=4)

    async def test_completeness(self, source, orders):
        assert await Completeness("email").calculate(source, orders) == DoubleMetric(value=0.75)

    async def test_sum_mean_stddev(self, source, orders):
        assert await Sum("amount").calculate(source, orders) == DoubleMetric(value=60.0)
        assert await Mean("amount").calculate(source, orders) == DoubleMetric(value=20.0)

        stddev = await StandardDeviation("amount").calculate(source, orders)
        assert stddev.value == pytest.approx(math.sqrt(200 / 3))

    async def test_min_max(self, source, orders):
        assert await Minimum("amount").calculate(source, orders) == DoubleMetric(value=10.0)
        assert await Maximum("amount").calculate(source, orders) == DoubleMetric(value=30.0)

    async def test_predicate_selects_partition(self, source, orders):
        day_two = orders.with_predicate(DAY_2)
        assert await Size().calculate(source, day_two) == LongMetric(value=2)
        assert await Mean("amount").calculate(source, day_two) == DoubleMetric(value=30.0)

    @pytest.mark.parametrize(
        "analyzer",
        [Size(), Completeness("email"), Sum("amount"), Mean("amount"), StandardDeviation("amount"), Minimum("amount")],
        ids=lambda a: a.metric_key,
    )
    async def test_partition_states_merge_to_full_result(self, source, orders, analyzer):
        """Merging per-partition states equals computing over the whole table."""
        states = [
            await analyzer.compute_state(source, orders.with_predicate(DAY_1)),
            await analyzer.compute_state(source, orders.with_predicate(DAY_2)),
        ]
        merged = analyzer.merge_states(states)
        full = await analyzer.compute_state(source, orders)

        assert analyzer.compute_metric(merged) == analyzer.compute_metric(full)

    async def test_mean_of_empty_selection_fails(self, source, orders):
        state = await Mean("amount").compute_state(source, orders.with_predicate("1 = 0"))
        assert state.count == 0
        with pytest.raises(AnalyzerError):
            Mean("amount").compute_metric(state)

    async def test_minimum_of_all_null_column_fails(self, source, orders):
        ctx = orders.with_predicate("amount IS NULL")
        with pytest.raises(AnalyzerError):
            await Minimum("amount").calculate(source, ctx)

    def test_metric_keys(self):
        assert Size().metric_key == "size"
        assert Mean("amount").metric_key == "mean.amount"
        assert Mean("amount").columns() == ["amount"]
        assert Size().columns() == []

    def test_column_required(self):
        with pytest.raises(ConfigurationError):
            Mean("")


class TestSketchAnalyzers:
    """Approximate analyzers streaming a column into a sketch."""

    @pytest.fixture
    def numbers(self, duckdb_conn) -> ExecutionContext:
        duckdb_conn.execute(
            """
            CREATE TABLE numbers AS
            SELECT range AS id, range % 1000 AS bucket, CAST(range + 1 AS DOUBLE) AS x
            FROM range(5000)
            """
        )
        return ExecutionContext(table_name="numbers")

    async def test_approx_count_distinct(self, source, numbers):
        metric = await ApproxCountDistinct("bucket", precision=12).calculate(source, numbers)
        assert metric.value == pytest.approx(1000, rel=0.03)

    async def test_approx_count_distinct_merges_across_partitions(self, source, numbers):
        analyzer = ApproxCountDistinct("bucket", precision=12)
        low = await analyzer.compute_state(source, numbers.with_predicate("id < 2500"))
        high = await analyzer.compute_state(source, numbers.with_predicate("id >= 2500"))
        full = await analyzer.compute_state(source, numbers)

        assert low.merge(high) == full

    async def test_approx_quantiles(self, source, numbers):
        analyzer = ApproxQuantiles("x", quantiles=[0.25, 0.5, 0.75], k=200, seed=1)
        metric = await analyzer.calculate(source, numbers)

        assert isinstance(metric, DistributionMetric)
        assert set(metric.values) == {"p25", "p50", "p75"}
        eps = 3 * 0.0133 * 5000
        assert metric.get("p50") == pytest.approx(2500, abs=eps)
        assert metric.get("p25") < metric.get("p50") < metric.get("p75")

    async def test_approx_quantile_is_scalar(self, source, numbers):
        analyzer = ApproxQuantile("x", 0.5, k=200, seed=1)
        metric = await analyzer.calculate(source, numbers)

        assert analyzer.metric_key == "approx_quantile.x.p50"
        assert isinstance(metric, DoubleMetric)
        assert metric.value == pytest.approx(2500, abs=3 * 0.0133 * 5000)

    async def test_quantiles_are_exact_on_small_input(self, source, orders):
        metric = await ApproxQuantiles("amount", quantiles=[0.5], seed=0).calculate(source, orders)
        assert metric == DistributionMetric(values={"p50": 20.0})
