"""Tests for frequency-based analyzers and the histogram."""

import pytest

from dqengine.analyzers import (
    AnalysisRunner,
    DataType,
    Distinctness,
    Entropy,
    Histogram,
    Uniqueness,
)
from dqengine.core.errors import AnalyzerError, ConfigurationError
from dqengine.core.models.base import ExecutionContext
from dqengine.incremental import IncrementalAnalysisRunner, IncrementalConfig, InMemoryStateStore
from dqengine.metrics.state import FrequencyState
from dqengine.metrics.values import DistributionMetric, DoubleMetric

DAY_1 = "day = DATE '2024-01-01'"
DAY_2 = "day = DATE '2024-01-02'"


class TestFrequencyAnalyzers:
    async def test_distinctness_and_uniqueness(self, source, orders):
        assert await Distinctness("country").calculate(source, orders) == DoubleMetric(value=0.75)
        assert await Uniqueness("country").calculate(source, orders) == DoubleMetric(value=0.5)
        assert await Distinctness("email").calculate(source, orders) == DoubleMetric(value=1.0)

    async def test_entropy(self, source, orders):
        metric = await Entropy("country").calculate(source, orders)
        # DE 1/2, FR 1/4, US 1/4
        assert metric.value == pytest.approx(1.5)

    async def test_state_counts_values(self, source, orders):
        state = await Distinctness("country").compute_state(source, orders)

        assert state == FrequencyState(counts={"DE": 2, "FR": 1, "US": 1}, total=4)
        assert state.most_common(1) == [("DE", 2)]

    @pytest.mark.parametrize(
        "analyzer",
        [Distinctness("country"), Uniqueness("country"), Entropy("country"), DataType("amount")],
        ids=lambda a: a.metric_key,
    )
    async def test_partition_states_merge_to_full_result(self, source, orders, analyzer):
        states = [
            await analyzer.compute_state(source, orders.with_predicate(DAY_1)),
            await analyzer.compute_state(source, orders.with_predicate(DAY_2)),
        ]
        full = await analyzer.compute_state(source, orders)

        assert analyzer.merge_states(states) == full
        assert analyzer.compute_metric(analyzer.merge_states(states)) == analyzer.compute_metric(full)

    async def test_truncated_state_refuses_exact_metrics(self, source, orders):
        analyzer = Distinctness("country", max_values=2)

        state = await analyzer.compute_state(source, orders)

        assert state.truncated
        assert state.counts == {"DE": 2, "FR": 1}
        assert state.total == 4
        with pytest.raises(AnalyzerError, match="most frequent"):
            analyzer.compute_metric(state)

    async def test_empty_selection(self, source, orders):
        analyzer = Distinctness("country")
        state = await analyzer.compute_state(source, orders.with_predicate("1 = 0"))

        assert state == FrequencyState.empty()
        assert analyzer.compute_metric(state) == DoubleMetric(value=1.0)
        assert Entropy("country").compute_metric(state) == DoubleMetric(value=0.0)

    def test_max_values_must_be_positive(self):
        with pytest.raises(ConfigurationError):
            Distinctness("country", max_values=0)

    async def test_data_type(self, source, duckdb_conn):
        duckdb_conn.execute(
            """
            CREATE TABLE raw AS SELECT * FROM (VALUES
                ('1'), ('2'), ('3.5'), ('TRUE'), ('2024-01-01'),
                ('2024-01-01 10:00:00'), ('abc'), (NULL)
            ) AS t(v)
            """
        )

        metric = await DataType("v").calculate(source, ExecutionContext(table_name="raw"))

        assert metric == DistributionMetric(
            values={
                "integer": 2.0,
                "boolean": 1.0,
                "date": 1.0,
                "double": 1.0,
                "string": 1.0,
                "timestamp": 1.0,
            }
        )

    async def test_incremental_matches_full_run(self, source, orders):
        analyzers = [Distinctness("country"), Uniqueness("email"), Entropy("country")]
        runner = IncrementalAnalysisRunner(InMemoryStateStore(), "orders", IncrementalConfig())
        for analyzer in analyzers:
            runner.add(analyzer)

        await runner.process_partition(source, orders.with_predicate(DAY_1), "2024-01-01")
        await runner.process_partition(source, orders.with_predicate(DAY_2), "2024-01-02")

        cumulative = await runner.cumulative_metrics()
        direct = await AnalysisRunner().add_all(analyzers).run(source, orders)
        assert cumulative.metrics == direct.metrics


class TestHistogram:
    async def test_equal_width_buckets(self, source, orders):
        metric = await Histogram("amount", buckets=2).calculate(source, orders)

        assert metric == DistributionMetric(values={"10..20": 2.0, "20..30": 1.0})

    async def test_constant_column_has_one_bucket(self, source, orders):
        ctx = orders.with_predicate("id = 1")
        metric = await Histogram("amount", buckets=4).calculate(source, ctx)

        assert metric == DistributionMetric(values={"10..10": 1.0})

    async def test_merges_across_partitions(self, source, orders):
        analyzer = Histogram("amount", buckets=4, seed=0)
        low = await analyzer.compute_state(source, orders.with_predicate(DAY_1))
        high = await analyzer.compute_state(source, orders.with_predicate(DAY_2))

        merged = analyzer.compute_metric(low.merge(high))

        assert merged == await analyzer.calculate(source, orders)
        assert sum(merged.values.values()) == 3.0

    async def test_empty_column_fails(self, source, orders):
        with pytest.raises(AnalyzerError):
            await Histogram("amount").calculate(source, orders.with_predicate("amount IS NULL"))

    @pytest.mark.parametrize("buckets", [0, 1001])
    def test_bucket_count_out_of_range(self, buckets):
        with pytest.raises(ConfigurationError):
            Histogram("amount", buckets=buckets)
