"""Approximate analyzers that stream a column into a sketch.

Memory is bounded by the sketch size, not by the number of rows: the
column is fetched in batches and every batch is folded into the sketch.
"""

from __future__ import annotations

import random
from collections.abc import Iterable

from dqengine.analyzers.base import ColumnAnalyzer
from dqengine.core.config import get_settings
from dqengine.core.connections import DataSource
from dqengine.core.errors import AnalyzerError, ConfigurationError
from dqengine.core.models.base import ExecutionContext, quote_identifier
from dqengine.metrics.values import DistributionMetric, DoubleMetric, MetricValue
from dqengine.sketches.hyperloglog import HyperLogLogSketch, HyperLogLogState, validate_precision
from dqengine.sketches.kll import (
    DEFAULT_QUANTILES,
    KLLSketch,
    KLLSketchState,
    quantile_label,
    validate_k,
)


class ApproxCountDistinct(ColumnAnalyzer[HyperLogLogState]):
    """Distinct count estimated with HyperLogLog."""

    name = "approx_count_distinct"
    description = "Approximate number of distinct non-null values"

    def __init__(self, column: str, precision: int | None = None, seed: int = 0):
        super().__init__(column)
        self.precision = validate_precision(
            precision if precision is not None else get_settings().hll_precision
        )
        self.seed = seed

    def empty_state(self) -> HyperLogLogState:
        return HyperLogLogState.empty(precision=self.precision, seed=self.seed)

    async def compute_state(self, source: DataSource, ctx: ExecutionContext) -> HyperLogLogState:
        column = quote_identifier(self.column)
        sketch = HyperLogLogSketch(precision=self.precision, seed=self.seed)
        sql = f"SELECT {column} {ctx.where(f'{column} IS NOT NULL')}"
        async for values in source.iter_column(sql):
            sketch.update_many(values)
        return sketch.to_state()


class ApproxQuantiles(ColumnAnalyzer[KLLSketchState]):
    """Quantiles of a numeric column estimated with a KLL sketch.

    ``seed`` pins the compaction randomness; without it every run draws
    fresh randomness.
    """

    name = "approx_quantiles"
    description = "Approximate quantiles of non-null values"

    def __init__(
        self,
        column: str,
        quantiles: Iterable[float] = DEFAULT_QUANTILES,
        k: int | None = None,
        seed: int | None = None,
    ):
        super().__init__(column)
        self.quantiles = tuple(quantiles)
        self.k = validate_k(k if k is not None else get_settings().kll_k)
        self.seed = seed

    def empty_state(self) -> KLLSketchState:
        return KLLSketchState.empty(k=self.k, quantiles=self.quantiles)

    async def compute_state(self, source: DataSource, ctx: ExecutionContext) -> KLLSketchState:
        column = quote_identifier(self.column)
        rng = random.Random(self.seed) if self.seed is not None else None
        sketch = KLLSketch(k=self.k, rng=rng, quantiles=self.quantiles)
        sql = f"SELECT CAST({column} AS DOUBLE) {ctx.where(f'{column} IS NOT NULL')}"
        async for values in source.iter_column(sql):
            sketch.update_many(values)
        return sketch.to_state()


class ApproxQuantile(ApproxQuantiles):
    """A single quantile, reported as a scalar."""

    name = "approx_quantile"
    description = "Approximate quantile of non-null values"

    def __init__(self, column: str, quantile: float, k: int | None = None, seed: int | None = None):
        super().__init__(column, quantiles=(quantile,), k=k, seed=seed)
        self.quantile = quantile

    @property
    def metric_key(self) -> str:
        return f"{self.name}.{self.column}.{quantile_label(self.quantile)}"

    def compute_metric(self, state: KLLSketchState) -> MetricValue:
        return DoubleMetric(value=state.quantile(self.quantile))


class Histogram(ApproxQuantiles):
    """Equal-width histogram of a numeric column between its minimum and maximum.

    Bucket counts are read off the KLL sketch: exact until the sketch starts
    compacting, within its rank error after. Buckets are ``(lower, upper]``
    except the first, which also holds the minimum.
    """

    name = "histogram"
    description = "Equal-width bucket counts of non-null values"

    def __init__(self, column: str, buckets: int = 10, k: int | None = None, seed: int | None = None):
        if not 1 <= buckets <= 1000:
            raise ConfigurationError(f"Histogram buckets must be in 1..1000, got {buckets}")
        super().__init__(column, k=k, seed=seed)
        self.buckets = buckets

    def compute_metric(self, state: KLLSketchState) -> MetricValue:
        if state.n == 0 or state.min_value is None or state.max_value is None:
            raise AnalyzerError("Histogram of an empty column is undefined")
        low, high = state.min_value, state.max_value
        if low == high:
            return DistributionMetric(values={_bucket_label(low, high): float(state.n)})

        width = (high - low) / self.buckets
        edges = [low + i * width for i in range(self.buckets)] + [high]
        ranks = [0.0, *state.cdf(edges[1:])]
        counts = [round(state.n * (ranks[i + 1] - ranks[i])) for i in range(self.buckets)]
        return DistributionMetric(
            values={
                _bucket_label(edges[i], edges[i + 1]): float(count) for i, count in enumerate(counts)
            }
        )


def _bucket_label(lower: float, upper: float) -> str:
    return f"{lower:.6g}..{upper:.6g}"
