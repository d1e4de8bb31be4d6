"""Exact analyzers backed by single aggregate queries."""

from __future__ import annotations

from dqengine.analyzers.base import Analyzer, ColumnAnalyzer, fetch_aggregate
from dqengine.core.connections import DataSource
from dqengine.core.errors import AnalyzerError
from dqengine.core.models.base import ExecutionContext, quote_identifier
from dqengine.metrics.state import (
    CompletenessState,
    MeanState,
    MinMaxState,
    SizeState,
    StdDevState,
    SumState,
)
from dqengine.metrics.values import DoubleMetric, MetricValue


def _as_double(column: str) -> str:
    return f"CAST({quote_identifier(column)} AS DOUBLE)"


class Size(Analyzer[SizeState]):
    """Number of rows."""

    name = "size"
    description = "Number of rows"

    def __init__(self) -> None:
        super().__init__(column=None)

    def empty_state(self) -> SizeState:
        return SizeState.empty()

    async def compute_state(self, source: DataSource, ctx: ExecutionContext) -> SizeState:
        (count,) = await fetch_aggregate(source, f"SELECT COUNT(*) {ctx.from_clause}")
        return SizeState(count=int(count))


class Completeness(ColumnAnalyzer[CompletenessState]):
    """Fraction of non-null values."""

    name = "completeness"
    description = "Fraction of non-null values"

    def empty_state(self) -> CompletenessState:
        return CompletenessState.empty()

    async def compute_state(self, source: DataSource, ctx: ExecutionContext) -> CompletenessState:
        column = quote_identifier(self.column)
        total, non_null = await fetch_aggregate(
            source, f"SELECT COUNT(*), COUNT({column}) {ctx.from_clause}"
        )
        return CompletenessState(non_null=int(non_null), total=int(total))


class Sum(ColumnAnalyzer[SumState]):
    name = "sum"
    description = "Sum of non-null values"

    def empty_state(self) -> SumState:
        return SumState.empty()

    async def compute_state(self, source: DataSource, ctx: ExecutionContext) -> SumState:
        value = _as_double(self.column)
        total, count = await fetch_aggregate(
            source, f"SELECT SUM({value}), COUNT({value}) {ctx.from_clause}"
        )
        return SumState(total=float(total or 0.0), count=int(count))


class Mean(ColumnAnalyzer[MeanState]):
    name = "mean"
    description = "Arithmetic mean of non-null values"

    def empty_state(self) -> MeanState:
        return MeanState.empty()

    async def compute_state(self, source: DataSource, ctx: ExecutionContext) -> MeanState:
        value = _as_double(self.column)
        total, count = await fetch_aggregate(
            source, f"SELECT SUM({value}), COUNT({value}) {ctx.from_clause}"
        )
        return MeanState(total=float(total or 0.0), count=int(count))


class StandardDeviation(ColumnAnalyzer[StdDevState]):
    name = "stddev"
    description = "Population standard deviation of non-null values"

    def empty_state(self) -> StdDevState:
        return StdDevState.empty()

    async def compute_state(self, source: DataSource, ctx: ExecutionContext) -> StdDevState:
        value = _as_double(self.column)
        count, total, squares = await fetch_aggregate(
            source,
            f"SELECT COUNT({value}), SUM({value}), SUM({value} * {value}) {ctx.from_clause}",
        )
        return StdDevState(
            count=int(count),
            total=float(total or 0.0),
            sum_of_squares=float(squares or 0.0),
        )


class _MinMaxAnalyzer(ColumnAnalyzer[MinMaxState]):
    def empty_state(self) -> MinMaxState:
        return MinMaxState.empty()

    async def compute_state(self, source: DataSource, ctx: ExecutionContext) -> MinMaxState:
        value = _as_double(self.column)
        minimum, maximum, count = await fetch_aggregate(
            source, f"SELECT MIN({value}), MAX({value}), COUNT({value}) {ctx.from_clause}"
        )
        return MinMaxState(
            minimum=None if minimum is None else float(minimum),
            maximum=None if maximum is None else float(maximum),
            count=int(count),
        )


class Minimum(_MinMaxAnalyzer):
    name = "minimum"
    description = "Smallest non-null value"

    def compute_metric(self, state: MinMaxState) -> MetricValue:
        if state.minimum is None:
            raise AnalyzerError(f"No non-null values in column {self.column}")
        return DoubleMetric(value=state.minimum)


class Maximum(_MinMaxAnalyzer):
    name = "maximum"
    description = "Largest non-null value"

    def compute_metric(self, state: MinMaxState) -> MetricValue:
        if state.maximum is None:
            raise AnalyzerError(f"No non-null values in column {self.column}")
        return DoubleMetric(value=state.maximum)
