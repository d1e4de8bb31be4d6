"""Analyzers over the value frequencies of one column.

The state keeps one count per distinct value, so distinctness, uniqueness
and entropy are exact and merge exactly across partitions. A partition with
more distinct values than ``max_values`` keeps only its most frequent ones;
metrics that need every value then fail rather than report a wrong number.
"""

from __future__ import annotations

from dqengine.analyzers.base import ColumnAnalyzer, fetch_aggregate
from dqengine.core.config import get_settings
from dqengine.core.connections import DataSource
from dqengine.core.errors import ConfigurationError
from dqengine.core.models.base import ExecutionContext, quote_identifier
from dqengine.metrics.state import FrequencyState
from dqengine.metrics.values import DoubleMetric, MetricValue


class FrequencyAnalyzer(ColumnAnalyzer[FrequencyState]):
    """Counts the non-null values of a column, grouped by ``value_expression``."""

    def __init__(self, column: str, max_values: int | None = None):
        super().__init__(column)
        self.max_values = max_values if max_values is not None else get_settings().frequency_max_values
        if self.max_values < 1:
            raise ConfigurationError(f"max_values must be positive, got {self.max_values}")

    def empty_state(self) -> FrequencyState:
        return FrequencyState.empty()

    def value_expression(self) -> str:
        return f"CAST({quote_identifier(self.column)} AS VARCHAR)"

    async def compute_state(self, source: DataSource, ctx: ExecutionContext) -> FrequencyState:
        column = quote_identifier(self.column)
        rows = await source.fetch_all(
            f"SELECT {self.value_expression()} AS value, COUNT(*) AS n "
            f"{ctx.where(f'{column} IS NOT NULL')} "
            f"GROUP BY 1 ORDER BY n DESC, value LIMIT {self.max_values + 1}"
        )
        counts = {str(value): int(n) for value, n in rows[: self.max_values]}
        if len(rows) <= self.max_values:
            return FrequencyState(counts=counts, total=sum(counts.values()))

        (total,) = await fetch_aggregate(source, f"SELECT COUNT({column}) {ctx.from_clause}")
        return FrequencyState(counts=counts, total=int(total), truncated=True)


class Distinctness(FrequencyAnalyzer):
    name = "distinctness"
    description = "Distinct values per non-null value"

    def compute_metric(self, state: FrequencyState) -> MetricValue:
        return DoubleMetric(value=state.distinctness())


class Uniqueness(FrequencyAnalyzer):
    name = "uniqueness"
    description = "Share of non-null values occurring exactly once"

    def compute_metric(self, state: FrequencyState) -> MetricValue:
        return DoubleMetric(value=state.uniqueness())


class Entropy(FrequencyAnalyzer):
    name = "entropy"
    description = "Shannon entropy of the value distribution, in bits"

    def compute_metric(self, state: FrequencyState) -> MetricValue:
        return DoubleMetric(value=state.entropy())


class DataType(FrequencyAnalyzer):
    """Counts non-null values by the type their text form parses as.

    Types are checked in order: boolean (``true``/``false``), integer,
    double, date, timestamp, and string for everything else.
    """

    name = "data_type"
    description = "Non-null values per inferred type"

    def value_expression(self) -> str:
        text = f"CAST({quote_identifier(self.column)} AS VARCHAR)"
        return (
            "CASE "
            f"WHEN lower({text}) IN ('true', 'false') THEN 'boolean' "
            f"WHEN CAST(TRY_CAST({text} AS BIGINT) AS VARCHAR) = {text} THEN 'integer' "
            f"WHEN TRY_CAST({text} AS DOUBLE) IS NOT NULL THEN 'double' "
            f"WHEN length({text}) = 10 AND TRY_CAST({text} AS DATE) IS NOT NULL THEN 'date' "
            f"WHEN TRY_CAST({text} AS TIMESTAMP) IS NOT NULL THEN 'timestamp' "
            "ELSE 'string' END"
        )
