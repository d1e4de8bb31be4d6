"""Analyzer base classes.

An analyzer computes one metric in two phases:

1. ``compute_state`` reads from the data source and returns a mergeable
   state. This is the only operation that suspends.
2. ``compute_metric`` finalizes a state into a MetricValue. It is pure.

Splitting the phases is what allows the incremental runner to merge
states from many partitions before finalizing once.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any, ClassVar, Generic, TypeVar

from dqengine.core.connections import DataSource
from dqengine.core.errors import AnalyzerError, ConfigurationError
from dqengine.core.models.base import ExecutionContext
from dqengine.metrics.values import MetricValue

S = TypeVar("S")


class Analyzer(ABC, Generic[S]):
    """Computes one metric through a mergeable state of type ``S``."""

    name: ClassVar[str]
    description: ClassVar[str] = ""

    def __init__(self, column: str | None = None):
        self.column = column

    @property
    def metric_key(self) -> str:
        """Unique key of the produced metric within one run."""
        if self.column is None:
            return self.name
        return f"{self.name}.{self.column}"

    def columns(self) -> list[str]:
        """Columns this analyzer reads (used to detect schema drift)."""
        return [] if self.column is None else [self.column]

    @abstractmethod
    def empty_state(self) -> S:
        """Identity element for ``merge``."""

    @abstractmethod
    async def compute_state(self, source: DataSource, ctx: ExecutionContext) -> S:
        """Read the data selected by ``ctx`` and summarize it."""

    def compute_metric(self, state: S) -> MetricValue:
        return state.to_metric()  # type: ignore[attr-defined]

    def merge_states(self, states: Iterable[S]) -> S:
        result = self.empty_state()
        for state in states:
            result = result.merge(state)  # type: ignore[attr-defined]
        return result

    async def calculate(self, source: DataSource, ctx: ExecutionContext) -> MetricValue:
        return self.compute_metric(await self.compute_state(source, ctx))

    def runnable(self) -> RunnableAnalyzer:
        return RunnableAnalyzer.wrap(self)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.metric_key!r})"


class ColumnAnalyzer(Analyzer[S]):
    """Analyzer over exactly one column."""

    column: str

    def __init__(self, column: str):
        if not column:
            raise ConfigurationError(f"{type(self).__name__} requires a column")
        super().__init__(column=column)


@dataclass(frozen=True)
class RunnableAnalyzer:
    """Type-erased analyzer: knows only its keys and how to produce a metric.

    The closure captured by ``wrap`` keeps the concrete state type private,
    so analyzers with different state types can live in one collection.
    """

    name: str
    metric_key: str
    columns: tuple[str, ...]
    _run: Callable[[DataSource, ExecutionContext], Awaitable[MetricValue]]

    @classmethod
    def wrap(cls, analyzer: Analyzer[Any]) -> RunnableAnalyzer:
        async def run(source: DataSource, ctx: ExecutionContext) -> MetricValue:
            state = await analyzer.compute_state(source, ctx)
            return analyzer.compute_metric(state)

        return cls(
            name=analyzer.name,
            metric_key=analyzer.metric_key,
            columns=tuple(analyzer.columns()),
            _run=run,
        )

    async def run(self, source: DataSource, ctx: ExecutionContext) -> tuple[str, MetricValue]:
        return self.metric_key, await self._run(source, ctx)


async def fetch_aggregate(source: DataSource, sql: str) -> tuple[Any, ...]:
    """Run a single-row aggregate query."""
    row = await source.fetch_one(sql)
    if row is None:
        raise AnalyzerError(f"Aggregate query returned no rows: {sql}")
    return row
