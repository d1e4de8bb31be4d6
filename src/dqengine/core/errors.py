"""Error taxonomy.

Recoverable, per-item failures (one analyzer, one column, one partition)
are collected into result objects by the runners. Only
StateIncompatibilityError and StoreCorruptionError are fatal.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from dqengine.analyzers.context import AnalyzerContext
    from dqengine.profiling.models import ColumnProfile


class DQEngineError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(DQEngineError):
    """A component was configured with invalid parameters."""


class DataAccessError(DQEngineError):
    """The query-execution engine failed (connectivity, malformed query, schema mismatch)."""

    def __init__(self, message: str, sql: str | None = None):
        super().__init__(message)
        self.sql = sql


class AnalyzerError(DQEngineError):
    """An analyzer could not turn the data it received into a state or metric."""


class StateIncompatibilityError(DQEngineError):
    """Attempted merge of mismatched state shapes or sketch configurations.

    This is a programming error and is never swallowed by the runners.
    """

    def __init__(self, left: Any, right: Any, reason: str | None = None):
        detail = reason or "state types differ"
        super().__init__(
            f"Cannot merge {type(left).__name__} with {type(right).__name__}: {detail}"
        )
        self.left = left
        self.right = right


class MetricKeyCollisionError(DQEngineError):
    """Two analyzers in one run would produce the same metric key."""

    def __init__(self, metric_key: str):
        super().__init__(f"Metric key already registered: {metric_key}")
        self.metric_key = metric_key


class AnalysisAbortedError(DQEngineError):
    """A run stopped at the first failure because continue_on_error is False."""

    def __init__(
        self,
        analyzer_key: str,
        cause: BaseException,
        context: AnalyzerContext | None = None,
    ):
        super().__init__(f"Analyzer {analyzer_key} failed: {cause}")
        self.analyzer_key = analyzer_key
        self.cause = cause
        self.context = context


class InsufficientHistoryError(DQEngineError):
    """A detector lacks enough history to evaluate a metric."""

    def __init__(self, required: int, available: int):
        super().__init__(
            f"Insufficient history: {available} points available, {required} required"
        )
        self.required = required
        self.available = available


class PartialProfileError(DQEngineError):
    """Pass-3 analysis of one column failed; passes 1-2 are still valid."""

    def __init__(self, column: str, cause: BaseException, profile: ColumnProfile):
        super().__init__(f"Distribution analysis failed for column {column}: {cause}")
        self.column = column
        self.cause = cause
        self.profile = profile


class StoreError(DQEngineError):
    """The state store failed to save, load, list or delete partition state."""

    def __init__(self, message: str, partition_key: str | None = None):
        super().__init__(message)
        self.partition_key = partition_key


class StoreCorruptionError(StoreError):
    """Persisted state exists but cannot be decoded."""


class PartitionAlreadyProcessedError(DQEngineError):
    """A partition was submitted again under the reject policy."""

    def __init__(self, series_id: str, partition_key: str):
        super().__init__(f"Partition {partition_key} already processed for series {series_id}")
        self.series_id = series_id
        self.partition_key = partition_key
