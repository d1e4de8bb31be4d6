"""Core infrastructure: configuration, logging, errors and data access."""

from dqengine.core.config import Settings, get_settings
from dqengine.core.connections import DataSource, DuckDBDataSource
from dqengine.core.errors import (
    AnalysisAbortedError,
    AnalyzerError,
    ConfigurationError,
    DataAccessError,
    DQEngineError,
    InsufficientHistoryError,
    MetricKeyCollisionError,
    PartialProfileError,
    PartitionAlreadyProcessedError,
    StateIncompatibilityError,
    StoreCorruptionError,
    StoreError,
)
from dqengine.core.models import ExecutionContext, RunStatus, quote_identifier

__all__ = [
    "AnalysisAbortedError",
    "AnalyzerError",
    "ConfigurationError",
    "DQEngineError",
    "DataAccessError",
    "DataSource",
    "DuckDBDataSource",
    "ExecutionContext",
    "InsufficientHistoryError",
    "MetricKeyCollisionError",
    "PartialProfileError",
    "PartitionAlreadyProcessedError",
    "RunStatus",
    "Settings",
    "StateIncompatibilityError",
    "StoreCorruptionError",
    "StoreError",
    "get_settings",
    "quote_identifier",
]
