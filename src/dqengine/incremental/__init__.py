"""Incremental computation over partitions with persisted analyzer states."""

from dqengine.incremental.runner import (
    FailedAnalyzer,
    IncrementalAnalysisRunner,
    IncrementalConfig,
    IncrementalRunResult,
    PartitionFailure,
    PartitionResult,
    PartitionStatus,
    ReprocessPolicy,
    SchemaGap,
)
from dqengine.incremental.sql_store import SQLStateStore
from dqengine.incremental.state_store import (
    FileSystemStateStore,
    InMemoryStateStore,
    StateSnapshot,
    StateStore,
)

__all__ = [
    "FailedAnalyzer",
    "FileSystemStateStore",
    "InMemoryStateStore",
    "IncrementalAnalysisRunner",
    "IncrementalConfig",
    "IncrementalRunResult",
    "PartitionFailure",
    "PartitionResult",
    "PartitionStatus",
    "ReprocessPolicy",
    "SQLStateStore",
    "SchemaGap",
    "StateSnapshot",
    "StateStore",
]
