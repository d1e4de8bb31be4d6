"""Incremental, partition-by-partition analysis.

For every new partition the runner computes fresh analyzer states, merges
them into the series' cumulative states and persists the result, so
processed data is never scanned again. Metrics are finalized on demand.

Store layout for a series ``s``:

- ``series/s/cumulative``: merged states of every processed partition, plus
  the processed-partition marker, the partition each metric key was first
  seen in and the analyzers still pending per partition
- ``series/s/partition/<key>``: the states of a single partition (optional,
  for audit and ``partition_metrics``), removed only by ``prune_partitions``

A partition commits the states of every analyzer that succeeded on it.
Analyzers that failed are recorded as pending for that partition; when the
partition is submitted again only the pending analyzers run, so the states
already merged are never counted twice. The delta is saved before the
cumulative snapshot; a failed save leaves the processed marker where it
was, so a partition is never lost and never counted twice.
"""

from __future__ import annotations

import asyncio
from collections.abc import Collection, Sequence
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from dqengine.analyzers.base import Analyzer
from dqengine.analyzers.context import AnalysisError, AnalyzerContext
from dqengine.analyzers.runner import FATAL_ERRORS, should_stop
from dqengine.core.config import Settings, get_settings
from dqengine.core.connections import DataSource
from dqengine.core.errors import (
    AnalysisAbortedError,
    DQEngineError,
    MetricKeyCollisionError,
    PartitionAlreadyProcessedError,
    StoreError,
)
from dqengine.core.logging import get_logger, increment_analyzers_run, log_context
from dqengine.core.models.base import ExecutionContext, RunStatus
from dqengine.incremental.state_store import StateSnapshot, StateStore
from dqengine.metrics.codec import decode_state, encode_state
from dqengine.metrics.values import MetricValue

logger = get_logger(__name__)


class ReprocessPolicy(str, Enum):
    """What happens when an already processed partition is submitted again."""

    REJECT = "reject"
    SKIP = "skip"


class PartitionStatus(str, Enum):
    PROCESSED = "processed"
    # Committed, but some analyzers failed and are pending a retry
    PARTIAL = "partial"
    SKIPPED = "skipped"
    # Nothing committed
    FAILED = "failed"


class IncrementalConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    reprocess_policy: ReprocessPolicy = ReprocessPolicy.REJECT
    record_deltas: bool = True
    max_concurrency: int = Field(default=4, gt=0)
    continue_on_error: bool = True

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **overrides: Any) -> IncrementalConfig:
        settings = settings or get_settings()
        return cls(max_concurrency=settings.incremental_max_concurrency, **overrides)


class SchemaGap(BaseModel):
    """An analyzer skipped for one partition because its columns are missing."""

    model_config = ConfigDict(frozen=True)

    partition_key: str
    metric_key: str
    missing_columns: list[str]


class FailedAnalyzer(BaseModel):
    """An analyzer that raised on one partition.

    Its state is missing from the cumulative states until the partition is
    submitted again and the analyzer succeeds.
    """

    model_config = ConfigDict(frozen=True)

    partition_key: str
    metric_key: str
    error_type: str
    message: str


class PartitionResult(BaseModel):
    partition_key: str
    status: PartitionStatus
    metrics: dict[str, MetricValue] = Field(default_factory=dict)
    errors: list[AnalysisError] = Field(default_factory=list)
    schema_gaps: list[SchemaGap] = Field(default_factory=list)
    failed_analyzers: list[FailedAnalyzer] = Field(default_factory=list)
    # Pending metric keys re-run for an already processed partition
    retried: list[str] = Field(default_factory=list)
    # Metric keys first seen in this partition after earlier partitions -> this partition
    partial_history: dict[str, str] = Field(default_factory=dict)


class PartitionFailure(BaseModel):
    partition_key: str
    error_type: str
    message: str


class IncrementalRunResult(BaseModel):
    series_id: str
    results: list[PartitionResult] = Field(default_factory=list)
    failures: list[PartitionFailure] = Field(default_factory=list)
    # Partitions never started because of cancellation or the deadline
    cancelled: list[str] = Field(default_factory=list)

    @property
    def status(self) -> RunStatus:
        if self.cancelled:
            return RunStatus.CANCELLED
        incomplete = (PartitionStatus.FAILED, PartitionStatus.PARTIAL)
        if self.failures or any(r.status in incomplete for r in self.results):
            return RunStatus.COMPLETED_WITH_ERRORS
        return RunStatus.COMPLETED


class IncrementalAnalysisRunner:
    """Maintains cumulative analyzer states for one series of partitions.

    Usage:
        runner = IncrementalAnalysisRunner(store, "orders")
        runner.add(Size()).add(Mean("amount"))
        await runner.process_partition(source, ctx.with_predicate("day = '2024-01-01'"), "2024-01-01")
        context = await runner.cumulative_metrics()
    """

    def __init__(
        self,
        store: StateStore,
        series_id: str,
        config: IncrementalConfig | None = None,
    ):
        self.store = store
        self.series_id = series_id
        self.config = config or IncrementalConfig.from_settings()
        self._analyzers: dict[str, Analyzer[Any]] = {}

    def add(self, analyzer: Analyzer[Any]) -> IncrementalAnalysisRunner:
        if analyzer.metric_key in self._analyzers:
            raise MetricKeyCollisionError(analyzer.metric_key)
        self._analyzers[analyzer.metric_key] = analyzer
        return self

    @property
    def analyzer_count(self) -> int:
        return len(self._analyzers)

    @property
    def cumulative_key(self) -> str:
        return f"series/{self.series_id}/cumulative"

    def partition_state_key(self, partition_key: str) -> str:
        return f"series/{self.series_id}/partition/{partition_key}"

    @property
    def _partition_prefix(self) -> str:
        return f"series/{self.series_id}/partition/"

    # -- Processing -----------------------------------------------------------

    async def process_partition(
        self,
        source: DataSource,
        ctx: ExecutionContext,
        partition_key: str,
        policy: ReprocessPolicy | None = None,
    ) -> PartitionResult:
        """Analyze one partition and merge it into the cumulative states.

        A processed partition with pending analyzers is not a reprocess:
        only its pending analyzers run and their states are merged in.

        Raises:
            PartitionAlreadyProcessedError: the partition was processed before (REJECT policy)
            AnalysisAbortedError: an analyzer failed and continue_on_error is False
            StoreError: persisting failed; the partition is not marked processed
            StateIncompatibilityError: stored and fresh states cannot be merged
        """
        policy = policy or self.config.reprocess_policy
        with log_context(series_id=self.series_id, partition=partition_key):
            cumulative = await self._load_cumulative()
            retry = self._pending_for(cumulative, partition_key)
            if partition_key in _processed(cumulative) and not retry:
                return await self._already_processed(partition_key, policy)

            fresh, result = await self._compute_states(
                source, ctx, partition_key, only=retry or None
            )
            if result.failed_analyzers and not fresh:
                result.status = PartitionStatus.FAILED
                logger.warning("partition_not_committed", errors=len(result.errors))
                return result

            async with self.store.lock(self.cumulative_key):
                # Reload under the lock: another task may have committed meanwhile
                cumulative = await self._load_cumulative()
                pending: set[str] | None = None
                if partition_key in _processed(cumulative):
                    pending = set(self._pending_for(cumulative, partition_key))
                    if not retry or not pending:
                        return await self._already_processed(partition_key, policy)
                    fresh = {key: state for key, state in fresh.items() if key in pending}
                    result.failed_analyzers = [
                        f for f in result.failed_analyzers if f.metric_key in pending
                    ]
                    result.retried = sorted(pending)
                result.partial_history = await self._commit(
                    cumulative, partition_key, fresh, result, pending
                )

            result.metrics = self._finalize(fresh, result)
            if result.failed_analyzers:
                result.status = PartitionStatus.PARTIAL
            logger.info(
                "partition_processed",
                status=result.status.value,
                metrics=len(result.metrics),
                failed_analyzers=[f.metric_key for f in result.failed_analyzers],
                retried=result.retried,
                schema_gaps=len(result.schema_gaps),
                partial_history=list(result.partial_history),
            )
            return result

    async def process_partitions(
        self,
        partitions: Sequence[tuple[str, ExecutionContext]],
        source: DataSource,
        *,
        deadline: datetime | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> IncrementalRunResult:
        """Process many partitions, at most ``max_concurrency`` at a time.

        Per-partition failures are collected; results keep the input order.
        Partitions not yet started when ``cancel_event`` is set or
        ``deadline`` passes are reported as cancelled; partitions already
        running finish. A fatal error cancels every other partition and is
        raised.
        """
        semaphore = asyncio.Semaphore(self.config.max_concurrency)
        run = IncrementalRunResult(series_id=self.series_id)
        cancelled: set[int] = set()

        async def process(
            index: int, partition_key: str, ctx: ExecutionContext
        ) -> PartitionResult | None:
            async with semaphore:
                if should_stop(deadline, cancel_event):
                    cancelled.add(index)
                    return None
                try:
                    return await self.process_partition(source, ctx, partition_key)
                except FATAL_ERRORS:
                    raise
                except DQEngineError as e:
                    logger.warning(
                        "partition_failed", partition=partition_key, error_type=type(e).__name__
                    )
                    run.failures.append(
                        PartitionFailure(
                            partition_key=partition_key,
                            error_type=type(e).__name__,
                            message=str(e),
                        )
                    )
                    return None

        logger.info("partitions_started", series_id=self.series_id, partitions=len(partitions))
        try:
            async with asyncio.TaskGroup() as group:
                tasks = [
                    group.create_task(process(index, key, ctx))
                    for index, (key, ctx) in enumerate(partitions)
                ]
        except ExceptionGroup as errors:
            logger.error(
                "partitions_aborted", series_id=self.series_id, errors=len(errors.exceptions)
            )
            raise errors.exceptions[0] from None

        outcomes = [task.result() for task in tasks]
        run.results = [outcome for outcome in outcomes if outcome is not None]
        run.cancelled = [key for index, (key, _) in enumerate(partitions) if index in cancelled]
        logger.info(
            "partitions_completed",
            series_id=self.series_id,
            status=run.status.value,
            processed=len(run.results),
            failed=len(run.failures),
            cancelled=len(run.cancelled),
        )
        return run

    async def _compute_states(
        self,
        source: DataSource,
        ctx: ExecutionContext,
        partition_key: str,
        only: Collection[str] | None = None,
    ) -> tuple[dict[str, Any], PartitionResult]:
        result = PartitionResult(partition_key=partition_key, status=PartitionStatus.PROCESSED)
        available = set(await source.column_names(ctx.table_name))
        fresh: dict[str, Any] = {}

        for key, analyzer in self._analyzers.items():
            if only is not None and key not in only:
                continue
            missing = [column for column in analyzer.columns() if column not in available]
            if missing:
                logger.info("analyzer_skipped_missing_columns", metric_key=key, missing=missing)
                result.schema_gaps.append(
                    SchemaGap(partition_key=partition_key, metric_key=key, missing_columns=missing)
                )
                continue

            try:
                fresh[key] = await analyzer.compute_state(source, ctx)
            except FATAL_ERRORS:
                raise
            except Exception as e:
                logger.warning("analyzer_failed", metric_key=key, error=str(e))
                if not self.config.continue_on_error:
                    raise AnalysisAbortedError(key, e) from e
                result.errors.append(AnalysisError.from_exception(analyzer.name, key, e))
                result.failed_analyzers.append(
                    FailedAnalyzer(
                        partition_key=partition_key,
                        metric_key=key,
                        error_type=type(e).__name__,
                        message=str(e),
                    )
                )
            finally:
                increment_analyzers_run()

        return fresh, result

    async def _commit(
        self,
        cumulative: StateSnapshot | None,
        partition_key: str,
        fresh: dict[str, Any],
        result: PartitionResult,
        retried: set[str] | None,
    ) -> dict[str, str]:
        now = datetime.now(UTC).isoformat()
        previous = cumulative or StateSnapshot()
        processed = _processed(previous)
        earlier = [key for key in processed if key != partition_key]
        first_seen: dict[str, str] = dict(previous.metadata.get("first_seen", {}))

        # Unknown stored keys are carried over untouched
        states = dict(previous.states)
        partial_history: dict[str, str] = {}
        for key, state in fresh.items():
            if key in states:
                states[key] = encode_state(decode_state(states[key]).merge(state))
            else:
                states[key] = encode_state(state)
                first_seen[key] = partition_key
                if earlier:
                    partial_history[key] = partition_key

        # Schema gaps settle a pending analyzer as well as a success does
        still_failing = sorted(f.metric_key for f in result.failed_analyzers)
        pending_by_partition: dict[str, list[str]] = {
            key: list(keys) for key, keys in previous.metadata.get("pending_analyzers", {}).items()
        }
        if still_failing:
            pending_by_partition[partition_key] = still_failing
        else:
            pending_by_partition.pop(partition_key, None)

        if self.config.record_deltas:
            delta_key = self.partition_state_key(partition_key)
            delta_states = {key: encode_state(state) for key, state in fresh.items()}
            delta_metadata: dict[str, Any] = {
                "series_id": self.series_id,
                "partition_key": partition_key,
                "processed_at": now,
                "schema_gaps": [gap.model_dump() for gap in result.schema_gaps],
            }
            if retried is not None:
                existing = await self.store.load_state(delta_key)
                if existing is not None:
                    delta_states = {**existing.states, **delta_states}
                    delta_metadata = {
                        **existing.metadata,
                        "retried_at": now,
                        "schema_gaps": existing.metadata.get("schema_gaps", [])
                        + delta_metadata["schema_gaps"],
                    }
            delta_metadata["failed_analyzers"] = [f.model_dump() for f in result.failed_analyzers]
            await self.store.save_state(
                delta_key, StateSnapshot(states=delta_states, metadata=delta_metadata)
            )

        await self.store.save_state(
            self.cumulative_key,
            StateSnapshot(
                states=states,
                metadata={
                    **previous.metadata,
                    "series_id": self.series_id,
                    "processed_partitions": (
                        processed if retried is not None else [*processed, partition_key]
                    ),
                    "first_seen": first_seen,
                    "pending_analyzers": pending_by_partition,
                    "updated_at": now,
                },
            ),
        )
        return partial_history

    def _pending_for(self, snapshot: StateSnapshot | None, partition_key: str) -> list[str]:
        """Pending metric keys of a partition that this runner can retry."""
        if snapshot is None:
            return []
        pending = snapshot.metadata.get("pending_analyzers", {}).get(partition_key, [])
        return [key for key in pending if key in self._analyzers]

    async def _already_processed(self, partition_key: str, policy: ReprocessPolicy) -> PartitionResult:
        if policy == ReprocessPolicy.REJECT:
            raise PartitionAlreadyProcessedError(self.series_id, partition_key)

        logger.info("partition_already_processed_skipped")
        result = PartitionResult(partition_key=partition_key, status=PartitionStatus.SKIPPED)
        delta = await self.store.load_state(self.partition_state_key(partition_key))
        if delta is not None:
            states = {
                key: decode_state(envelope)
                for key, envelope in delta.states.items()
                if key in self._analyzers
            }
            result.metrics = self._finalize(states, result)
        return result

    def _finalize(self, states: dict[str, Any], result: PartitionResult) -> dict[str, MetricValue]:
        metrics: dict[str, MetricValue] = {}
        for key, state in states.items():
            analyzer = self._analyzers[key]
            try:
                metrics[key] = analyzer.compute_metric(state)
            except FATAL_ERRORS:
                raise
            except Exception as e:
                result.errors.append(AnalysisError.from_exception(analyzer.name, key, e))
        return metrics

    # -- Queries --------------------------------------------------------------

    async def _load_cumulative(self) -> StateSnapshot | None:
        return await self.store.load_state(self.cumulative_key)

    async def processed_partitions(self) -> list[str]:
        return _processed(await self._load_cumulative())

    async def pending_analyzers(self) -> dict[str, list[str]]:
        """Metric keys whose state is still missing, per processed partition."""
        cumulative = await self._load_cumulative()
        if cumulative is None:
            return {}
        return {
            key: list(keys) for key, keys in cumulative.metadata.get("pending_analyzers", {}).items()
        }

    async def cumulative_metrics(self) -> AnalyzerContext:
        """Finalize the cumulative state of every registered analyzer.

        Keys stored but not registered with this runner are left alone.
        """
        context = AnalyzerContext(dataset=self.series_id)
        cumulative = await self._load_cumulative()
        if cumulative is not None:
            self._finalize_into(context, cumulative.states)
        context.finished_at = datetime.now(UTC)
        return context

    async def partition_metrics(self, partition_keys: Sequence[str]) -> AnalyzerContext:
        """Merge the recorded deltas of the given partitions and finalize them.

        Raises:
            StoreError: a partition has no recorded delta
        """
        merged: dict[str, Any] = {}
        for partition_key in partition_keys:
            delta = await self.store.load_state(self.partition_state_key(partition_key))
            if delta is None:
                raise StoreError(
                    f"No recorded state for partition {partition_key}", partition_key=partition_key
                )
            for key, envelope in delta.states.items():
                if key not in self._analyzers:
                    continue
                state = decode_state(envelope)
                merged[key] = merged[key].merge(state) if key in merged else state

        context = AnalyzerContext(dataset=self.series_id)
        self._finalize_into(context, {key: encode_state(state) for key, state in merged.items()})
        context.finished_at = datetime.now(UTC)
        return context

    def _finalize_into(self, context: AnalyzerContext, envelopes: dict[str, Any]) -> None:
        for key, analyzer in self._analyzers.items():
            envelope = envelopes.get(key)
            if envelope is None:
                continue
            try:
                context.record_metric(key, analyzer.compute_metric(decode_state(envelope)))
            except FATAL_ERRORS:
                raise
            except Exception as e:
                context.record_error(analyzer.name, key, e)

    async def prune_partitions(
        self,
        *,
        keep_last: int | None = None,
        before: str | None = None,
    ) -> list[str]:
        """Delete recorded partition deltas.

        ``keep_last`` keeps the N most recently processed partitions;
        ``before`` removes partitions whose key sorts before the given key.
        Cumulative states and the processed marker are untouched, so pruned
        partitions still count as processed.

        Returns:
            The partition keys whose deltas were removed
        """
        if keep_last is None and before is None:
            return []

        prefix = self._partition_prefix
        recorded = {key[len(prefix) :] for key in await self.store.list_partitions(prefix)}
        order = [key for key in await self.processed_partitions() if key in recorded]
        order += sorted(recorded.difference(order))

        doomed: list[str] = []
        for index, partition_key in enumerate(order):
            too_old = keep_last is not None and index < len(order) - keep_last
            too_early = before is not None and partition_key < before
            if too_old or too_early:
                doomed.append(partition_key)

        for partition_key in doomed:
            state_key = self.partition_state_key(partition_key)
            async with self.store.lock(state_key):
                await self.store.delete_state(state_key)

        logger.info("partitions_pruned", series_id=self.series_id, removed=len(doomed))
        return doomed


def _processed(snapshot: StateSnapshot | None) -> list[str]:
    if snapshot is None:
        return []
    return list(snapshot.metadata.get("processed_partitions", []))
