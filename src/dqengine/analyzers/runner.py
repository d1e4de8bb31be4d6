"""Sequential execution of many analyzers over one dataset.

Analyzers run one at a time so memory stays bounded and predictable. A
failing analyzer is recorded and skipped (``continue_on_error=True``) or
aborts the run. Cancellation and the deadline are checked between
analyzers; analyzers that never started are reported as cancelled.

Usage:
    runner = AnalysisRunner(on_progress=lambda p: print(f"{p:.0%}"))
    runner.add(Size()).add(Mean("amount")).add(Completeness("email"))
    context = await runner.run(source, ExecutionContext(table_name="orders"))
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from dqengine.analyzers.base import Analyzer, RunnableAnalyzer
from dqengine.analyzers.context import AnalyzerContext
from dqengine.core.connections import DataSource
from dqengine.core.errors import (
    AnalysisAbortedError,
    MetricKeyCollisionError,
    StateIncompatibilityError,
    StoreCorruptionError,
)
from dqengine.core.logging import (
    end_run_metrics,
    get_logger,
    get_run_metrics,
    increment_analyzers_run,
    log_context,
    record_operation_timing,
    start_run_metrics,
)
from dqengine.core.models.base import ExecutionContext

logger = get_logger(__name__)

ProgressCallback = Callable[[float], None]

# Never downgraded to a recorded per-analyzer error
FATAL_ERRORS: tuple[type[BaseException], ...] = (StateIncompatibilityError, StoreCorruptionError)


def report_progress(callback: Callable[[Any], None] | None, progress: Any) -> None:
    """Invoke a progress callback; its failures are logged and ignored."""
    if callback is None:
        return
    try:
        callback(progress)
    except Exception as e:
        logger.warning("progress_callback_failed", error=str(e))


def should_stop(deadline: datetime | None, cancel_event: asyncio.Event | None) -> bool:
    if cancel_event is not None and cancel_event.is_set():
        return True
    return deadline is not None and datetime.now(UTC) >= deadline


class AnalysisRunner:
    """Runs a heterogeneous collection of analyzers and collects their metrics."""

    def __init__(
        self,
        continue_on_error: bool = True,
        on_progress: ProgressCallback | None = None,
    ):
        self.continue_on_error = continue_on_error
        self.on_progress = on_progress
        self._analyzers: dict[str, RunnableAnalyzer] = {}

    def add(self, analyzer: Analyzer[Any] | RunnableAnalyzer) -> AnalysisRunner:
        """Register an analyzer.

        Raises:
            MetricKeyCollisionError: another analyzer already produces the same key
        """
        runnable = analyzer if isinstance(analyzer, RunnableAnalyzer) else analyzer.runnable()
        if runnable.metric_key in self._analyzers:
            raise MetricKeyCollisionError(runnable.metric_key)
        self._analyzers[runnable.metric_key] = runnable
        return self

    def add_all(self, analyzers: Iterable[Analyzer[Any] | RunnableAnalyzer]) -> AnalysisRunner:
        for analyzer in analyzers:
            self.add(analyzer)
        return self

    @property
    def analyzer_count(self) -> int:
        return len(self._analyzers)

    @property
    def metric_keys(self) -> list[str]:
        return list(self._analyzers)

    async def run(
        self,
        source: DataSource,
        ctx: ExecutionContext,
        *,
        deadline: datetime | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> AnalyzerContext:
        """Run every registered analyzer against the data selected by ``ctx``.

        Every event logged during the run carries the context's ``run_id``.

        Raises:
            AnalysisAbortedError: an analyzer failed and continue_on_error is False
            StateIncompatibilityError: always propagated
        """
        context = AnalyzerContext(dataset=ctx.dataset or ctx.table_name, run_id=uuid4().hex)
        with log_context(run_id=context.run_id):
            return await self._run_all(source, ctx, context, deadline, cancel_event)

    async def _run_all(
        self,
        source: DataSource,
        ctx: ExecutionContext,
        context: AnalyzerContext,
        deadline: datetime | None,
        cancel_event: asyncio.Event | None,
    ) -> AnalyzerContext:
        owns_metrics = get_run_metrics() is None
        if owns_metrics:
            start_run_metrics("analysis")

        pending = list(self._analyzers.values())
        total = len(pending)

        logger.info("analysis_started", source=str(ctx), analyzers=total)

        try:
            for index, runnable in enumerate(pending):
                if should_stop(deadline, cancel_event):
                    context.cancelled.extend(r.metric_key for r in pending[index:])
                    logger.warning(
                        "analysis_cancelled",
                        completed=index,
                        cancelled=len(context.cancelled),
                    )
                    break

                await self._run_one(runnable, source, ctx, context)
                report_progress(self.on_progress, (index + 1) / total)
        finally:
            context.finished_at = datetime.now(UTC)
            run_metrics = end_run_metrics() if owns_metrics else None

        logger.info(
            "analysis_completed",
            status=context.status.value,
            metrics=len(context.metrics),
            errors=len(context.errors),
            **({"run": run_metrics.to_dict()} if run_metrics else {}),
        )
        return context

    async def _run_one(
        self,
        runnable: RunnableAnalyzer,
        source: DataSource,
        ctx: ExecutionContext,
        context: AnalyzerContext,
    ) -> None:
        start = time.perf_counter()
        try:
            key, value = await runnable.run(source, ctx)
        except FATAL_ERRORS:
            raise
        except Exception as e:
            logger.warning(
                "analyzer_failed",
                analyzer=runnable.name,
                metric_key=runnable.metric_key,
                error_type=type(e).__name__,
                error=str(e),
            )
            if not self.continue_on_error:
                context.finished_at = datetime.now(UTC)
                raise AnalysisAbortedError(runnable.metric_key, e, context) from e
            context.record_error(runnable.name, runnable.metric_key, e)
            return
        finally:
            increment_analyzers_run()
            record_operation_timing(runnable.metric_key, time.perf_counter() - start)

        context.record_metric(key, value)
        logger.debug("analyzer_completed", metric_key=key, value=value.to_pretty())
