"""Structured logging for dqengine.

Every module logs through structlog with event-style messages:

    logger = get_logger(__name__)
    logger.info("partition_committed", series="orders", partition="2024-01-01")

Runners bind scoped context with ``log_context`` so nested events carry the
series, partition or table they belong to. A lightweight ``RunMetrics``
collector counts queries, rows and store traffic for the run currently in
flight; the counters are no-ops when no run is active.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, cast

import structlog
from structlog.typing import FilteringBoundLogger

from dqengine.core.config import Settings, get_settings

COUNTERS = ("analyzers_run", "queries", "rows_scanned", "store_reads", "store_writes")


@dataclass
class RunMetrics:
    """Counters and timings for one analysis or incremental run."""

    run_name: str
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None
    counters: dict[str, int] = field(default_factory=lambda: dict.fromkeys(COUNTERS, 0))
    timings: dict[str, float] = field(default_factory=dict)

    def __getattr__(self, name: str) -> int:
        # Expose counters as attributes: metrics.queries, metrics.store_reads
        counters = self.__dict__.get("counters", {})
        if name in counters:
            return counters[name]
        raise AttributeError(name)

    @property
    def duration_seconds(self) -> float:
        end = self.finished_at or datetime.now(UTC)
        return (end - self.started_at).total_seconds()

    def bump(self, counter: str, amount: int = 1) -> None:
        self.counters[counter] = self.counters.get(counter, 0) + amount

    def add_timing(self, operation: str, seconds: float) -> None:
        self.timings[operation] = self.timings.get(operation, 0.0) + seconds

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_name": self.run_name,
            "duration_seconds": round(self.duration_seconds, 6),
            **self.counters,
            "timings": dict(self.timings),
        }


_active_run: ContextVar[RunMetrics | None] = ContextVar("dqengine_active_run", default=None)


def start_run_metrics(run_name: str) -> RunMetrics:
    metrics = RunMetrics(run_name=run_name)
    _active_run.set(metrics)
    return metrics


def get_run_metrics() -> RunMetrics | None:
    return _active_run.get()


def end_run_metrics() -> RunMetrics | None:
    """Close the active run and return its metrics, if any."""
    metrics = _active_run.get()
    if metrics is not None:
        metrics.finished_at = datetime.now(UTC)
        _active_run.set(None)
    return metrics


def _bump(counter: str, amount: int = 1) -> None:
    metrics = _active_run.get()
    if metrics is not None:
        metrics.bump(counter, amount)


def increment_query() -> None:
    _bump("queries")


def record_rows_scanned(count: int) -> None:
    _bump("rows_scanned", count)


def increment_analyzers_run() -> None:
    _bump("analyzers_run")


def increment_store_read() -> None:
    _bump("store_reads")


def increment_store_write() -> None:
    _bump("store_writes")


def record_operation_timing(operation: str, seconds: float) -> None:
    metrics = _active_run.get()
    if metrics is not None:
        metrics.add_timing(operation, seconds)


def _add_run_name(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    metrics = _active_run.get()
    if metrics is not None:
        event_dict.setdefault("run", metrics.run_name)
    return event_dict


@contextmanager
def log_context(**context: Any) -> Iterator[None]:
    """Bind key-value pairs to every event logged inside the block."""
    with structlog.contextvars.bound_contextvars(**context):
        yield


def configure_logging(settings: Settings | None = None, *, color: bool = True) -> None:
    """Configure structlog and stdlib logging from settings.

    ``log_format`` selects ``"json"`` for service deployments; anything else
    renders for the console.
    """
    settings = settings or get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    processors: list[structlog.types.Processor] = [
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.contextvars.merge_contextvars,
        _add_run_name,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
    ]
    if settings.log_format == "json":
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(colors=color, exception_formatter=structlog.dev.plain_traceback)
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
    # duckdb, sqlalchemy and aiosqlite log through the stdlib
    logging.basicConfig(format="%(message)s", level=level, stream=sys.stderr, force=True)


def get_logger(name: str | None = None) -> FilteringBoundLogger:
    return cast(FilteringBoundLogger, structlog.get_logger(name))


configure_logging()
