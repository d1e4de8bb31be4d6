"""Metric history storage consumed by anomaly detection."""

from __future__ import annotations

import bisect
from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta

from dqengine.analyzers.context import AnalyzerContext
from dqengine.anomaly.models import MetricDataPoint
from dqengine.core.errors import ConfigurationError
from dqengine.core.logging import get_logger
from dqengine.metrics.values import MetricValue

logger = get_logger(__name__)


class MetricsRepository(ABC):
    """Time series of metric values keyed by metric name."""

    @abstractmethod
    async def store(
        self,
        metric_name: str,
        value: MetricValue,
        timestamp: datetime | None = None,
        tags: dict[str, str] | None = None,
    ) -> None:
        """Record one observation (timestamp defaults to now)."""

    @abstractmethod
    async def get_history(
        self,
        metric_name: str,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int | None = None,
    ) -> list[MetricDataPoint]:
        """Observations in ``[since, until]`` ordered by timestamp.

        With ``limit``, only the most recent ``limit`` observations are returned.
        """

    async def store_context(
        self,
        context: AnalyzerContext,
        timestamp: datetime | None = None,
        tags: dict[str, str] | None = None,
    ) -> None:
        """Record every metric of an analysis run under one timestamp."""
        timestamp = timestamp or datetime.now(UTC)
        for metric_name, value in context.metrics.items():
            await self.store(metric_name, value, timestamp, tags)


class InMemoryMetricsRepository(MetricsRepository):
    """Process-local repository with bounded history per metric.

    Points more than ``max_age`` older than a metric's newest point are
    dropped, then only the newest ``max_points_per_metric`` are kept.
    """

    def __init__(
        self,
        max_points_per_metric: int = 10_000,
        max_age: timedelta | None = timedelta(days=30),
    ):
        if max_points_per_metric <= 0:
            raise ConfigurationError("max_points_per_metric must be positive")
        self.max_points_per_metric = max_points_per_metric
        self.max_age = max_age
        self._series: dict[str, list[MetricDataPoint]] = {}

    async def store(
        self,
        metric_name: str,
        value: MetricValue,
        timestamp: datetime | None = None,
        tags: dict[str, str] | None = None,
    ) -> None:
        point = MetricDataPoint(
            timestamp=timestamp or datetime.now(UTC),
            value=value,
            tags=tags or {},
        )
        series = self._series.setdefault(metric_name, [])
        bisect.insort(series, point, key=lambda p: p.timestamp)
        self._enforce_limits(metric_name, series)

    def _enforce_limits(self, metric_name: str, series: list[MetricDataPoint]) -> None:
        before = len(series)
        if self.max_age is not None:
            cutoff = series[-1].timestamp - self.max_age
            first_kept = bisect.bisect_left(series, cutoff, key=lambda p: p.timestamp)
            del series[:first_kept]
        overflow = len(series) - self.max_points_per_metric
        if overflow > 0:
            del series[:overflow]
        if len(series) < before:
            logger.debug("metric_history_trimmed", metric=metric_name, removed=before - len(series))

    async def get_history(
        self,
        metric_name: str,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int | None = None,
    ) -> list[MetricDataPoint]:
        points = [
            p
            for p in self._series.get(metric_name, [])
            if (since is None or p.timestamp >= since) and (until is None or p.timestamp <= until)
        ]
        if limit is not None:
            points = points[-limit:] if limit > 0 else []
        return points

    @property
    def metric_names(self) -> list[str]:
        return sorted(self._series)

    def point_count(self, metric_name: str | None = None) -> int:
        if metric_name is not None:
            return len(self._series.get(metric_name, []))
        return sum(len(series) for series in self._series.values())
