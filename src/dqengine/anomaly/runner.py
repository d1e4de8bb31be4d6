"""Anomaly detection over a set of freshly computed metrics.

Usage:
    runner = AnomalyDetectionRunner(InMemoryMetricsRepository())
    runner.add_detector("size", RelativeRateOfChangeDetector.symmetric(0.2))
    runner.add_detector("completeness.*", AbsoluteChangeDetector(0.05))
    runner.add_detector("*", ZScoreDetector(threshold=3.0))
    report = await runner.detect(context)
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from fnmatch import fnmatchcase
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from dqengine.analyzers.context import AnalyzerContext
from dqengine.analyzers.runner import FATAL_ERRORS
from dqengine.anomaly.models import Abstention, AnomalyReport, DetectionError, MetricDataPoint
from dqengine.anomaly.repository import MetricsRepository
from dqengine.anomaly.strategies import AnomalyDetector
from dqengine.core.config import Settings, get_settings
from dqengine.core.logging import get_logger
from dqengine.metrics.values import MetricValue

logger = get_logger(__name__)

_GLOB_CHARS = frozenset("*?[")


class AnomalyDetectionConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    min_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    store_current_metrics: bool = True
    history_window: timedelta | None = timedelta(days=30)
    history_limit: int | None = Field(default=None, gt=0)

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **overrides: Any) -> AnomalyDetectionConfig:
        settings = settings or get_settings()
        return cls(min_confidence=settings.anomaly_min_confidence, **overrides)


def matches_pattern(pattern: str, metric_name: str) -> bool:
    """Match a metric name against ``*``, an exact name, a ``prefix*`` or a glob."""
    if pattern == "*" or pattern == metric_name:
        return True
    if pattern.endswith("*") and not _GLOB_CHARS.intersection(pattern[:-1]):
        return metric_name.startswith(pattern[:-1])
    return fnmatchcase(metric_name, pattern)


class AnomalyDetectionRunner:
    """Runs every detector whose pattern matches a metric and collects the union of findings."""

    def __init__(self, repository: MetricsRepository, config: AnomalyDetectionConfig | None = None):
        self.repository = repository
        self.config = config or AnomalyDetectionConfig.from_settings()
        self._detectors: list[tuple[str, AnomalyDetector]] = []

    def add_detector(self, pattern: str, detector: AnomalyDetector) -> AnomalyDetectionRunner:
        self._detectors.append((pattern, detector))
        return self

    def detectors_for(self, metric_name: str) -> list[AnomalyDetector]:
        return [detector for pattern, detector in self._detectors if matches_pattern(pattern, metric_name)]

    async def detect(
        self,
        metrics: AnalyzerContext | Mapping[str, MetricValue],
        at: datetime | None = None,
        tags: dict[str, str] | None = None,
    ) -> AnomalyReport:
        """Evaluate ``metrics`` observed at ``at`` (default now) against their history.

        History is read strictly before ``at``; the current metrics are stored
        afterwards when ``store_current_metrics`` is set.
        """
        at = at or datetime.now(UTC)
        current = metrics.metrics if isinstance(metrics, AnalyzerContext) else dict(metrics)
        report = AnomalyReport(evaluated_at=at)

        for metric_name, value in current.items():
            detectors = self.detectors_for(metric_name)
            if not detectors:
                continue

            history = await self._history(metric_name, at)
            for detector in detectors:
                try:
                    outcome = detector.evaluate(metric_name, history, value)
                except FATAL_ERRORS:
                    raise
                except Exception as e:
                    logger.warning(
                        "detector_failed",
                        metric=metric_name,
                        detector=detector.name,
                        error_type=type(e).__name__,
                        error=str(e),
                    )
                    report.errors.append(
                        DetectionError(
                            metric_name=metric_name,
                            detector=detector.name,
                            error_type=type(e).__name__,
                            message=str(e),
                        )
                    )
                    continue

                if outcome.is_abstention:
                    report.abstentions.append(
                        Abstention(
                            metric_name=metric_name,
                            detector=detector.name,
                            reason=outcome.reason or "",
                        )
                    )
                elif outcome.anomaly is not None:
                    if outcome.anomaly.confidence < self.config.min_confidence:
                        report.filtered_count += 1
                        continue
                    logger.info(
                        "anomaly_detected",
                        metric=metric_name,
                        detector=detector.name,
                        severity=outcome.anomaly.severity.value,
                        confidence=round(outcome.anomaly.confidence, 4),
                    )
                    report.anomalies.append(outcome.anomaly)

        if self.config.store_current_metrics:
            for metric_name, value in current.items():
                await self.repository.store(metric_name, value, at, tags)

        logger.info(
            "anomaly_detection_completed",
            metrics=len(current),
            anomalies=len(report.anomalies),
            abstentions=len(report.abstentions),
            errors=len(report.errors),
            filtered=report.filtered_count,
        )
        return report

    async def _history(self, metric_name: str, at: datetime) -> list[MetricDataPoint]:
        since = at - self.config.history_window if self.config.history_window is not None else None
        points = await self.repository.get_history(metric_name, since=since, until=at)
        points = [p for p in points if p.timestamp < at]
        if self.config.history_limit is not None:
            points = points[-self.config.history_limit :]
        return points
