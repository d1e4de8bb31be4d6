"""Results of an analysis run."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from dqengine.core.models.base import RunStatus
from dqengine.metrics.values import MetricValue


class AnalysisError(BaseModel):
    """One analyzer's failure, with enough context to retry just that analyzer."""

    analyzer: str
    metric_key: str
    error_type: str
    message: str
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_exception(cls, analyzer: str, metric_key: str, error: BaseException) -> AnalysisError:
        return cls(
            analyzer=analyzer,
            metric_key=metric_key,
            error_type=type(error).__name__,
            message=str(error),
        )


@dataclass
class AnalyzerContext:
    """Metrics produced by a run, keyed by metric key, plus per-analyzer errors.

    Analyzers that never ran because the run was cancelled or hit its
    deadline are listed in ``cancelled``; they are not errors.
    """

    dataset: str | None = None
    # Set by AnalysisRunner.run and bound to its log events
    run_id: str | None = None
    metrics: dict[str, MetricValue] = field(default_factory=dict)
    errors: list[AnalysisError] = field(default_factory=list)
    cancelled: list[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None

    def record_metric(self, metric_key: str, value: MetricValue) -> None:
        self.metrics[metric_key] = value

    def record_error(self, analyzer: str, metric_key: str, error: BaseException) -> None:
        self.errors.append(AnalysisError.from_exception(analyzer, metric_key, error))

    def get_metric(self, metric_key: str) -> MetricValue | None:
        return self.metrics.get(metric_key)

    def get_analyzer_metrics(self, prefix: str) -> dict[str, MetricValue]:
        """Metrics whose key is ``prefix`` or starts with ``prefix.``"""
        return {
            key: value
            for key, value in self.metrics.items()
            if key == prefix or key.startswith(prefix + ".")
        }

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    @property
    def status(self) -> RunStatus:
        if self.cancelled:
            return RunStatus.CANCELLED
        if self.errors:
            return RunStatus.COMPLETED_WITH_ERRORS
        return RunStatus.COMPLETED

    @property
    def duration_seconds(self) -> float | None:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def summary(self) -> dict[str, Any]:
        return {
            "dataset": self.dataset,
            "run_id": self.run_id,
            "status": self.status.value,
            "metrics": len(self.metrics),
            "errors": [error.model_dump(mode="json") for error in self.errors],
            "cancelled": list(self.cancelled),
            "duration_seconds": self.duration_seconds,
        }
