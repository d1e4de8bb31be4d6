"""Anomaly detection models."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from dqengine.metrics.values import MetricValue


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"

    @classmethod
    def from_exceedance(cls, ratio: float) -> Severity:
        """Severity from how far an observed deviation exceeds its threshold.

        ``ratio`` is deviation / threshold, so a flagged value has ratio > 1.
        """
        if ratio >= 2.0:
            return cls.CRITICAL
        if ratio >= 1.25:
            return cls.WARNING
        return cls.INFO


class MetricDataPoint(BaseModel):
    """One historical observation of a metric."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    value: MetricValue
    tags: dict[str, str] = Field(default_factory=dict)

    @property
    def numeric_value(self) -> float | None:
        return self.value.as_float()


class Anomaly(BaseModel):
    """A detected deviation of a metric from its baseline."""

    model_config = ConfigDict(frozen=True)

    metric_name: str
    current_value: float
    expected_value: float | None = None
    expected_min: float | None = None
    expected_max: float | None = None
    severity: Severity
    confidence: float = Field(ge=0.0, le=1.0)
    detector: str
    description: str
    details: dict[str, Any] = Field(default_factory=dict)
    detected_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class DetectionOutcome(BaseModel):
    """Answer of one detector for one metric."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["anomaly", "normal", "abstained"]
    anomaly: Anomaly | None = None
    reason: str | None = None

    @classmethod
    def found(cls, anomaly: Anomaly) -> DetectionOutcome:
        return cls(kind="anomaly", anomaly=anomaly)

    @classmethod
    def normal(cls, reason: str | None = None) -> DetectionOutcome:
        return cls(kind="normal", reason=reason)

    @classmethod
    def abstained(cls, reason: str) -> DetectionOutcome:
        return cls(kind="abstained", reason=reason)

    @property
    def is_anomaly(self) -> bool:
        return self.kind == "anomaly"

    @property
    def is_abstention(self) -> bool:
        return self.kind == "abstained"


class Abstention(BaseModel):
    """A detector declined to judge a metric (for example, insufficient data)."""

    metric_name: str
    detector: str
    reason: str


class DetectionError(BaseModel):
    metric_name: str
    detector: str
    error_type: str
    message: str


class AnomalyReport(BaseModel):
    """Result of one detection pass over a set of metrics."""

    anomalies: list[Anomaly] = Field(default_factory=list)
    abstentions: list[Abstention] = Field(default_factory=list)
    errors: list[DetectionError] = Field(default_factory=list)
    # Findings dropped by the minimum-confidence filter
    filtered_count: int = 0
    evaluated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def has_anomalies(self) -> bool:
        return bool(self.anomalies)

    def for_metric(self, metric_name: str) -> list[Anomaly]:
        return [a for a in self.anomalies if a.metric_name == metric_name]

    def by_severity(self, severity: Severity) -> list[Anomaly]:
        return [a for a in self.anomalies if a.severity == severity]
