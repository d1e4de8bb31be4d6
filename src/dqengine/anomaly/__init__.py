"""Anomaly detection against historical metric baselines."""

from dqengine.anomaly.models import (
    Abstention,
    Anomaly,
    AnomalyReport,
    DetectionError,
    DetectionOutcome,
    MetricDataPoint,
    Severity,
)
from dqengine.anomaly.repository import InMemoryMetricsRepository, MetricsRepository
from dqengine.anomaly.runner import AnomalyDetectionConfig, AnomalyDetectionRunner, matches_pattern
from dqengine.anomaly.strategies import (
    AbsoluteChangeDetector,
    AnomalyDetector,
    Baseline,
    CustomDetector,
    RelativeRateOfChangeDetector,
    ZScoreDetector,
)

__all__ = [
    "AbsoluteChangeDetector",
    "Abstention",
    "Anomaly",
    "AnomalyDetectionConfig",
    "AnomalyDetectionRunner",
    "AnomalyDetector",
    "AnomalyReport",
    "Baseline",
    "CustomDetector",
    "DetectionError",
    "DetectionOutcome",
    "InMemoryMetricsRepository",
    "MetricDataPoint",
    "MetricsRepository",
    "RelativeRateOfChangeDetector",
    "Severity",
    "ZScoreDetector",
    "matches_pattern",
]
