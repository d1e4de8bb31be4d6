"""Metric values and mergeable analyzer states."""

from dqengine.metrics.codec import decode_state, encode_state, register_state
from dqengine.metrics.state import (
    AnalyzerState,
    CompletenessState,
    MeanState,
    MinMaxState,
    SizeState,
    StdDevState,
    SumState,
)
from dqengine.metrics.values import (
    DistributionMetric,
    DoubleMetric,
    LongMetric,
    MetricValue,
    SketchMetric,
    dump_metric,
    load_metric,
    metric_from_json,
    metric_to_json,
)

__all__ = [
    "AnalyzerState",
    "CompletenessState",
    "DistributionMetric",
    "DoubleMetric",
    "LongMetric",
    "MeanState",
    "MetricValue",
    "MinMaxState",
    "SizeState",
    "SketchMetric",
    "StdDevState",
    "SumState",
    "decode_state",
    "dump_metric",
    "encode_state",
    "load_metric",
    "metric_from_json",
    "metric_to_json",
    "register_state",
]
