"""Metric values.

A MetricValue is the finalized, immutable result of an analyzer state:

- LongMetric: integer count
- DoubleMetric: floating-point scalar
- DistributionMetric: ordered named sub-values (quantiles, histograms)
- SketchMetric: opaque, serializable sketch handle

All variants are frozen pydantic models discriminated by ``kind`` so they
compare structurally and round-trip through JSON unchanged.
"""

from __future__ import annotations

import math
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class _MetricBase(BaseModel):
    model_config = ConfigDict(frozen=True, ser_json_inf_nan="constants")

    def as_float(self) -> float | None:
        """Scalar view of the metric, or None for non-scalar values."""
        return None

    def to_pretty(self) -> str:
        raise NotImplementedError


class LongMetric(_MetricBase):
    """Integer count."""

    kind: Literal["long"] = "long"
    value: int

    def as_float(self) -> float | None:
        return float(self.value)

    def to_pretty(self) -> str:
        return f"{self.value:,}"


class DoubleMetric(_MetricBase):
    """Floating-point scalar."""

    kind: Literal["double"] = "double"
    value: float

    def as_float(self) -> float | None:
        return self.value

    def to_pretty(self) -> str:
        if math.isnan(self.value) or math.isinf(self.value):
            return str(self.value)
        return f"{self.value:.6g}"


class DistributionMetric(_MetricBase):
    """Ordered named sub-values, e.g. ``{"p25": 1.0, "p50": 2.5, "p75": 4.0}``."""

    kind: Literal["distribution"] = "distribution"
    values: dict[str, float]

    def get(self, name: str) -> float | None:
        return self.values.get(name)

    def to_pretty(self) -> str:
        return ", ".join(f"{name}={value:.6g}" for name, value in self.values.items())


class SketchMetric(_MetricBase):
    """Opaque sketch handle carrying its own serialized payload."""

    kind: Literal["sketch"] = "sketch"
    sketch_type: str
    payload: dict[str, Any] = Field(default_factory=dict)

    def to_pretty(self) -> str:
        return f"<{self.sketch_type} sketch>"


MetricValue = Annotated[
    LongMetric | DoubleMetric | DistributionMetric | SketchMetric,
    Field(discriminator="kind"),
]

_adapter: TypeAdapter[MetricValue] = TypeAdapter(MetricValue)


def dump_metric(value: MetricValue) -> dict[str, Any]:
    """Serialize a metric to a plain dict (including its ``kind`` tag)."""
    return value.model_dump()


def load_metric(data: dict[str, Any]) -> MetricValue:
    """Rebuild a metric from ``dump_metric`` output."""
    return _adapter.validate_python(data)


def metric_to_json(value: MetricValue) -> str:
    return value.model_dump_json()


def metric_from_json(data: str | bytes) -> MetricValue:
    return _adapter.validate_json(data)
