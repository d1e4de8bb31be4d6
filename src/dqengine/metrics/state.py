"""Mergeable analyzer states.

An analyzer state is an intermediate summary of data that can be merged
with sibling states (from other partitions) and finalized into a metric.
``merge`` is associative and commutative and ``empty()`` is its identity,
so the order in which partitions are combined never affects the result
(beyond floating-point rounding).

States are frozen dataclasses: merging returns a new state, and a state is
never mutated after it has been created.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Protocol, Self, runtime_checkable

from dqengine.core.errors import AnalyzerError, StateIncompatibilityError
from dqengine.metrics.codec import json_float, register_state
from dqengine.metrics.values import DistributionMetric, DoubleMetric, LongMetric, MetricValue


@runtime_checkable
class AnalyzerState(Protocol):
    """Capability shared by all states: merge with a sibling, finalize to a metric."""

    def merge(self, other: Self) -> Self: ...

    def to_metric(self) -> MetricValue: ...


def ensure_same_type(left: Any, right: Any) -> None:
    """Fail fast when two states of different shapes are merged."""
    if type(left) is not type(right):
        raise StateIncompatibilityError(left, right)


@register_state
@dataclass(frozen=True)
class SizeState:
    """Number of rows."""

    count: int

    state_type = "size"

    @classmethod
    def empty(cls) -> SizeState:
        return cls(count=0)

    def merge(self, other: SizeState) -> SizeState:
        ensure_same_type(self, other)
        return SizeState(count=self.count + other.count)

    def to_metric(self) -> MetricValue:
        return LongMetric(value=self.count)

    def to_payload(self) -> dict[str, Any]:
        return {"count": self.count}

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> SizeState:
        return cls(count=int(data["count"]))


@register_state
@dataclass(frozen=True)
class SumState:
    """Sum of the non-null values of a numeric column."""

    total: float
    count: int

    state_type = "sum"

    @classmethod
    def empty(cls) -> SumState:
        return cls(total=0.0, count=0)

    def merge(self, other: SumState) -> SumState:
        ensure_same_type(self, other)
        return SumState(total=self.total + other.total, count=self.count + other.count)

    def to_metric(self) -> MetricValue:
        return DoubleMetric(value=self.total)

    def to_payload(self) -> dict[str, Any]:
        return {"total": json_float(self.total), "count": self.count}

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> SumState:
        return cls(total=float(data["total"]), count=int(data["count"]))


@register_state
@dataclass(frozen=True)
class MeanState:
    """Sum and count of the non-null values; finalizes to their mean."""

    total: float
    count: int

    state_type = "mean"

    @classmethod
    def empty(cls) -> MeanState:
        return cls(total=0.0, count=0)

    def merge(self, other: MeanState) -> MeanState:
        ensure_same_type(self, other)
        return MeanState(total=self.total + other.total, count=self.count + other.count)

    @property
    def mean(self) -> float:
        if self.count == 0:
            raise AnalyzerError("Mean of an empty column is undefined")
        return self.total / self.count

    def to_metric(self) -> MetricValue:
        return DoubleMetric(value=self.mean)

    def to_payload(self) -> dict[str, Any]:
        return {"total": json_float(self.total), "count": self.count}

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> MeanState:
        return cls(total=float(data["total"]), count=int(data["count"]))


@register_state
@dataclass(frozen=True)
class StdDevState:
    """Accumulator form of the moments needed for the population stddev."""

    count: int
    total: float
    sum_of_squares: float

    state_type = "stddev"

    @classmethod
    def empty(cls) -> StdDevState:
        return cls(count=0, total=0.0, sum_of_squares=0.0)

    @classmethod
    def from_values(cls, values: list[float]) -> StdDevState:
        return cls(
            count=len(values),
            total=math.fsum(values),
            sum_of_squares=math.fsum(v * v for v in values),
        )

    def merge(self, other: StdDevState) -> StdDevState:
        ensure_same_type(self, other)
        return StdDevState(
            count=self.count + other.count,
            total=self.total + other.total,
            sum_of_squares=self.sum_of_squares + other.sum_of_squares,
        )

    @property
    def mean(self) -> float:
        if self.count == 0:
            raise AnalyzerError("Standard deviation of an empty column is undefined")
        return self.total / self.count

    @property
    def variance(self) -> float:
        mean = self.mean
        # Clamp tiny negative values caused by cancellation
        return max(0.0, self.sum_of_squares / self.count - mean * mean)

    @property
    def stddev(self) -> float:
        return math.sqrt(self.variance)

    def to_metric(self) -> MetricValue:
        return DoubleMetric(value=self.stddev)

    def to_payload(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "total": json_float(self.total),
            "sum_of_squares": json_float(self.sum_of_squares),
        }

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> StdDevState:
        return cls(
            count=int(data["count"]),
            total=float(data["total"]),
            sum_of_squares=float(data["sum_of_squares"]),
        )


@register_state
@dataclass(frozen=True)
class MinMaxState:
    """Extremes of the non-null values of a numeric column."""

    minimum: float | None
    maximum: float | None
    count: int

    state_type = "min_max"

    @classmethod
    def empty(cls) -> MinMaxState:
        return cls(minimum=None, maximum=None, count=0)

    def merge(self, other: MinMaxState) -> MinMaxState:
        ensure_same_type(self, other)
        return MinMaxState(
            minimum=_pick(min, self.minimum, other.minimum),
            maximum=_pick(max, self.maximum, other.maximum),
            count=self.count + other.count,
        )

    def to_metric(self) -> MetricValue:
        if self.minimum is None or self.maximum is None:
            raise AnalyzerError("Minimum/maximum of an empty column is undefined")
        return DistributionMetric(values={"min": self.minimum, "max": self.maximum})

    def to_payload(self) -> dict[str, Any]:
        return {
            "minimum": json_float(self.minimum),
            "maximum": json_float(self.maximum),
            "count": self.count,
        }

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> MinMaxState:
        return cls(
            minimum=_optional_float(data["minimum"]),
            maximum=_optional_float(data["maximum"]),
            count=int(data["count"]),
        )


@register_state
@dataclass(frozen=True)
class CompletenessState:
    """Non-null and total row counts; finalizes to the non-null fraction."""

    non_null: int
    total: int

    state_type = "completeness"

    @classmethod
    def empty(cls) -> CompletenessState:
        return cls(non_null=0, total=0)

    def merge(self, other: CompletenessState) -> CompletenessState:
        ensure_same_type(self, other)
        return CompletenessState(
            non_null=self.non_null + other.non_null,
            total=self.total + other.total,
        )

    def to_metric(self) -> MetricValue:
        if self.total == 0:
            raise AnalyzerError("Completeness of an empty table is undefined")
        return DoubleMetric(value=self.non_null / self.total)

    def to_payload(self) -> dict[str, Any]:
        return {"non_null": self.non_null, "total": self.total}

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> CompletenessState:
        return cls(non_null=int(data["non_null"]), total=int(data["total"]))


@register_state
@dataclass(frozen=True)
class FrequencyState:
    """Occurrences of each distinct non-null value, keyed by its text form.

    A partition with more distinct values than its analyzer keeps retains
    only the most frequent ones and sets ``truncated``; ``total`` still
    counts every non-null value.
    """

    counts: dict[str, int]
    total: int
    truncated: bool = False

    state_type = "frequency"

    @classmethod
    def empty(cls) -> FrequencyState:
        return cls(counts={}, total=0)

    def merge(self, other: FrequencyState) -> FrequencyState:
        ensure_same_type(self, other)
        counts = dict(self.counts)
        for value, count in other.counts.items():
            counts[value] = counts.get(value, 0) + count
        return FrequencyState(
            counts=counts,
            total=self.total + other.total,
            truncated=self.truncated or other.truncated,
        )

    @property
    def distinct(self) -> int:
        return len(self.counts)

    def _require_exact(self, metric: str) -> None:
        if self.truncated:
            raise AnalyzerError(
                f"{metric} needs every distinct value, but only the most frequent were kept"
            )

    def distinctness(self) -> float:
        """Distinct values per non-null value; an empty column counts as fully distinct."""
        self._require_exact("Distinctness")
        return 1.0 if self.total == 0 else self.distinct / self.total

    def uniqueness(self) -> float:
        """Share of non-null values that occur exactly once."""
        self._require_exact("Uniqueness")
        if self.total == 0:
            return 1.0
        return sum(1 for count in self.counts.values() if count == 1) / self.total

    def entropy(self) -> float:
        """Shannon entropy of the value distribution, in bits."""
        self._require_exact("Entropy")
        if self.total == 0:
            return 0.0
        probabilities = (count / self.total for count in self.counts.values())
        return -sum(p * math.log2(p) for p in probabilities)

    def most_common(self, n: int | None = None) -> list[tuple[str, int]]:
        ranked = sorted(self.counts.items(), key=lambda item: (-item[1], item[0]))
        return ranked if n is None else ranked[:n]

    def to_metric(self) -> MetricValue:
        return DistributionMetric(
            values={value: float(count) for value, count in self.most_common()}
        )

    def to_payload(self) -> dict[str, Any]:
        return {"counts": dict(self.counts), "total": self.total, "truncated": self.truncated}

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> FrequencyState:
        return cls(
            counts={str(value): int(count) for value, count in data["counts"].items()},
            total=int(data["total"]),
            truncated=bool(data.get("truncated", False)),
        )


def _pick(fn: Any, left: float | None, right: float | None) -> float | None:
    if left is None:
        return right
    if right is None:
        return left
    return fn(left, right)


def _optional_float(value: Any) -> float | None:
    return None if value is None else float(value)
