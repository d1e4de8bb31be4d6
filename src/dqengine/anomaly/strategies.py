"""Detection strategies.

Each detector compares the current value of a metric against its history
and answers with a DetectionOutcome: an anomaly, normal, or an abstention
when it cannot judge (not enough history, non-numeric metric). Abstaining
is never reported as an anomaly.

Baselines summarize history into the single reference value that the
change detectors compare against:

- mean of all history (default) or of the last ``window`` points
- last observed value
- seasonal: mean of the values at the same phase of previous seasons
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, ClassVar, Literal

import numpy as np
from scipy.stats import norm

from dqengine.anomaly.models import Anomaly, DetectionOutcome, MetricDataPoint, Severity
from dqengine.core.errors import ConfigurationError, InsufficientHistoryError
from dqengine.core.logging import get_logger
from dqengine.metrics.values import MetricValue

logger = get_logger(__name__)

# Baselines closer to zero than this make relative change undefined
NEAR_ZERO = 1e-12


@dataclass(frozen=True)
class Baseline:
    """Reference value derived from a metric's history."""

    kind: Literal["mean", "last", "seasonal"] = "mean"
    window: int | None = None
    season_length: int | None = None

    def __post_init__(self) -> None:
        if self.window is not None and self.window <= 0:
            raise ConfigurationError(f"Baseline window must be positive, got {self.window}")
        if self.kind == "seasonal" and (self.season_length is None or self.season_length <= 0):
            raise ConfigurationError("Seasonal baseline requires a positive season_length")

    @classmethod
    def mean(cls, window: int | None = None) -> Baseline:
        return cls(kind="mean", window=window)

    @classmethod
    def last(cls) -> Baseline:
        return cls(kind="last")

    @classmethod
    def seasonal(cls, season_length: int, seasons: int | None = None) -> Baseline:
        """Mean of the values one, two, ... seasons before the current point.

        ``seasons`` limits how many previous seasons are averaged.
        """
        return cls(kind="seasonal", window=seasons, season_length=season_length)

    @property
    def required_points(self) -> int:
        if self.kind == "seasonal":
            assert self.season_length is not None
            return self.season_length
        return 1

    def compute(self, history: Sequence[float]) -> float:
        """Baseline of ``history`` (oldest first) for the point right after it.

        Raises:
            InsufficientHistoryError: history is shorter than the baseline needs
        """
        if len(history) < self.required_points:
            raise InsufficientHistoryError(self.required_points, len(history))

        if self.kind == "last":
            return float(history[-1])

        if self.kind == "seasonal":
            assert self.season_length is not None
            # The current point sits at index len(history)
            same_phase = history[len(history) - self.season_length :: -self.season_length]
            if self.window is not None:
                same_phase = same_phase[: self.window]
            return float(np.mean(same_phase))

        values = history if self.window is None else history[-self.window :]
        return float(np.mean(values))

    def describe(self) -> str:
        if self.kind == "seasonal":
            return f"seasonal(season_length={self.season_length})"
        if self.kind == "mean" and self.window is not None:
            return f"mean(last {self.window})"
        return self.kind


def _exceedance_confidence(ratio: float) -> float:
    """Confidence of a threshold breach: 0.5 at the threshold, 1.0 at twice it."""
    if math.isinf(ratio):
        return 1.0
    return max(0.0, min(1.0, 0.5 + 0.5 * (ratio - 1.0)))


class AnomalyDetector(ABC):
    """Base class for detection strategies.

    Subclasses implement ``detect`` over numeric history values (oldest
    first) and may raise InsufficientHistoryError, which ``evaluate``
    turns into an abstention.
    """

    name: ClassVar[str]

    def __init__(self, min_history_size: int = 1):
        if min_history_size < 0:
            raise ConfigurationError("min_history_size must not be negative")
        self.min_history_size = min_history_size

    def evaluate(
        self,
        metric_name: str,
        history: Sequence[MetricDataPoint],
        current: MetricValue,
    ) -> DetectionOutcome:
        current_value = current.as_float()
        if current_value is None or not math.isfinite(current_value):
            return DetectionOutcome.abstained(f"{metric_name} is not a finite numeric metric")

        values = [
            v for v in (point.numeric_value for point in history) if v is not None and math.isfinite(v)
        ]
        try:
            self.require_history(values, self.min_history_size)
            return self.detect(metric_name, values, current_value)
        except InsufficientHistoryError as e:
            logger.debug(
                "detector_abstained",
                detector=self.name,
                metric=metric_name,
                required=e.required,
                available=e.available,
            )
            return DetectionOutcome.abstained(f"insufficient data: {e}")

    @staticmethod
    def require_history(values: Sequence[float], required: int) -> None:
        if len(values) < required:
            raise InsufficientHistoryError(required, len(values))

    @abstractmethod
    def detect(self, metric_name: str, history: list[float], current: float) -> DetectionOutcome:
        """Judge ``current`` against numeric ``history``."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(min_history_size={self.min_history_size})"


class RelativeRateOfChangeDetector(AnomalyDetector):
    """Flags ``(current - baseline) / |baseline|`` beyond a fraction.

    Increase and decrease limits are independent; None disables a direction.
    A non-zero value against a near-zero baseline is an infinite change and
    is always flagged.
    """

    name = "relative_rate_of_change"

    def __init__(
        self,
        max_rate_increase: float | None = None,
        max_rate_decrease: float | None = None,
        baseline: Baseline | None = None,
        min_history_size: int = 1,
    ):
        if max_rate_increase is None and max_rate_decrease is None:
            raise ConfigurationError("At least one of max_rate_increase/max_rate_decrease is required")
        for label, rate in (("max_rate_increase", max_rate_increase), ("max_rate_decrease", max_rate_decrease)):
            if rate is not None and (not math.isfinite(rate) or rate < 0):
                raise ConfigurationError(f"{label} must be finite and non-negative, got {rate}")
        super().__init__(min_history_size=max(min_history_size, 1))
        self.max_rate_increase = max_rate_increase
        self.max_rate_decrease = max_rate_decrease
        self.baseline = baseline or Baseline.mean()

    @classmethod
    def symmetric(cls, max_rate: float, **kwargs: Any) -> RelativeRateOfChangeDetector:
        return cls(max_rate_increase=max_rate, max_rate_decrease=max_rate, **kwargs)

    def detect(self, metric_name: str, history: list[float], current: float) -> DetectionOutcome:
        baseline = self.baseline.compute(history)

        if abs(baseline) < NEAR_ZERO:
            if abs(current) < NEAR_ZERO:
                return DetectionOutcome.normal("no change from zero baseline")
            return DetectionOutcome.found(
                Anomaly(
                    metric_name=metric_name,
                    current_value=current,
                    expected_value=baseline,
                    severity=Severity.CRITICAL,
                    confidence=1.0,
                    detector=self.name,
                    description=f"Change from near-zero baseline to {current:g}",
                    details={"baseline": self.baseline.describe(), "rate_of_change": "infinite"},
                )
            )

        rate = (current - baseline) / abs(baseline)
        if rate > 0:
            threshold, direction = self.max_rate_increase, "increase"
        else:
            threshold, direction = self.max_rate_decrease, "decrease"

        if threshold is None or abs(rate) <= threshold:
            return DetectionOutcome.normal(f"rate of change {rate:+.1%} within limits")

        ratio = abs(rate) / threshold if threshold > 0 else math.inf
        return DetectionOutcome.found(
            Anomaly(
                metric_name=metric_name,
                current_value=current,
                expected_value=baseline,
                expected_min=None
                if self.max_rate_decrease is None
                else baseline - self.max_rate_decrease * abs(baseline),
                expected_max=None
                if self.max_rate_increase is None
                else baseline + self.max_rate_increase * abs(baseline),
                severity=Severity.from_exceedance(ratio),
                confidence=_exceedance_confidence(ratio),
                detector=self.name,
                description=f"Rate of {direction} {abs(rate):.1%} exceeds threshold {threshold:.1%}",
                details={"baseline": self.baseline.describe(), "rate_of_change": rate},
            )
        )


class AbsoluteChangeDetector(AnomalyDetector):
    """Flags ``|current - baseline|`` beyond a fixed amount.

    Suited to metrics whose baseline may be near zero, where relative change
    is meaningless.
    """

    name = "absolute_change"

    def __init__(self, max_change: float, baseline: Baseline | None = None, min_history_size: int = 1):
        if not math.isfinite(max_change) or max_change < 0:
            raise ConfigurationError(f"max_change must be finite and non-negative, got {max_change}")
        super().__init__(min_history_size=max(min_history_size, 1))
        self.max_change = max_change
        self.baseline = baseline or Baseline.mean()

    def detect(self, metric_name: str, history: list[float], current: float) -> DetectionOutcome:
        baseline = self.baseline.compute(history)
        change = abs(current - baseline)
        if change <= self.max_change:
            return DetectionOutcome.normal(f"absolute change {change:g} within limits")

        ratio = change / self.max_change if self.max_change > 0 else math.inf
        return DetectionOutcome.found(
            Anomaly(
                metric_name=metric_name,
                current_value=current,
                expected_value=baseline,
                expected_min=baseline - self.max_change,
                expected_max=baseline + self.max_change,
                severity=Severity.from_exceedance(ratio),
                confidence=_exceedance_confidence(ratio),
                detector=self.name,
                description=f"Absolute change {change:g} exceeds threshold {self.max_change:g}",
                details={"baseline": self.baseline.describe(), "absolute_change": change},
            )
        )


class ZScoreDetector(AnomalyDetector):
    """Flags values more than ``threshold`` sample standard deviations from the history mean.

    Abstains below ``min_history_size`` points and on zero-variance history.
    Confidence is the two-sided normal probability mass within ``|z|``.
    """

    name = "z_score"

    def __init__(self, threshold: float = 3.0, min_history_size: int = 20, window: int | None = None):
        if not math.isfinite(threshold) or threshold <= 0:
            raise ConfigurationError(f"threshold must be positive, got {threshold}")
        if window is not None and window < 2:
            raise ConfigurationError("window must hold at least two points")
        super().__init__(min_history_size=max(min_history_size, 2))
        self.threshold = threshold
        self.window = window

    def detect(self, metric_name: str, history: list[float], current: float) -> DetectionOutcome:
        values = np.asarray(history if self.window is None else history[-self.window :], dtype=float)
        mean = float(values.mean())
        stddev = float(values.std(ddof=1))
        if stddev == 0.0:
            return DetectionOutcome.abstained("history has zero variance")

        z = (current - mean) / stddev
        if abs(z) <= self.threshold:
            return DetectionOutcome.normal(f"z-score {z:+.2f} within {self.threshold:g}")

        return DetectionOutcome.found(
            Anomaly(
                metric_name=metric_name,
                current_value=current,
                expected_value=mean,
                expected_min=mean - self.threshold * stddev,
                expected_max=mean + self.threshold * stddev,
                severity=Severity.from_exceedance(abs(z) / self.threshold),
                confidence=float(2.0 * norm.cdf(abs(z)) - 1.0),
                detector=self.name,
                description=f"Value is {abs(z):.1f} standard deviations from mean (threshold {self.threshold:g})",
                details={"z_score": z, "mean": mean, "stddev": stddev, "history_size": int(values.size)},
            )
        )


CustomDetectorFn = Callable[[str, Sequence[MetricDataPoint], MetricValue], Anomaly | None]


class CustomDetector(AnomalyDetector):
    """Wraps a user function ``fn(metric_name, history, current) -> Anomaly | None``.

    The function receives raw data points and metric values, so it may
    judge non-numeric metrics too. It may raise InsufficientHistoryError
    to abstain.
    """

    name = "custom"

    def __init__(self, fn: CustomDetectorFn, name: str | None = None, min_history_size: int = 0):
        super().__init__(min_history_size=min_history_size)
        self.fn = fn
        if name is not None:
            self.name = name  # type: ignore[misc]

    def evaluate(
        self,
        metric_name: str,
        history: Sequence[MetricDataPoint],
        current: MetricValue,
    ) -> DetectionOutcome:
        try:
            self.require_history(history, self.min_history_size)
            anomaly = self.fn(metric_name, history, current)
        except InsufficientHistoryError as e:
            return DetectionOutcome.abstained(f"insufficient data: {e}")
        if anomaly is None:
            return DetectionOutcome.normal()
        return DetectionOutcome.found(anomaly)

    def detect(self, metric_name: str, history: list[float], current: float) -> DetectionOutcome:
        raise NotImplementedError("CustomDetector evaluates raw data points")
