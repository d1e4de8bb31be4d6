"""KLL quantile sketch.

A stack of compactor levels: level ``h`` holds items of weight ``2^h`` and
has capacity ``max(2, ceil(k * (2/3)^(H-h-1)))`` where ``H`` is the current
number of levels, so the top level holds about ``k`` items and capacities
shrink geometrically towards level 0.

New values are appended to level 0. Once the sketch holds as many items as
its total capacity, the lowest full level is sorted and compacted: a random
parity picks every other item to promote one level up (doubling its weight)
and the rest are discarded. An odd leftover stays behind. Compaction
preserves the total weight, which always equals the number of values seen.

Randomness comes from an injectable ``random.Random`` so tests can pin it.
"""

from __future__ import annotations

import math
import random
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from dqengine.core.config import get_settings
from dqengine.core.errors import AnalyzerError, ConfigurationError, StateIncompatibilityError
from dqengine.metrics.codec import json_float, register_state
from dqengine.metrics.state import ensure_same_type
from dqengine.metrics.values import DistributionMetric, MetricValue

MIN_K = 8

DEFAULT_QUANTILES: tuple[float, ...] = (0.01, 0.05, 0.25, 0.5, 0.75, 0.95, 0.99)


def normalized_rank_error(k: int) -> float:
    """Empirical rank-error bound of a KLL sketch of size ``k``."""
    return 2.296 / k**0.9723


def quantile_label(q: float) -> str:
    """Metric sub-key for a quantile: 0.01 -> "p01", 0.5 -> "p50", 0.999 -> "p99.9"."""
    return "p" + format(round(q * 100, 6), "02g")


def validate_k(k: int) -> int:
    if k < MIN_K:
        raise ConfigurationError(f"KLL k must be >= {MIN_K}, got {k}")
    return k


def _validate_quantiles(quantiles: Iterable[float]) -> tuple[float, ...]:
    qs = tuple(sorted(set(float(q) for q in quantiles)))
    for q in qs:
        if not 0.0 <= q <= 1.0:
            raise ConfigurationError(f"Quantile must be in [0, 1], got {q}")
    return qs


class _Levels:
    """Compaction logic shared by the builder and state merges."""

    def __init__(self, k: int, rng: random.Random, levels: list[list[float]] | None = None):
        self.k = k
        self.rng = rng
        self.levels: list[list[float]] = levels if levels else [[]]
        self.size = sum(len(level) for level in self.levels)

    def capacity(self, height: int) -> int:
        depth = len(self.levels) - height - 1
        return max(2, math.ceil(self.k * (2.0 / 3.0) ** depth))

    def total_capacity(self) -> int:
        return sum(self.capacity(h) for h in range(len(self.levels)))

    def append(self, value: float) -> None:
        self.levels[0].append(value)
        self.size += 1
        if self.size >= self.total_capacity():
            self.compress()

    def compress(self) -> None:
        while self.size >= self.total_capacity():
            for height in range(len(self.levels)):
                if len(self.levels[height]) >= self.capacity(height):
                    if height + 1 >= len(self.levels):
                        self.levels.append([])
                    self.levels[height + 1].extend(self._compact(height))
                    self.size = sum(len(level) for level in self.levels)
                    if self.size < self.total_capacity():
                        break

    def _compact(self, height: int) -> list[float]:
        level = sorted(self.levels[height])
        leftover = len(level) % 2
        offset = 1 if self.rng.random() < 0.5 else 0
        promoted = level[leftover + offset :: 2]
        self.levels[height] = level[:leftover]
        return promoted

    def frozen(self) -> tuple[tuple[float, ...], ...]:
        return tuple(tuple(sorted(level)) for level in self.levels)


def _weighted_items(levels: Sequence[Sequence[float]]) -> list[tuple[float, int]]:
    items = [(value, 1 << height) for height, level in enumerate(levels) for value in level]
    items.sort(key=lambda item: item[0])
    return items


def _quantile(levels: Sequence[Sequence[float]], n: int, q: float, lo: float, hi: float) -> float:
    if q <= 0.0:
        return lo
    if q >= 1.0:
        return hi
    target = q * n
    cumulative = 0
    items = _weighted_items(levels)
    for value, weight in items:
        cumulative += weight
        if cumulative >= target:
            return value
    return items[-1][0]


def _rank(levels: Sequence[Sequence[float]], n: int, x: float) -> float:
    below = sum(1 << h for h, level in enumerate(levels) for value in level if value <= x)
    return below / n


@register_state
@dataclass(frozen=True)
class KLLSketchState:
    """Immutable KLL compactor levels.

    ``levels[h]`` holds the (sorted) items of weight ``2^h``. ``quantiles``
    lists the ranks reported by ``to_metric``.
    """

    k: int
    n: int
    min_value: float | None
    max_value: float | None
    levels: tuple[tuple[float, ...], ...]
    quantiles: tuple[float, ...] = field(default=DEFAULT_QUANTILES)

    state_type = "kll"

    @classmethod
    def empty(
        cls, k: int | None = None, quantiles: Iterable[float] = DEFAULT_QUANTILES
    ) -> KLLSketchState:
        return cls(
            k=validate_k(k if k is not None else get_settings().kll_k),
            n=0,
            min_value=None,
            max_value=None,
            levels=((),),
            quantiles=_validate_quantiles(quantiles),
        )

    @property
    def normalized_rank_error(self) -> float:
        return normalized_rank_error(self.k)

    @property
    def retained(self) -> int:
        """Number of items currently held (memory footprint)."""
        return sum(len(level) for level in self.levels)

    def _require_values(self) -> tuple[float, float]:
        if self.n == 0 or self.min_value is None or self.max_value is None:
            raise AnalyzerError("Quantiles of an empty column are undefined")
        return self.min_value, self.max_value

    def quantile(self, q: float) -> float:
        lo, hi = self._require_values()
        return _quantile(self.levels, self.n, q, lo, hi)

    def quantiles_of(self, qs: Iterable[float]) -> list[float]:
        return [self.quantile(q) for q in qs]

    def rank(self, x: float) -> float:
        """Estimated fraction of values ``<= x``."""
        self._require_values()
        return _rank(self.levels, self.n, x)

    def cdf(self, split_points: Iterable[float]) -> list[float]:
        return [self.rank(x) for x in split_points]

    def merge(self, other: KLLSketchState, *, rng: random.Random | None = None) -> KLLSketchState:
        ensure_same_type(self, other)
        if self.k != other.k:
            raise StateIncompatibilityError(self, other, f"k {self.k} != {other.k}")
        if other.n == 0:
            return self if other.quantiles == self.quantiles else self._with_quantiles(other)
        if self.n == 0:
            return other if other.quantiles == self.quantiles else other._with_quantiles(self)

        if rng is None:
            # Symmetric seed keeps merge(a, b) == merge(b, a)
            rng = random.Random(self.n + other.n + 31 * self.k)

        height = max(len(self.levels), len(other.levels))
        combined = [
            sorted(_level(self.levels, h) + _level(other.levels, h)) for h in range(height)
        ]
        compactor = _Levels(self.k, rng, combined)
        compactor.compress()

        return KLLSketchState(
            k=self.k,
            n=self.n + other.n,
            min_value=min(self.min_value, other.min_value),  # type: ignore[type-var]
            max_value=max(self.max_value, other.max_value),  # type: ignore[type-var]
            levels=compactor.frozen(),
            quantiles=_validate_quantiles(self.quantiles + other.quantiles),
        )

    def _with_quantiles(self, other: KLLSketchState) -> KLLSketchState:
        return KLLSketchState(
            k=self.k,
            n=self.n,
            min_value=self.min_value,
            max_value=self.max_value,
            levels=self.levels,
            quantiles=_validate_quantiles(self.quantiles + other.quantiles),
        )

    def to_metric(self) -> MetricValue:
        lo, hi = self._require_values()
        return DistributionMetric(
            values={
                quantile_label(q): _quantile(self.levels, self.n, q, lo, hi)
                for q in self.quantiles
            }
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "k": self.k,
            "n": self.n,
            "min_value": json_float(self.min_value),
            "max_value": json_float(self.max_value),
            "levels": [[json_float(v) for v in level] for level in self.levels],
            "quantiles": list(self.quantiles),
        }

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> KLLSketchState:
        levels = tuple(tuple(float(v) for v in level) for level in data["levels"])
        return cls(
            k=validate_k(int(data["k"])),
            n=int(data["n"]),
            min_value=None if data["min_value"] is None else float(data["min_value"]),
            max_value=None if data["max_value"] is None else float(data["max_value"]),
            levels=levels or ((),),
            quantiles=_validate_quantiles(data.get("quantiles", DEFAULT_QUANTILES)),
        )


def _level(levels: tuple[tuple[float, ...], ...], height: int) -> list[float]:
    return list(levels[height]) if height < len(levels) else []


class KLLSketch:
    """Mutable KLL builder. NaN and null values are ignored."""

    def __init__(
        self,
        k: int | None = None,
        rng: random.Random | None = None,
        quantiles: Iterable[float] = DEFAULT_QUANTILES,
    ):
        self.k = validate_k(k if k is not None else get_settings().kll_k)
        self.quantiles = _validate_quantiles(quantiles)
        self._levels = _Levels(self.k, rng or random.Random())
        self.n = 0
        self.min_value: float | None = None
        self.max_value: float | None = None

    def update(self, value: Any) -> None:
        if value is None:
            return
        x = float(value)
        if math.isnan(x):
            return
        self.n += 1
        if self.min_value is None or x < self.min_value:
            self.min_value = x
        if self.max_value is None or x > self.max_value:
            self.max_value = x
        self._levels.append(x)

    def update_many(self, values: Iterable[Any]) -> None:
        for value in values:
            self.update(value)

    @property
    def retained(self) -> int:
        return self._levels.size

    def quantile(self, q: float) -> float:
        return self.to_state().quantile(q)

    def to_state(self) -> KLLSketchState:
        return KLLSketchState(
            k=self.k,
            n=self.n,
            min_value=self.min_value,
            max_value=self.max_value,
            levels=self._levels.frozen(),
            quantiles=self.quantiles,
        )
