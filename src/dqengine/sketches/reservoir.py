"""Uniform reservoir sampling (Algorithm R)."""

from __future__ import annotations

import random
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any

from dqengine.core.errors import ConfigurationError, StateIncompatibilityError
from dqengine.metrics.codec import json_float, register_state
from dqengine.metrics.state import ensure_same_type
from dqengine.metrics.values import MetricValue, SketchMetric


def _validate_capacity(capacity: int) -> int:
    if capacity < 1:
        raise ConfigurationError(f"Reservoir capacity must be positive, got {capacity}")
    return capacity


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime | date | time):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, bytes):
        return value.hex()
    if isinstance(value, float):
        return json_float(value)
    return value


class ReservoirSampler:
    """Fixed-capacity uniform sample of a stream.

    The first ``capacity`` items fill the reservoir; the i-th item after that
    replaces a uniformly random slot with probability ``capacity / i``.
    """

    def __init__(self, capacity: int, rng: random.Random | None = None):
        self.capacity = _validate_capacity(capacity)
        self._rng = rng or random.Random()
        self._items: list[Any] = []
        self.seen = 0

    def update(self, item: Any) -> None:
        self.seen += 1
        if len(self._items) < self.capacity:
            self._items.append(item)
            return
        slot = self._rng.randrange(self.seen)
        if slot < self.capacity:
            self._items[slot] = item

    def update_many(self, items: Iterable[Any]) -> None:
        for item in items:
            self.update(item)

    @property
    def items(self) -> list[Any]:
        return list(self._items)

    def to_state(self) -> ReservoirState:
        return ReservoirState(capacity=self.capacity, seen=self.seen, items=tuple(self._items))


@register_state
@dataclass(frozen=True)
class ReservoirState:
    """Frozen reservoir. ``seen`` counts every item offered, sampled or not."""

    capacity: int
    seen: int
    items: tuple[Any, ...]

    state_type = "reservoir"

    @classmethod
    def empty(cls, capacity: int) -> ReservoirState:
        return cls(capacity=_validate_capacity(capacity), seen=0, items=())

    def merge(self, other: ReservoirState, *, rng: random.Random | None = None) -> ReservoirState:
        """Weighted union: each slot draws from either side in proportion to ``seen``."""
        ensure_same_type(self, other)
        if self.capacity != other.capacity:
            raise StateIncompatibilityError(
                self, other, f"capacity {self.capacity} != {other.capacity}"
            )
        if other.seen == 0:
            return self
        if self.seen == 0:
            return other

        # Canonical operand order so merge(a, b) == merge(b, a)
        left, right = sorted((self, other), key=lambda s: (s.seen, repr(s.items)))
        if left.seen + right.seen <= self.capacity:
            return ReservoirState(
                capacity=self.capacity,
                seen=left.seen + right.seen,
                items=left.items + right.items,
            )

        if rng is None:
            rng = random.Random(left.seen * 1_000_003 + right.seen)
        left_pool = list(left.items)
        right_pool = list(right.items)
        left_weight, right_weight = float(left.seen), float(right.seen)
        chosen: list[Any] = []
        while len(chosen) < self.capacity and (left_pool or right_pool):
            take_left = bool(left_pool) and (
                not right_pool or rng.random() < left_weight / (left_weight + right_weight)
            )
            pool = left_pool if take_left else right_pool
            chosen.append(pool.pop(rng.randrange(len(pool))))

        return ReservoirState(capacity=self.capacity, seen=left.seen + right.seen, items=tuple(chosen))

    def to_metric(self) -> MetricValue:
        return SketchMetric(sketch_type=self.state_type, payload=self.to_payload())

    def to_payload(self) -> dict[str, Any]:
        return {
            "capacity": self.capacity,
            "seen": self.seen,
            "items": [_jsonable(item) for item in self.items],
        }

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> ReservoirState:
        return cls(
            capacity=_validate_capacity(int(data["capacity"])),
            seen=int(data["seen"]),
            items=tuple(data["items"]),
        )
