"""HyperLogLog cardinality estimation.

The sketch keeps ``m = 2^p`` one-byte registers. Each value is hashed to 64
bits; the first ``p`` bits select a register and the position of the
leftmost 1-bit in the remaining ``64 - p`` bits is max-ed into it. The
estimate is the bias-corrected harmonic mean of ``2^register`` with linear
counting for small cardinalities and a correction near hash-space
saturation.

Relative standard error is ``1.04 / sqrt(m)`` independent of the true
cardinality; memory is ``m`` bytes regardless of input size.
"""

from __future__ import annotations

import base64
import math
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

import numpy as np

from dqengine.core.config import get_settings
from dqengine.core.errors import ConfigurationError, StateIncompatibilityError
from dqengine.metrics.codec import register_state
from dqengine.metrics.state import ensure_same_type
from dqengine.metrics.values import LongMetric, MetricValue
from dqengine.sketches.hashing import hash64

MIN_PRECISION = 4
MAX_PRECISION = 18

_TWO_64 = float(1 << 64)


def validate_precision(precision: int) -> int:
    if not MIN_PRECISION <= precision <= MAX_PRECISION:
        raise ConfigurationError(
            f"HyperLogLog precision must be in {MIN_PRECISION}..{MAX_PRECISION}, got {precision}"
        )
    return precision


def _alpha(m: int) -> float:
    if m == 16:
        return 0.673
    if m == 32:
        return 0.697
    if m == 64:
        return 0.709
    return 0.7213 / (1.0 + 1.079 / m)


def estimate_cardinality(registers: np.ndarray, precision: int) -> float:
    """Cardinality estimate for a register array."""
    m = 1 << precision
    raw = _alpha(m) * m * m / float(np.sum(np.exp2(-registers.astype(np.float64))))

    if raw <= 2.5 * m:
        zeros = int(np.count_nonzero(registers == 0))
        if zeros:
            return m * math.log(m / zeros)
        return raw

    if raw > _TWO_64 / 30.0:
        return -_TWO_64 * math.log1p(-raw / _TWO_64)

    return raw


@register_state
@dataclass(frozen=True)
class HyperLogLogState:
    """Immutable HyperLogLog registers plus the configuration that produced them."""

    precision: int
    seed: int
    registers: bytes

    state_type = "hyperloglog"

    def __post_init__(self) -> None:
        validate_precision(self.precision)
        if len(self.registers) != 1 << self.precision:
            raise ConfigurationError(
                f"Expected {1 << self.precision} registers, got {len(self.registers)}"
            )

    @classmethod
    def empty(cls, precision: int | None = None, seed: int = 0) -> HyperLogLogState:
        p = validate_precision(precision if precision is not None else get_settings().hll_precision)
        return cls(precision=p, seed=seed, registers=bytes(1 << p))

    @property
    def relative_error(self) -> float:
        return 1.04 / math.sqrt(1 << self.precision)

    def estimate(self) -> float:
        return estimate_cardinality(np.frombuffer(self.registers, dtype=np.uint8), self.precision)

    def merge(self, other: HyperLogLogState) -> HyperLogLogState:
        ensure_same_type(self, other)
        if self.precision != other.precision:
            raise StateIncompatibilityError(
                self, other, f"precision {self.precision} != {other.precision}"
            )
        if self.seed != other.seed:
            raise StateIncompatibilityError(self, other, "hash seeds differ")
        merged = np.maximum(
            np.frombuffer(self.registers, dtype=np.uint8),
            np.frombuffer(other.registers, dtype=np.uint8),
        )
        return HyperLogLogState(precision=self.precision, seed=self.seed, registers=merged.tobytes())

    def to_metric(self) -> MetricValue:
        return LongMetric(value=int(round(self.estimate())))

    def to_payload(self) -> dict[str, Any]:
        return {
            "precision": self.precision,
            "seed": self.seed,
            "registers": base64.b64encode(self.registers).decode("ascii"),
        }

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> HyperLogLogState:
        return cls(
            precision=int(data["precision"]),
            seed=int(data["seed"]),
            registers=base64.b64decode(data["registers"], validate=True),
        )


class HyperLogLogSketch:
    """Mutable HyperLogLog builder.

    Feed values with ``update``/``update_many`` and freeze the result with
    ``to_state``. Nulls are ignored.
    """

    def __init__(self, precision: int | None = None, seed: int = 0):
        self.precision = validate_precision(
            precision if precision is not None else get_settings().hll_precision
        )
        self.seed = seed
        self._suffix_bits = 64 - self.precision
        self._suffix_mask = (1 << self._suffix_bits) - 1
        self._registers = bytearray(1 << self.precision)

    @classmethod
    def from_state(cls, state: HyperLogLogState) -> HyperLogLogSketch:
        sketch = cls(precision=state.precision, seed=state.seed)
        sketch._registers[:] = state.registers
        return sketch

    def update_hash(self, hashed: int) -> None:
        index = hashed >> self._suffix_bits
        suffix = hashed & self._suffix_mask
        rank = self._suffix_bits - suffix.bit_length() + 1
        if rank > self._registers[index]:
            self._registers[index] = rank

    def update(self, value: Any) -> None:
        if value is None:
            return
        self.update_hash(hash64(value, self.seed))

    def update_many(self, values: Iterable[Any]) -> None:
        seed = self.seed
        for value in values:
            if value is not None:
                self.update_hash(hash64(value, seed))

    def estimate(self) -> float:
        return estimate_cardinality(np.frombuffer(bytes(self._registers), dtype=np.uint8), self.precision)

    def to_state(self) -> HyperLogLogState:
        return HyperLogLogState(precision=self.precision, seed=self.seed, registers=bytes(self._registers))
