"""Approximate, mergeable sketches with bounded memory."""

from dqengine.sketches.hashing import canonical_bytes, hash64
from dqengine.sketches.hyperloglog import HyperLogLogSketch, HyperLogLogState
from dqengine.sketches.kll import (
    DEFAULT_QUANTILES,
    KLLSketch,
    KLLSketchState,
    normalized_rank_error,
    quantile_label,
)
from dqengine.sketches.reservoir import ReservoirSampler, ReservoirState

__all__ = [
    "DEFAULT_QUANTILES",
    "HyperLogLogSketch",
    "HyperLogLogState",
    "KLLSketch",
    "KLLSketchState",
    "ReservoirSampler",
    "ReservoirState",
    "canonical_bytes",
    "hash64",
    "normalized_rank_error",
    "quantile_label",
]
