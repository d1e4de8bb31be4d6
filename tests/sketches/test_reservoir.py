"""Tests for reservoir sampling."""

import random
from collections import Counter
from datetime import date
from decimal import Decimal

import pytest

from dqengine.core.errors import ConfigurationError, StateIncompatibilityError
from dqengine.sketches.reservoir import ReservoirSampler, ReservoirState


def _state(items, capacity=10, seed=0) -> ReservoirState:
    sampler = ReservoirSampler(capacity, rng=random.Random(seed))
    sampler.update_many(items)
    return sampler.to_state()


class TestReservoirSampler:
    def test_keeps_everything_below_capacity(self):
        state = _state(range(5))
        assert state.items == (0, 1, 2, 3, 4)
        assert state.seen == 5

    def test_sample_size_is_bounded(self):
        state = _state(range(10_000), capacity=50)
        assert len(state.items) == 50
        assert state.seen == 10_000
        assert set(state.items) <= set(range(10_000))

    def test_seeded_sampling_is_deterministic(self):
        assert _state(range(1000), seed=5) == _state(range(1000), seed=5)

    def test_sampling_is_roughly_uniform(self):
        """Every item of a 20-item stream lands in a 5-slot reservoir about 25% of the time."""
        counts: Counter[int] = Counter()
        trials = 4000
        for seed in range(trials):
            counts.update(_state(range(20), capacity=5, seed=seed).items)

        for item in range(20):
            assert counts[item] / trials == pytest.approx(0.25, abs=0.05)

    def test_invalid_capacity(self):
        with pytest.raises(ConfigurationError):
            ReservoirSampler(0)


class TestReservoirMerge:
    def test_small_merge_is_concatenation(self):
        merged = _state([1, 2]).merge(_state([3]))
        assert sorted(merged.items) == [1, 2, 3]
        assert merged.seen == 3

    def test_merge_bounded_and_counts_seen(self):
        merged = _state(range(100), seed=1).merge(_state(range(100, 400), seed=2))
        assert len(merged.items) == 10
        assert merged.seen == 400
        assert set(merged.items) <= set(range(400))

    def test_merge_commutative(self):
        a = _state(range(100), seed=1)
        b = _state(range(100, 300), seed=2)
        assert a.merge(b) == b.merge(a)

    def test_merge_identity(self):
        state = _state(range(100))
        empty = ReservoirState.empty(10)
        assert state.merge(empty) == state
        assert empty.merge(state) == state

    def test_merge_weights_by_seen(self):
        """A side that saw 9x more items contributes about 90% of the merged sample."""
        small = _state(range(100), capacity=100, seed=1)
        large = _state(range(1000, 1900), capacity=100, seed=2)
        from_large = 0
        for seed in range(50):
            merged = small.merge(large, rng=random.Random(seed))
            from_large += sum(1 for item in merged.items if item >= 1000)

        assert from_large / (50 * 100) == pytest.approx(0.9, abs=0.05)

    def test_merge_rejects_different_capacity(self):
        with pytest.raises(StateIncompatibilityError, match="capacity"):
            _state(range(5), capacity=5).merge(_state(range(5), capacity=6))

    def test_payload_is_json_safe(self):
        state = _state([date(2024, 1, 1), Decimal("1.50"), "x"])
        assert state.to_payload()["items"] == ["2024-01-01", "1.50", "x"]
