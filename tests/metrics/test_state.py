"""Tests for mergeable analyzer states."""

import math

import pytest

from dqengine.core.errors import AnalyzerError, StateIncompatibilityError
from dqengine.metrics.state import (
    AnalyzerState,
    CompletenessState,
    FrequencyState,
    MeanState,
    MinMaxState,
    SizeState,
    StdDevState,
    SumState,
)
from dqengine.metrics.values import DistributionMetric, DoubleMetric, LongMetric


def _partitions():
    """Three partitions of [1, 2, 3, 4, 5, 6] in state form, per state type."""
    parts = [[1.0, 2.0], [3.0], [4.0, 5.0, 6.0]]
    return {
        "size": [SizeState(count=len(p)) for p in parts],
        "sum": [SumState(total=sum(p), count=len(p)) for p in parts],
        "mean": [MeanState(total=sum(p), count=len(p)) for p in parts],
        "stddev": [StdDevState.from_values(p) for p in parts],
        "min_max": [MinMaxState(minimum=min(p), maximum=max(p), count=len(p)) for p in parts],
        "completeness": [CompletenessState(non_null=len(p), total=len(p) + 1) for p in parts],
        "frequency": [FrequencyState(counts={str(v): 1 for v in p}, total=len(p)) for p in parts],
    }


EMPTY = {
    "size": SizeState.empty(),
    "sum": SumState.empty(),
    "mean": MeanState.empty(),
    "stddev": StdDevState.empty(),
    "min_max": MinMaxState.empty(),
    "completeness": CompletenessState.empty(),
    "frequency": FrequencyState.empty(),
}


@pytest.mark.parametrize("state_type", sorted(EMPTY))
class TestMergeLaws:
    """merge is associative and commutative with empty() as identity."""

    def test_associative(self, state_type):
        a, b, c = _partitions()[state_type]
        assert a.merge(b).merge(c).to_metric() == a.merge(b.merge(c)).to_metric()

    def test_commutative(self, state_type):
        a, b, _ = _partitions()[state_type]
        assert a.merge(b) == b.merge(a)

    def test_identity(self, state_type):
        a, _, _ = _partitions()[state_type]
        empty = EMPTY[state_type]
        assert empty.merge(a) == a
        assert a.merge(empty) == a

    def test_implements_protocol(self, state_type):
        assert isinstance(EMPTY[state_type], AnalyzerState)


class TestFinalization:
    def test_size(self):
        assert SizeState(count=7).to_metric() == LongMetric(value=7)

    def test_mean_of_merged_partitions(self):
        merged = MeanState(total=30.0, count=2).merge(MeanState(total=30.0, count=1))
        assert merged.to_metric() == DoubleMetric(value=20.0)

    def test_stddev_matches_population_formula(self):
        values = [2.0, 4.0, 4.0, 4.0, 5.0, 5.0, 7.0, 9.0]
        state = StdDevState.from_values(values[:3]).merge(StdDevState.from_values(values[3:]))
        assert state.stddev == pytest.approx(2.0)

    def test_stddev_of_constant_column_is_zero(self):
        state = StdDevState.from_values([0.1] * 10)
        assert state.variance < 1e-12
        assert not math.isnan(state.stddev)

    def test_min_max(self):
        state = MinMaxState(minimum=3.0, maximum=4.0, count=2).merge(MinMaxState.empty())
        assert state.to_metric() == DistributionMetric(values={"min": 3.0, "max": 4.0})

    def test_completeness(self):
        state = CompletenessState(non_null=3, total=4)
        assert state.to_metric() == DoubleMetric(value=0.75)

    @pytest.mark.parametrize(
        "state",
        [MeanState.empty(), StdDevState.empty(), MinMaxState.empty(), CompletenessState.empty()],
    )
    def test_empty_states_cannot_finalize(self, state):
        with pytest.raises(AnalyzerError):
            state.to_metric()

    def test_empty_sum_is_zero(self):
        assert SumState.empty().to_metric() == DoubleMetric(value=0.0)

    def test_frequency_metrics(self):
        state = FrequencyState(counts={"a": 2, "b": 1}, total=3).merge(
            FrequencyState(counts={"b": 1, "c": 1}, total=2)
        )

        assert state.counts == {"a": 2, "b": 2, "c": 1}
        assert state.distinctness() == pytest.approx(3 / 5)
        assert state.uniqueness() == pytest.approx(1 / 5)
        assert state.entropy() == pytest.approx(-(2 * 0.4 * math.log2(0.4) + 0.2 * math.log2(0.2)))
        assert state.to_metric() == DistributionMetric(values={"a": 2.0, "b": 2.0, "c": 1.0})

    def test_truncation_survives_merge(self):
        state = FrequencyState(counts={"a": 5}, total=9, truncated=True).merge(FrequencyState.empty())

        assert state.truncated
        with pytest.raises(AnalyzerError):
            state.entropy()


class TestIncompatibleMerge:
    def test_different_state_types_raise(self):
        with pytest.raises(StateIncompatibilityError):
            SizeState(count=1).merge(MeanState(total=1.0, count=1))

    def test_mean_and_sum_do_not_mix(self):
        with pytest.raises(StateIncompatibilityError):
            SumState(total=1.0, count=1).merge(MeanState(total=1.0, count=1))
