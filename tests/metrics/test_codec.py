"""Tests for state envelopes and metric serialization."""

import json
import math
import random

import pytest

from dqengine.core.errors import ConfigurationError, StoreCorruptionError
from dqengine.metrics.codec import (
    STATE_FORMAT_VERSION,
    decode_state,
    encode_state,
    json_float,
    registered_state_types,
)
from dqengine.metrics.state import MeanState, MinMaxState, StdDevState, SumState
from dqengine.metrics.values import (
    DistributionMetric,
    DoubleMetric,
    LongMetric,
    SketchMetric,
    dump_metric,
    load_metric,
    metric_from_json,
    metric_to_json,
)
from dqengine.sketches.hyperloglog import HyperLogLogSketch
from dqengine.sketches.kll import KLLSketch
from dqengine.sketches.reservoir import ReservoirSampler


class TestStateEnvelopes:
    """Tests for encode_state/decode_state."""

    def test_envelope_shape(self):
        envelope = encode_state(MeanState(total=60.0, count=3))

        assert envelope == {
            "type": "mean",
            "version": STATE_FORMAT_VERSION,
            "data": {"total": 60.0, "count": 3},
        }

    def test_builtin_types_registered(self):
        types = registered_state_types()
        for name in ("size", "sum", "mean", "stddev", "min_max", "completeness", "frequency"):
            assert name in types
        for name in ("hyperloglog", "kll", "reservoir"):
            assert name in types

    def test_min_max_with_nulls_survives(self):
        state = MinMaxState.empty()
        assert decode_state(encode_state(state)) == state

    def test_sketch_states_survive(self):
        hll = HyperLogLogSketch(precision=10)
        hll.update_many(range(500))
        kll = KLLSketch(k=64, rng=random.Random(1))
        kll.update_many(range(1000))
        reservoir = ReservoirSampler(5, rng=random.Random(2))
        reservoir.update_many(["a", "b", "c", "d", "e", "f", "g"])

        for state in (hll.to_state(), kll.to_state(), reservoir.to_state()):
            decoded = decode_state(encode_state(state))
            assert decoded == state
            assert decoded.to_metric() == state.to_metric()

    def test_unregistered_state_cannot_be_encoded(self):
        class Foreign:
            state_type = "foreign"

        with pytest.raises(ConfigurationError):
            encode_state(Foreign())

    def test_unknown_type_is_corruption(self):
        with pytest.raises(StoreCorruptionError, match="Unknown state type"):
            decode_state({"type": "from_the_future", "version": 1, "data": {}})

    def test_unknown_version_is_corruption(self):
        with pytest.raises(StoreCorruptionError, match="version"):
            decode_state({"type": "mean", "version": 99, "data": {"total": 1.0, "count": 1}})

    @pytest.mark.parametrize(
        "envelope",
        [
            {"version": 1, "data": {}},
            {"type": "mean", "version": 1, "data": {"total": 1.0}},
            {"type": "hyperloglog", "version": 1, "data": {"precision": 4, "seed": 0, "registers": "!!"}},
            {"type": "hyperloglog", "version": 1, "data": {"precision": 40, "seed": 0, "registers": ""}},
            "not an envelope",
        ],
    )
    def test_malformed_envelopes_are_corruption(self, envelope):
        with pytest.raises(StoreCorruptionError):
            decode_state(envelope)


class TestNonFiniteStates:
    """Payloads stay strict JSON when a state holds NaN or an infinity."""

    @staticmethod
    def _through_json(state):
        text = json.dumps(encode_state(state), allow_nan=False)
        return decode_state(json.loads(text))

    @pytest.mark.parametrize(
        "value,expected",
        [(1.5, 1.5), (None, None), (math.nan, "nan"), (math.inf, "inf"), (-math.inf, "-inf")],
    )
    def test_json_float(self, value, expected):
        assert json_float(value) == expected

    def test_nan_mean(self):
        restored = self._through_json(MeanState(total=math.nan, count=2))

        assert math.isnan(restored.total)
        assert restored.count == 2

    def test_infinite_sums(self):
        assert self._through_json(SumState(total=math.inf, count=1)) == SumState(total=math.inf, count=1)
        state = StdDevState(count=2, total=-math.inf, sum_of_squares=math.inf)
        assert self._through_json(state) == state

    def test_infinite_extremes(self):
        state = MinMaxState(minimum=-math.inf, maximum=math.inf, count=2)
        assert self._through_json(state) == state

    def test_kll_with_infinities(self):
        sketch = KLLSketch(k=16, rng=random.Random(3))
        sketch.update_many([1.0, 2.0, math.inf, -math.inf])
        state = sketch.to_state()

        restored = self._through_json(state)

        assert restored == state
        assert restored.max_value == math.inf

    def test_reservoir_keeps_non_finite_items_as_text(self):
        sampler = ReservoirSampler(3, rng=random.Random(0))
        sampler.update_many([1.0, math.nan])

        assert self._through_json(sampler.to_state()).items == (1.0, "nan")


class TestMetricValues:
    """Tests for MetricValue serialization."""

    def test_discriminated_union_round_trip(self):
        metrics = [
            LongMetric(value=3),
            DoubleMetric(value=0.5),
            DistributionMetric(values={"p50": 2.0, "p99": 9.5}),
            SketchMetric(sketch_type="reservoir", payload={"items": [1, 2]}),
        ]
        for metric in metrics:
            assert load_metric(dump_metric(metric)) == metric
            assert metric_from_json(metric_to_json(metric)) == metric

    def test_non_finite_doubles_survive_json(self):
        restored = metric_from_json(metric_to_json(DoubleMetric(value=float("inf"))))
        assert math.isinf(restored.value)

    def test_scalar_view(self):
        assert LongMetric(value=3).as_float() == 3.0
        assert DoubleMetric(value=0.5).as_float() == 0.5
        assert DistributionMetric(values={"min": 1.0}).as_float() is None

    def test_pretty(self):
        assert LongMetric(value=1234567).to_pretty() == "1,234,567"
        assert DistributionMetric(values={"min": 1.0, "max": 2.5}).to_pretty() == "min=1, max=2.5"
