"""Tests for sample-based type inference."""

from datetime import date
from decimal import Decimal

import pytest

from dqengine.profiling.models import SemanticType
from dqengine.profiling.patterns import load_pattern_config
from dqengine.profiling.type_inference import NATIVE_TEMPORAL, TypeInferrer


@pytest.fixture(scope="module")
def inferrer() -> TypeInferrer:
    return TypeInferrer(load_pattern_config(), min_confidence=0.9)


class TestClassify:
    @pytest.mark.parametrize(
        "value,expected",
        [
            (True, SemanticType.BOOLEAN),
            (7, SemanticType.INTEGER),
            (1.5, SemanticType.DECIMAL),
            (Decimal("2.50"), SemanticType.DECIMAL),
            (date(2024, 1, 1), SemanticType.DATE),
            ("42", SemanticType.INTEGER),
            (" 3.14 ", SemanticType.DECIMAL),
            ("yes", SemanticType.BOOLEAN),
            ("2024-01-15", SemanticType.DATE),
            ("hello", SemanticType.STRING),
            ("user@example.com", SemanticType.STRING),
        ],
    )
    def test_votes(self, inferrer, value, expected):
        assert inferrer.classify(value)[0] == expected

    @pytest.mark.parametrize("value", [None, "", "   ", float("nan")])
    def test_nulls_do_not_vote(self, inferrer, value):
        assert inferrer.classify(value) is None


class TestInfer:
    def test_integer_strings(self, inferrer):
        result = inferrer.infer([str(i) for i in range(100)])
        assert result.semantic_type == SemanticType.INTEGER
        assert result.confidence == 1.0
        assert result.samples_analyzed == 100

    def test_integers_and_decimals_are_decimal(self, inferrer):
        result = inferrer.infer(["1", "2", "2.5", "3"])
        assert result.semantic_type == SemanticType.DECIMAL
        assert result.votes == {"decimal": 4}

    def test_below_threshold_is_mixed(self, inferrer):
        result = inferrer.infer(["1", "2", "3", "4", "5", "6", "7", "8", "x", "y"])
        assert result.semantic_type == SemanticType.MIXED
        assert result.confidence == pytest.approx(0.8)

    def test_nulls_are_excluded_from_share(self, inferrer):
        result = inferrer.infer(["1", None, "2", "", "3"])
        assert result.semantic_type == SemanticType.INTEGER
        assert result.confidence == 1.0
        assert result.samples_analyzed == 5

    def test_all_null_sample(self, inferrer):
        result = inferrer.infer([None, None])
        assert result.semantic_type == SemanticType.STRING
        assert result.confidence == 0.0

    def test_date_formats_are_counted(self, inferrer):
        result = inferrer.infer(["2024-01-01", "2024-01-02", "01/03/2024"])
        assert result.semantic_type == SemanticType.DATE
        assert result.date_formats == {"iso_date": 2, "us_date": 1}
        assert result.dominant_date_format == "iso_date"

    def test_native_dates(self, inferrer):
        result = inferrer.infer([date(2024, 1, d) for d in range(1, 11)])
        assert result.semantic_type == SemanticType.DATE
        assert result.dominant_date_format == NATIVE_TEMPORAL

    def test_lower_threshold_accepts_majority(self):
        lenient = TypeInferrer(load_pattern_config(), min_confidence=0.5)
        result = lenient.infer(["1", "2", "3", "x"])
        assert result.semantic_type == SemanticType.INTEGER
