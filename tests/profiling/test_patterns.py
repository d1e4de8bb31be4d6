"""Tests for the value pattern library."""

import pytest

from dqengine.core.errors import ConfigurationError
from dqengine.profiling.models import SemanticType
from dqengine.profiling.patterns import PatternConfig, load_pattern_config


@pytest.fixture(scope="module")
def config() -> PatternConfig:
    return load_pattern_config()


class TestPatternConfig:
    """Tests for pattern configuration loading."""

    def test_load_default_config(self, config):
        assert len(config.get_patterns()) > 0
        assert config.get_pattern("iso_date") is not None
        assert config.get_pattern("nope") is None

    def test_match_iso_date(self, config):
        names = [p.name for p in config.match_value("2024-01-15")]
        assert "iso_date" in names
        assert config.get_pattern("iso_date").inferred_type == SemanticType.DATE

    def test_match_email(self, config):
        email = next(p for p in config.match_value("user@example.com") if p.name == "email")
        assert email.inferred_type == SemanticType.STRING
        assert email.semantic_type == "identifier"
        assert email.pii is True

    def test_match_uuid(self, config):
        matches = config.match_value("550e8400-e29b-41d4-a716-446655440000")
        assert [p.semantic_type for p in matches if p.name == "uuid"] == ["key"]

    def test_match_currency(self, config):
        currency = next(p for p in config.match_value("$1,234.56") if p.name == "currency_usd")
        assert currency.inferred_type == SemanticType.DECIMAL

    @pytest.mark.parametrize("value", ["true", "False", "YES", "no"])
    def test_boolean_is_case_insensitive(self, config, value):
        assert [p.name for p in config.match_value(value)] == ["boolean_word"]

    def test_empty_value_matches_nothing(self, config):
        assert config.match_value("") == []

    def test_every_example_matches_its_pattern(self, config):
        for pattern in config.get_patterns():
            for example in pattern.examples or []:
                assert pattern.matches(example), f"{pattern.name} should match {example!r}"


class TestLoading:
    def test_invalid_pattern_is_skipped(self):
        config = PatternConfig(
            {
                "numeric_patterns": [
                    {"name": "broken", "pattern": "([", "inferred_type": "INTEGER"},
                    {"name": "digits", "pattern": r"^\d+$", "inferred_type": "INTEGER"},
                ]
            }
        )
        assert [p.name for p in config.get_patterns()] == ["digits"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_pattern_config(tmp_path / "missing.yaml")

    def test_file_must_be_a_mapping(self, tmp_path):
        path = tmp_path / "patterns.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigurationError):
            load_pattern_config(path)
