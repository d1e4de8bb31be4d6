"""Value pattern library.

Patterns are defined in config/patterns/default.yaml and match individual
cell values (never column names). They serve two purposes:

- type inference: a string value is classified by the ``inferred_type`` of
  the patterns it matches
- string profiling: match rates of every pattern over the sampled values
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, cast

import yaml

from dqengine.core.config import get_settings
from dqengine.core.errors import ConfigurationError
from dqengine.core.logging import get_logger
from dqengine.profiling.models import SemanticType

logger = get_logger(__name__)

PATTERN_CATEGORIES = (
    "boolean_patterns",
    "numeric_patterns",
    "date_patterns",
    "identifier_patterns",
)


@dataclass
class Pattern:
    """One named regular expression over cell values."""

    name: str
    regex: str
    inferred_type: SemanticType
    semantic_type: str | None = None
    case_sensitive: bool = True
    pii: bool = False
    date_format: str | None = None
    strptime_format: str | None = None
    examples: list[str] = field(default_factory=list)
    _compiled: re.Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self._compiled = re.compile(self.regex, 0 if self.case_sensitive else re.IGNORECASE)

    @classmethod
    def from_mapping(cls, entry: dict[str, Any]) -> Pattern:
        """Build a pattern from one YAML entry.

        Raises KeyError for a missing name, pattern or unknown inferred_type
        and re.error for an invalid expression.
        """
        return cls(
            name=entry["name"],
            regex=entry["pattern"],
            inferred_type=SemanticType[entry.get("inferred_type", "STRING")],
            semantic_type=entry.get("semantic_type"),
            case_sensitive=entry.get("case_sensitive", True),
            pii=entry.get("pii", False),
            date_format=entry.get("date_format"),
            strptime_format=entry.get("strptime_format"),
            examples=list(entry.get("examples") or []),
        )

    def matches(self, value: str) -> bool:
        return bool(value) and self._compiled.match(value) is not None


class PatternConfig:
    """The ordered pattern library.

    Entries are read category by category in ``PATTERN_CATEGORIES`` order.
    Malformed entries are logged and skipped so one bad pattern does not
    disable profiling.
    """

    def __init__(self, library: dict[str, object]):
        self._patterns: list[Pattern] = []
        for category in PATTERN_CATEGORIES:
            for entry in cast(list[dict[str, Any]], library.get(category) or []):
                try:
                    self._patterns.append(Pattern.from_mapping(entry))
                except (KeyError, re.error) as e:
                    logger.warning(
                        "invalid_pattern_skipped",
                        category=category,
                        pattern=entry.get("name"),
                        error=str(e),
                    )
        self._by_name = {p.name: p for p in reversed(self._patterns)}

    def get_patterns(self) -> list[Pattern]:
        return list(self._patterns)

    def get_pattern(self, name: str) -> Pattern | None:
        return self._by_name.get(name)

    def match_value(self, value: str) -> list[Pattern]:
        """Every pattern matching ``value``, in library order."""
        return [p for p in self._patterns if p.matches(value)]


def load_pattern_config(config_path: Path | None = None) -> PatternConfig:
    """Read the pattern library, by default from the configured config directory.

    Raises:
        ConfigurationError: the file is missing or is not a YAML mapping
    """
    path = config_path or get_settings().config_path / "patterns" / "default.yaml"
    try:
        library = yaml.safe_load(Path(path).read_text())
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot load pattern library {path}: {e}") from e

    if not isinstance(library, dict):
        raise ConfigurationError(f"Pattern library {path} must be a mapping")

    return PatternConfig(library)
