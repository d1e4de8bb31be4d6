"""Sample-based type inference.

Every sampled value casts one vote. Typed values (coming from typed
columns) vote for their own type; strings vote for the type of the
highest-priority pattern they match, or for STRING. Integers count
towards DECIMAL when the column also holds decimals. The majority type is
accepted when its share of the non-null votes reaches the confidence
threshold, otherwise the column is MIXED.
"""

from __future__ import annotations

import math
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from dqengine.profiling.models import SemanticType
from dqengine.profiling.patterns import Pattern, PatternConfig

# Pattern types a string can be promoted to, highest priority first
_PROMOTABLE = (
    SemanticType.BOOLEAN,
    SemanticType.INTEGER,
    SemanticType.DECIMAL,
    SemanticType.DATE,
)

# Tie-break order when two types receive the same number of votes
_TIE_ORDER = {
    SemanticType.INTEGER: 0,
    SemanticType.DECIMAL: 1,
    SemanticType.BOOLEAN: 2,
    SemanticType.DATE: 3,
    SemanticType.STRING: 4,
}

NATIVE_TEMPORAL = "native"


@dataclass(frozen=True)
class TypeInferenceResult:
    semantic_type: SemanticType
    confidence: float
    samples_analyzed: int
    votes: dict[str, int] = field(default_factory=dict)
    date_formats: dict[str, int] = field(default_factory=dict)  # pattern name -> votes

    @property
    def dominant_date_format(self) -> str | None:
        if not self.date_formats:
            return None
        return max(self.date_formats.items(), key=lambda item: (item[1], item[0]))[0]


class TypeInferrer:
    def __init__(self, patterns: PatternConfig, min_confidence: float):
        self.patterns = patterns
        self.min_confidence = min_confidence

    def classify(self, value: Any) -> tuple[SemanticType, Pattern | None] | None:
        """Vote of a single value; None for nulls and blank strings."""
        if value is None:
            return None
        if isinstance(value, bool):
            return SemanticType.BOOLEAN, None
        if isinstance(value, int):
            return SemanticType.INTEGER, None
        if isinstance(value, float):
            if math.isnan(value):
                return None
            return SemanticType.DECIMAL, None
        if isinstance(value, Decimal):
            return SemanticType.DECIMAL, None
        if isinstance(value, datetime | date):
            return SemanticType.DATE, None
        if not isinstance(value, str):
            return SemanticType.STRING, None

        text = value.strip()
        if not text:
            return None
        matches = self.patterns.match_value(text)
        for semantic_type in _PROMOTABLE:
            for pattern in matches:
                if pattern.inferred_type == semantic_type:
                    return semantic_type, pattern
        return SemanticType.STRING, None

    def infer(self, sample: Iterable[Any]) -> TypeInferenceResult:
        votes: Counter[SemanticType] = Counter()
        date_formats: Counter[str] = Counter()
        analyzed = 0

        for value in sample:
            analyzed += 1
            vote = self.classify(value)
            if vote is None:
                continue
            semantic_type, pattern = vote
            votes[semantic_type] += 1
            if semantic_type == SemanticType.DATE:
                date_formats[pattern.name if pattern else NATIVE_TEMPORAL] += 1

        non_null = sum(votes.values())
        if non_null == 0:
            return TypeInferenceResult(
                semantic_type=SemanticType.STRING,
                confidence=0.0,
                samples_analyzed=analyzed,
            )

        if votes[SemanticType.DECIMAL] > 0 and votes[SemanticType.INTEGER] > 0:
            votes[SemanticType.DECIMAL] += votes.pop(SemanticType.INTEGER)

        best, count = min(votes.items(), key=lambda item: (-item[1], _TIE_ORDER[item[0]]))
        share = count / non_null
        semantic_type = best if share >= self.min_confidence else SemanticType.MIXED

        return TypeInferenceResult(
            semantic_type=semantic_type,
            confidence=share,
            samples_analyzed=analyzed,
            votes={t.value: n for t, n in votes.items() if n > 0},
            date_formats=dict(date_formats),
        )
