"""Column Profile Models.

Pydantic models for column profiling data structures:
- ColumnProfile: Complete, immutable profile of one column
- BasicStats: Row, null and distinct counts (pass 2)
- NumericDistribution: Quantiles, moments and outliers (pass 3, numeric)
- StringStats / PatternSummary: Lengths and pattern matches (pass 3, string)
- CategoricalHistogram: Top-N value counts (pass 3, categorical)
- TemporalSummary: Date range and format consistency (pass 3, temporal)
- TableProfileResult: Profiles of many columns plus per-column errors
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from dqengine.core.models.base import RunStatus


class SemanticType(str, Enum):
    """Inferred semantic type of a column."""

    INTEGER = "integer"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    DATE = "date"
    STRING = "string"
    CATEGORICAL = "categorical"
    MIXED = "mixed"

    @property
    def is_numeric(self) -> bool:
        return self in (SemanticType.INTEGER, SemanticType.DECIMAL)


class ProfilingStrategy(str, Enum):
    """How distinct counts are obtained after pass 1."""

    EXACT = "exact"
    APPROXIMATE = "approximate"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class BasicStats(_Frozen):
    row_count: int
    null_count: int
    null_ratio: float
    distinct_count: int
    distinct_is_exact: bool
    distinct_ratio: float  # distinct / non-null


class NumericDistribution(_Frozen):
    min_value: float
    max_value: float
    mean: float
    stddev: float
    quantiles: dict[str, float] = Field(default_factory=dict)
    quantile_rank_error: float

    # Tukey fences from the quartiles
    iqr: float
    lower_fence: float
    upper_fence: float
    low_outlier_count: int = 0
    high_outlier_count: int = 0

    @property
    def outlier_count(self) -> int:
        return self.low_outlier_count + self.high_outlier_count

    @property
    def has_low_outliers(self) -> bool:
        return self.low_outlier_count > 0

    @property
    def has_high_outliers(self) -> bool:
        return self.high_outlier_count > 0


class StringStats(_Frozen):
    min_length: int
    max_length: int
    avg_length: float
    empty_count: int = 0


class PatternMatch(_Frozen):
    name: str
    match_rate: float
    semantic_type: str | None = None
    pii: bool = False


class PatternSummary(_Frozen):
    """Pattern match rates over the sampled values."""

    sample_size: int
    matches: list[PatternMatch] = Field(default_factory=list)

    @property
    def dominant(self) -> PatternMatch | None:
        """Best pattern matching at least half of the sample."""
        if self.matches and self.matches[0].match_rate >= 0.5:
            return self.matches[0]
        return None


class CategoricalBucket(_Frozen):
    value: str
    count: int
    percentage: float


class CategoricalHistogram(_Frozen):
    """At most ``top_n`` buckets, most frequent first.

    ``is_complete`` is False when less frequent values were dropped.
    """

    buckets: list[CategoricalBucket] = Field(default_factory=list)
    is_complete: bool
    total_count: int
    top_n: int

    @property
    def other_count(self) -> int:
        return self.total_count - sum(bucket.count for bucket in self.buckets)


class TemporalSummary(_Frozen):
    min_timestamp: datetime | None = None
    max_timestamp: datetime | None = None
    span_days: float | None = None
    dominant_format: str | None = None
    format_consistency: float = 0.0  # share of sampled values in the dominant format
    parsed_count: int = 0
    unparseable_count: int = 0


class ColumnProfile(_Frozen):
    """Immutable snapshot of one column's type, statistics and distribution."""

    column_name: str
    semantic_type: SemanticType
    type_confidence: float
    basic_stats: BasicStats | None = None
    numeric_distribution: NumericDistribution | None = None
    string_stats: StringStats | None = None
    categorical_histogram: CategoricalHistogram | None = None
    pattern_summary: PatternSummary | None = None
    temporal_summary: TemporalSummary | None = None
    sample_values: list[str] = Field(default_factory=list)
    passes_executed: list[int] = Field(default_factory=list)
    strategy: ProfilingStrategy
    cardinality_estimate: int
    profiling_time_ms: float = 0.0


class ColumnProfileError(_Frozen):
    column: str
    pass_number: int
    error_type: str
    message: str


class TableProfileResult(BaseModel):
    """Profiles of a table's columns.

    Columns whose pass 3 failed still appear in ``profiles`` with passes 1-2
    and have an entry in ``errors``.
    """

    table_name: str
    profiles: dict[str, ColumnProfile] = Field(default_factory=dict)
    errors: list[ColumnProfileError] = Field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def status(self) -> RunStatus:
        return RunStatus.COMPLETED_WITH_ERRORS if self.errors else RunStatus.COMPLETED
