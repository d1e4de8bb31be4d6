"""Multi-pass column profiling."""

from dqengine.profiling.models import (
    BasicStats,
    CategoricalBucket,
    CategoricalHistogram,
    ColumnProfile,
    ColumnProfileError,
    NumericDistribution,
    PatternMatch,
    PatternSummary,
    ProfilingStrategy,
    SemanticType,
    StringStats,
    TableProfileResult,
    TemporalSummary,
)
from dqengine.profiling.patterns import Pattern, PatternConfig, load_pattern_config
from dqengine.profiling.profiler import ColumnProfiler, ProfilerConfig, ProfilerProgress
from dqengine.profiling.type_inference import TypeInferenceResult, TypeInferrer

__all__ = [
    "BasicStats",
    "CategoricalBucket",
    "CategoricalHistogram",
    "ColumnProfile",
    "ColumnProfileError",
    "ColumnProfiler",
    "NumericDistribution",
    "Pattern",
    "PatternConfig",
    "PatternMatch",
    "PatternSummary",
    "ProfilerConfig",
    "ProfilerProgress",
    "ProfilingStrategy",
    "SemanticType",
    "StringStats",
    "TableProfileResult",
    "TemporalSummary",
    "TypeInferenceResult",
    "TypeInferrer",
    "load_pattern_config",
]
