"""Analyzers and the analysis runner."""

from dqengine.analyzers.base import Analyzer, ColumnAnalyzer, RunnableAnalyzer
from dqengine.analyzers.basic import (
    Completeness,
    Maximum,
    Mean,
    Minimum,
    Size,
    StandardDeviation,
    Sum,
)
from dqengine.analyzers.context import AnalysisError, AnalyzerContext
from dqengine.analyzers.frequency import (
    DataType,
    Distinctness,
    Entropy,
    FrequencyAnalyzer,
    Uniqueness,
)
from dqengine.analyzers.runner import AnalysisRunner
from dqengine.analyzers.sketch import (
    ApproxCountDistinct,
    ApproxQuantile,
    ApproxQuantiles,
    Histogram,
)

__all__ = [
    "AnalysisError",
    "AnalysisRunner",
    "Analyzer",
    "AnalyzerContext",
    "ApproxCountDistinct",
    "ApproxQuantile",
    "ApproxQuantiles",
    "ColumnAnalyzer",
    "Completeness",
    "DataType",
    "Distinctness",
    "Entropy",
    "FrequencyAnalyzer",
    "Histogram",
    "Maximum",
    "Mean",
    "Minimum",
    "RunnableAnalyzer",
    "Size",
    "StandardDeviation",
    "Sum",
    "Uniqueness",
]
