"""Three-pass column profiler.

Pass 1 - one streaming scan of the column feeds a HyperLogLog sketch (over
    every non-null value) and a seeded reservoir sample. Type inference
    votes over the sample; the cardinality estimate decides whether the
    column is categorical and whether distinct counts are exact.
Pass 2 - a single combined aggregate query: row count, non-null count and,
    for the exact strategy, COUNT(DISTINCT). The approximate strategy reuses
    the pass-1 estimate instead.
Pass 3 - type-specific distribution analysis (numeric, string,
    categorical, temporal).

Distinct-count policy: a profile's distinct count is exact if and only if
the pass-1 estimate is at or below ``exact_distinct_threshold``; otherwise
it is the HyperLogLog estimate and ``distinct_is_exact`` is False. The two
are never mixed within one profile.

A pass-3 failure raises PartialProfileError carrying the passes 1-2
profile. ``profile_table`` isolates per-column failures.
"""

from __future__ import annotations

import math
import random
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from dqengine.analyzers.base import fetch_aggregate
from dqengine.analyzers.runner import FATAL_ERRORS, report_progress
from dqengine.core.config import Settings, get_settings
from dqengine.core.connections import DataSource
from dqengine.core.errors import AnalyzerError, PartialProfileError
from dqengine.core.logging import get_logger, log_context
from dqengine.core.models.base import ExecutionContext, quote_identifier
from dqengine.metrics.state import StdDevState
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
from dqengine.profiling.patterns import PatternConfig, load_pattern_config
from dqengine.profiling.type_inference import NATIVE_TEMPORAL, TypeInferenceResult, TypeInferrer
from dqengine.sketches.hyperloglog import HyperLogLogSketch
from dqengine.sketches.kll import KLLSketch, quantile_label
from dqengine.sketches.reservoir import ReservoirSampler

logger = get_logger(__name__)

TOTAL_PASSES = 3


@dataclass(frozen=True)
class ProfilerProgress:
    """Reported at the start of every pass."""

    column: str
    pass_number: int
    total_passes: int
    message: str

    @property
    def fraction(self) -> float:
        return (self.pass_number - 1) / self.total_passes


class ProfilerConfig(BaseModel):
    """Profiler parameters. Build from settings or explicitly in tests."""

    model_config = ConfigDict(frozen=True)

    sample_size: int = Field(default=10_000, gt=0)
    exact_distinct_threshold: int = Field(default=100_000, ge=0)
    categorical_threshold: int = Field(default=100, ge=0)
    top_n: int = Field(default=20, gt=0)
    type_inference_min_confidence: float = Field(default=0.9, gt=0.0, le=1.0)
    hll_precision: int = Field(default=12, ge=4, le=18)
    kll_k: int = Field(default=200, ge=8)
    seed: int = 42
    quantiles: tuple[float, ...] = (0.01, 0.05, 0.10, 0.25, 0.50, 0.75, 0.90, 0.95, 0.99)
    max_sample_values: int = Field(default=10, ge=0)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> ProfilerConfig:
        settings = settings or get_settings()
        return cls(
            sample_size=settings.profile_sample_size,
            exact_distinct_threshold=settings.profile_exact_distinct_threshold,
            categorical_threshold=settings.profile_categorical_threshold,
            top_n=settings.profile_top_n,
            type_inference_min_confidence=settings.type_inference_min_confidence,
            hll_precision=settings.hll_precision,
            kll_k=settings.kll_k,
            seed=settings.profile_seed,
        )


@dataclass(frozen=True)
class _SampleResult:
    inference: TypeInferenceResult
    semantic_type: SemanticType
    cardinality_estimate: int
    strategy: ProfilingStrategy
    sample: list[Any]


@dataclass
class _PassCursor:
    current: int = 0


def _sql_string(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class ColumnProfiler:
    """Profiles columns with bounded memory.

    Usage:
        profiler = ColumnProfiler(ProfilerConfig(top_n=10))
        profile = await profiler.profile_column(source, ctx, "country")
        result = await profiler.profile_table(source, ctx)
    """

    def __init__(
        self,
        config: ProfilerConfig | None = None,
        patterns: PatternConfig | None = None,
        on_progress: Callable[[ProfilerProgress], None] | None = None,
    ):
        self.config = config or ProfilerConfig.from_settings()
        self.patterns = patterns or load_pattern_config()
        self.on_progress = on_progress
        self._inferrer = TypeInferrer(self.patterns, self.config.type_inference_min_confidence)

    async def profile_column(
        self, source: DataSource, ctx: ExecutionContext, column: str
    ) -> ColumnProfile:
        """Profile one column.

        Raises:
            DataAccessError: pass 1 or 2 failed
            PartialProfileError: pass 3 failed; carries the passes 1-2 profile
        """
        return await self._run_passes(source, ctx, column, _PassCursor())

    async def profile_table(
        self,
        source: DataSource,
        ctx: ExecutionContext,
        columns: Sequence[str] | None = None,
    ) -> TableProfileResult:
        """Profile many columns; one column's failure never stops the others."""
        start = time.perf_counter()
        names = list(columns) if columns is not None else await source.column_names(ctx.table_name)
        result = TableProfileResult(table_name=ctx.table_name)

        logger.info("table_profiling_started", source=str(ctx), columns=len(names))

        for name in names:
            cursor = _PassCursor()
            try:
                result.profiles[name] = await self._run_passes(source, ctx, name, cursor)
            except PartialProfileError as e:
                result.profiles[name] = e.profile
                result.errors.append(
                    ColumnProfileError(
                        column=name,
                        pass_number=3,
                        error_type=type(e.cause).__name__,
                        message=str(e.cause),
                    )
                )
            except FATAL_ERRORS:
                raise
            except Exception as e:
                logger.warning(
                    "column_profiling_failed", column=name, pass_number=cursor.current, error=str(e)
                )
                result.errors.append(
                    ColumnProfileError(
                        column=name,
                        pass_number=cursor.current,
                        error_type=type(e).__name__,
                        message=str(e),
                    )
                )

        result.duration_seconds = time.perf_counter() - start
        logger.info(
            "table_profiling_completed",
            status=result.status.value,
            profiled=len(result.profiles),
            errors=len(result.errors),
            duration_seconds=round(result.duration_seconds, 3),
        )
        return result

    async def _run_passes(
        self,
        source: DataSource,
        ctx: ExecutionContext,
        column: str,
        cursor: _PassCursor,
    ) -> ColumnProfile:
        start = time.perf_counter()
        with log_context(column=column):
            cursor.current = 1
            self._progress(column, 1, "sampling and cardinality estimation")
            sampled = await self._pass1_sample(source, ctx, column)

            cursor.current = 2
            self._progress(column, 2, f"basic aggregates ({sampled.strategy.value} distinct count)")
            basic = await self._pass2_aggregates(source, ctx, column, sampled)

            profile = ColumnProfile(
                column_name=column,
                semantic_type=sampled.semantic_type,
                type_confidence=sampled.inference.confidence,
                basic_stats=basic,
                sample_values=self._sample_values(sampled.sample),
                passes_executed=[1, 2],
                strategy=sampled.strategy,
                cardinality_estimate=sampled.cardinality_estimate,
                profiling_time_ms=(time.perf_counter() - start) * 1000,
            )

            if basic.row_count == basic.null_count:
                logger.debug("distribution_skipped_all_null")
                return profile

            cursor.current = 3
            self._progress(column, 3, f"{sampled.semantic_type.value} distribution")
            try:
                details = await self._pass3_distribution(source, ctx, column, sampled, basic)
            except FATAL_ERRORS:
                raise
            except Exception as e:
                logger.warning("distribution_analysis_failed", error_type=type(e).__name__, error=str(e))
                raise PartialProfileError(column, e, profile) from e

            profile = profile.model_copy(
                update={
                    **details,
                    "passes_executed": [1, 2, 3],
                    "profiling_time_ms": (time.perf_counter() - start) * 1000,
                }
            )
            logger.debug(
                "column_profiled",
                semantic_type=profile.semantic_type.value,
                strategy=profile.strategy.value,
                profiling_time_ms=round(profile.profiling_time_ms, 1),
            )
            return profile

    def _progress(self, column: str, pass_number: int, message: str) -> None:
        report_progress(
            self.on_progress,
            ProfilerProgress(
                column=column,
                pass_number=pass_number,
                total_passes=TOTAL_PASSES,
                message=message,
            ),
        )

    def _sample_values(self, sample: list[Any]) -> list[str]:
        values: list[str] = []
        for value in sample:
            text = str(value)
            if text not in values:
                values.append(text)
            if len(values) >= self.config.max_sample_values:
                break
        return values

    # -- Pass 1 ---------------------------------------------------------------

    async def _pass1_sample(
        self, source: DataSource, ctx: ExecutionContext, column: str
    ) -> _SampleResult:
        col = quote_identifier(column)
        sketch = HyperLogLogSketch(precision=self.config.hll_precision)
        reservoir = ReservoirSampler(self.config.sample_size, rng=random.Random(self.config.seed))

        async for values in source.iter_column(f"SELECT {col} {ctx.where(f'{col} IS NOT NULL')}"):
            sketch.update_many(values)
            reservoir.update_many(values)

        estimate = int(round(sketch.estimate()))
        inference = self._inferrer.infer(reservoir.items)

        semantic_type = inference.semantic_type
        if (
            semantic_type in (SemanticType.STRING, SemanticType.BOOLEAN)
            and 0 < estimate <= self.config.categorical_threshold
        ):
            semantic_type = SemanticType.CATEGORICAL

        strategy = (
            ProfilingStrategy.EXACT
            if estimate <= self.config.exact_distinct_threshold
            else ProfilingStrategy.APPROXIMATE
        )

        return _SampleResult(
            inference=inference,
            semantic_type=semantic_type,
            cardinality_estimate=estimate,
            strategy=strategy,
            sample=reservoir.items,
        )

    # -- Pass 2 ---------------------------------------------------------------

    async def _pass2_aggregates(
        self,
        source: DataSource,
        ctx: ExecutionContext,
        column: str,
        sampled: _SampleResult,
    ) -> BasicStats:
        col = quote_identifier(column)
        exact = sampled.strategy == ProfilingStrategy.EXACT
        expressions = ["COUNT(*)", f"COUNT({col})"]
        if exact:
            expressions.append(f"COUNT(DISTINCT {col})")

        row = await fetch_aggregate(source, f"SELECT {', '.join(expressions)} {ctx.from_clause}")
        row_count, non_null = int(row[0]), int(row[1])
        distinct = int(row[2]) if exact else min(sampled.cardinality_estimate, non_null)
        null_count = row_count - non_null

        return BasicStats(
            row_count=row_count,
            null_count=null_count,
            null_ratio=null_count / row_count if row_count else 0.0,
            distinct_count=distinct,
            distinct_is_exact=exact,
            distinct_ratio=distinct / non_null if non_null else 0.0,
        )

    # -- Pass 3 ---------------------------------------------------------------

    async def _pass3_distribution(
        self,
        source: DataSource,
        ctx: ExecutionContext,
        column: str,
        sampled: _SampleResult,
        basic: BasicStats,
    ) -> dict[str, Any]:
        semantic_type = sampled.semantic_type
        if semantic_type.is_numeric:
            return {"numeric_distribution": await self._numeric(source, ctx, column)}
        if semantic_type in (SemanticType.CATEGORICAL, SemanticType.BOOLEAN):
            return {"categorical_histogram": await self._categorical(source, ctx, column, basic)}
        if semantic_type == SemanticType.DATE:
            return {"temporal_summary": await self._temporal(source, ctx, column, sampled, basic)}
        # STRING and MIXED
        return {
            "string_stats": await self._string_stats(source, ctx, column),
            "pattern_summary": self.pattern_summary(sampled.sample),
        }

    async def _numeric(
        self, source: DataSource, ctx: ExecutionContext, column: str
    ) -> NumericDistribution:
        value = f"TRY_CAST({quote_identifier(column)} AS DOUBLE)"
        kll = KLLSketch(
            k=self.config.kll_k,
            rng=random.Random(self.config.seed),
            quantiles=self.config.quantiles,
        )
        moments = StdDevState.empty()

        async for batch in source.iter_column(f"SELECT {value} {ctx.where(f'{value} IS NOT NULL')}"):
            finite = [float(v) for v in batch if math.isfinite(v)]
            kll.update_many(finite)
            moments = moments.merge(StdDevState.from_values(finite))

        if kll.n == 0:
            raise AnalyzerError(f"Column {column} has no finite numeric values")

        sketch = kll.to_state()
        q1, q3 = sketch.quantile(0.25), sketch.quantile(0.75)
        iqr = q3 - q1
        lower, upper = q1 - 1.5 * iqr, q3 + 1.5 * iqr

        low, high = await fetch_aggregate(
            source,
            f"SELECT COUNT(*) FILTER (WHERE {value} < {lower!r}), "
            f"COUNT(*) FILTER (WHERE {value} > {upper!r}) {ctx.from_clause}",
        )

        return NumericDistribution(
            min_value=sketch.min_value,
            max_value=sketch.max_value,
            mean=moments.mean,
            stddev=moments.stddev,
            quantiles={quantile_label(q): sketch.quantile(q) for q in self.config.quantiles},
            quantile_rank_error=sketch.normalized_rank_error,
            iqr=iqr,
            lower_fence=lower,
            upper_fence=upper,
            low_outlier_count=int(low),
            high_outlier_count=int(high),
        )

    async def _string_stats(
        self, source: DataSource, ctx: ExecutionContext, column: str
    ) -> StringStats:
        col = quote_identifier(column)
        text = f"CAST({col} AS VARCHAR)"
        min_len, max_len, avg_len, empty = await fetch_aggregate(
            source,
            f"SELECT MIN(LENGTH({text})), MAX(LENGTH({text})), AVG(LENGTH({text})), "
            f"COUNT(*) FILTER (WHERE TRIM({text}) = '') {ctx.where(f'{col} IS NOT NULL')}",
        )
        return StringStats(
            min_length=int(min_len or 0),
            max_length=int(max_len or 0),
            avg_length=float(avg_len or 0.0),
            empty_count=int(empty),
        )

    def pattern_summary(self, sample: Sequence[Any]) -> PatternSummary:
        """Match rate of every library pattern over the non-blank sampled values."""
        texts = [str(v).strip() for v in sample if v is not None and str(v).strip()]
        if not texts:
            return PatternSummary(sample_size=0)

        matches = []
        for pattern in self.patterns.get_patterns():
            hits = sum(1 for text in texts if pattern.matches(text))
            if hits:
                matches.append(
                    PatternMatch(
                        name=pattern.name,
                        match_rate=hits / len(texts),
                        semantic_type=pattern.semantic_type,
                        pii=pattern.pii,
                    )
                )
        matches.sort(key=lambda m: (-m.match_rate, m.name))
        return PatternSummary(sample_size=len(texts), matches=matches)

    async def _categorical(
        self,
        source: DataSource,
        ctx: ExecutionContext,
        column: str,
        basic: BasicStats,
    ) -> CategoricalHistogram:
        col = quote_identifier(column)
        top_n = self.config.top_n
        rows = await source.fetch_all(
            f"SELECT CAST({col} AS VARCHAR) AS value, COUNT(*) AS n "
            f"{ctx.where(f'{col} IS NOT NULL')} "
            f"GROUP BY 1 ORDER BY n DESC, value LIMIT {top_n + 1}"
        )
        total = basic.row_count - basic.null_count
        buckets = [
            CategoricalBucket(value=str(value), count=int(n), percentage=int(n) / total if total else 0.0)
            for value, n in rows[:top_n]
        ]
        return CategoricalHistogram(
            buckets=buckets,
            is_complete=len(rows) <= top_n,
            total_count=total,
            top_n=top_n,
        )

    async def _temporal(
        self,
        source: DataSource,
        ctx: ExecutionContext,
        column: str,
        sampled: _SampleResult,
        basic: BasicStats,
    ) -> TemporalSummary:
        col = quote_identifier(column)
        format_name = sampled.inference.dominant_date_format
        pattern = (
            self.patterns.get_pattern(format_name)
            if format_name and format_name != NATIVE_TEMPORAL
            else None
        )

        if pattern is not None and pattern.strptime_format:
            parsed = f"try_strptime(CAST({col} AS VARCHAR), {_sql_string(pattern.strptime_format)})"
        else:
            parsed = f"TRY_CAST({col} AS TIMESTAMP)"

        lo, hi, parsed_count = await fetch_aggregate(
            source,
            f"SELECT MIN({parsed}), MAX({parsed}), COUNT({parsed}) {ctx.where(f'{col} IS NOT NULL')}",
        )

        voted = sum(sampled.inference.votes.values())
        dominant_votes = sampled.inference.date_formats.get(format_name, 0) if format_name else 0
        non_null = basic.row_count - basic.null_count

        return TemporalSummary(
            min_timestamp=lo,
            max_timestamp=hi,
            span_days=(hi - lo).total_seconds() / 86400.0 if lo is not None and hi is not None else None,
            dominant_format=(pattern.date_format or pattern.name) if pattern else format_name,
            format_consistency=dominant_votes / voted if voted else 0.0,
            parsed_count=int(parsed_count),
            unparseable_count=non_null - int(parsed_count),
        )
