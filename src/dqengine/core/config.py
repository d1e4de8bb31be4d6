"""Configuration management.

Uses pydantic-settings for type-safe configuration from environment variables.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _find_config_dir() -> Path:
    """Find the config directory by walking up from the package location.

    Looks for a 'config/' directory containing the pattern library.
    Falls back to relative Path("config") if not found.
    """
    # Start from this file: src/dqengine/core/config.py
    # Project root is 4 levels up: config.py -> core/ -> dqengine/ -> src/ -> root/
    package_dir = Path(__file__).resolve().parent.parent.parent.parent
    candidate = package_dir / "config"
    if candidate.is_dir():
        return candidate

    # Fallback: relative path (works when CWD is project root)
    return Path("config")


class Settings(BaseSettings):
    """Application settings.

    All settings can be overridden via environment variables.
    Prefix: DQENGINE_
    """

    model_config = SettingsConfigDict(
        env_prefix="DQENGINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Configuration paths
    config_path: Path = Field(
        default_factory=_find_config_dir,
        description="Path to configuration files (pattern library)",
    )

    # Data access
    scan_batch_size: int = Field(
        default=10_000,
        description="Rows fetched per batch when streaming a column into a sketch",
    )

    # Profiling
    profile_sample_size: int = Field(
        default=10_000,
        description="Reservoir sample size used for type inference and pattern detection",
    )
    profile_exact_distinct_threshold: int = Field(
        default=100_000,
        description="Estimated cardinality up to which distinct counts are computed exactly",
    )
    profile_categorical_threshold: int = Field(
        default=100,
        description="Maximum distinct count for a string column to be treated as categorical",
    )
    profile_top_n: int = Field(
        default=20,
        description="Number of buckets kept in a categorical histogram",
    )
    profile_seed: int = Field(
        default=42,
        description="Seed for sampling and sketch compaction during profiling",
    )

    # Type inference
    type_inference_min_confidence: float = Field(
        default=0.9,
        description="Minimum share of the sample a type must reach to be accepted",
    )

    # Sketches
    hll_precision: int = Field(default=12, description="HyperLogLog precision (m = 2^p)")
    kll_k: int = Field(default=200, description="KLL sketch size parameter")
    frequency_max_values: int = Field(
        default=10_000,
        description="Distinct values a frequency analyzer keeps per partition before truncating",
    )

    # Incremental
    state_database_url: str = Field(
        default="sqlite+aiosqlite:///./dqengine_state.db",
        description="SQLAlchemy URL used by the SQL state store",
    )
    state_directory: Path = Field(
        default=Path(".dqengine/state"),
        description="Root directory used by the file system state store",
    )
    incremental_max_concurrency: int = Field(
        default=4,
        description="Maximum number of partitions analyzed concurrently",
    )

    # Anomaly detection
    anomaly_min_confidence: float = Field(
        default=0.5,
        description="Findings below this confidence are discarded",
    )

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console")  # 'json' or 'console'


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
