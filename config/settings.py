"""
Centralised configuration for the Brand Visibility Rollup Engine.

All secrets are loaded from environment variables.  Defaults are safe for local
development with a dockerised PostgreSQL instance.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class DatabaseConfig:
    host: str = os.getenv("POSTGRES_HOST", "localhost")
    port: int = int(os.getenv("POSTGRES_PORT", "5432"))
    dbname: str = os.getenv("POSTGRES_DB", "brand_visibility")
    user: str = os.getenv("POSTGRES_USER", "bv_reader")
    password: str = os.getenv("POSTGRES_PASSWORD", "")

    # Server-side cap on any single read issued by the fetch layer
    statement_timeout_ms: int = int(os.getenv("POSTGRES_STATEMENT_TIMEOUT_MS", "20000"))

    @property
    def dsn(self) -> str:
        return (
            f"postgresql://{self.user}:{self.password}"
            f"@{self.host}:{self.port}/{self.dbname}"
        )


# ---------------------------------------------------------------------------
# Ingestion: the known scale of every stored numeric column
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class IngestionConfig:
    share_scale: str = os.getenv("SHARE_SCALE", "percent")            # fraction | percent
    visibility_scale: str = os.getenv("VISIBILITY_SCALE", "fraction")  # fraction | percent
    sentiment_scale: str = os.getenv("SENTIMENT_SCALE", "bipolar")     # bipolar | percent


# ---------------------------------------------------------------------------
# Rollup behaviour
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class RollupConfig:
    top_n: int = int(os.getenv("ROLLUP_TOP_N", "6"))
    trend_dead_band: float = float(os.getenv("ROLLUP_TREND_DEAD_BAND", "1.0"))
    other_epsilon: float = float(os.getenv("ROLLUP_OTHER_EPSILON", "1e-6"))
    lookback_days: int = int(os.getenv("ROLLUP_LOOKBACK_DAYS", "30"))
    neutral_sentiment: float = float(os.getenv("ROLLUP_NEUTRAL_SENTIMENT", "50"))
    top_sources_per_topic: int = int(os.getenv("ROLLUP_TOP_SOURCES", "3"))
    top_topics_per_competitor: int = int(os.getenv("ROLLUP_TOP_TOPICS", "5"))

    # Distribution colours, assigned by output position
    palette: List[str] = field(default_factory=lambda: [
        "#6366f1",
        "#0ea5e9",
        "#22d3ee",
        "#f97316",
        "#a855f7",
        "#10b981",
        "#facc15",
    ])


# ---------------------------------------------------------------------------
# Fetch boundary
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class FetchConfig:
    max_workers: int = int(os.getenv("FETCH_MAX_WORKERS", "4"))
    timeout_seconds: float = float(os.getenv("FETCH_TIMEOUT", "30"))


# ---------------------------------------------------------------------------
# Aggregate settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class Settings:
    db: DatabaseConfig = field(default_factory=DatabaseConfig)
    ingestion: IngestionConfig = field(default_factory=IngestionConfig)
    rollup: RollupConfig = field(default_factory=RollupConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)

    log_level: str = os.getenv("LOG_LEVEL", "INFO")


def get_settings() -> Settings:
    """Return a singleton-like settings instance."""
    return Settings()
