"""Runtime configuration for scheduling, sync, enrichment and clustering."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_TENANT_ID = "default_tenant"


@dataclass(slots=True)
class SchedulerSettings:
    """Tier tickers, worker pool and failed-feed retry cadence."""

    high_tick_hours: float = 1.0
    medium_tick_hours: float = 6.0
    low_tick_hours: float = 24.0
    high_stagger_minutes: float = 0.0
    medium_stagger_minutes: float = 5.0
    low_stagger_minutes: float = 10.0
    workers: int = 2
    due_feeds_limit: int = 100
    retry_failed_after_hours: float = 2.0
    retry_failed_first_delay_minutes: float = 30.0
    health_check_interval_minutes: float = 15.0
    health_check_first_delay_minutes: float = 2.0


@dataclass(slots=True)
class SyncSettings:
    """Per-feed sync options and batch driver knobs."""

    max_articles: int = 100
    batch_size: int = 3
    max_concurrent: int = 2
    delay_between_batches_seconds: float = 5.0
    max_retries: int = 3
    retry_delay_seconds: float = 1.0
    timeout_seconds: float = 30.0
    validate_high_priority: bool = True


@dataclass(slots=True)
class ThrottleSettings:
    """Shared request admission limits for feed fetches."""

    requests_per_minute: int = 30
    burst_limit: int = 10
    max_backoff_seconds: float = 30.0


@dataclass(slots=True)
class UsageSettings:
    """Daily per-tenant quotas for provider-backed operations."""

    embeddings_per_day: int = 500
    clusterings_per_day: int = 10
    searches_per_day: int = 100
    summaries_per_day: int = 50


@dataclass(slots=True)
class EmbeddingSettings:
    """Embedding provider and queue processing settings."""

    provider: str = "openai"
    model_name: str = "text-embedding-3-small"
    api_key: str | None = None
    base_url: str = "https://api.openai.com/v1"
    timeout_seconds: float = 30.0
    batch_size: int = 50
    max_attempts: int = 3


@dataclass(slots=True)
class ClusteringSettings:
    """Similarity grouping settings."""

    threshold: float = 0.75
    lookback_hours: int = 48
    expiration_hours: int = 48
    keyword_overlap_min: int = 0


@dataclass(slots=True)
class TenantSettings:
    """Tenant context the CLI and scheduler act on behalf of."""

    tenant_id: str = DEFAULT_TENANT_ID


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".feed_pulse.db")
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)
    sync: SyncSettings = field(default_factory=SyncSettings)
    throttle: ThrottleSettings = field(default_factory=ThrottleSettings)
    usage: UsageSettings = field(default_factory=UsageSettings)
    embedding: EmbeddingSettings = field(default_factory=EmbeddingSettings)
    clustering: ClusteringSettings = field(default_factory=ClusteringSettings)
    tenant: TenantSettings = field(default_factory=TenantSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("FEED_PULSE_DB_PATH", ".feed_pulse.db")),
            scheduler=SchedulerSettings(
                high_tick_hours=_env_float("FEED_PULSE_SCHEDULER_HIGH_TICK_HOURS", 1.0),
                medium_tick_hours=_env_float("FEED_PULSE_SCHEDULER_MEDIUM_TICK_HOURS", 6.0),
                low_tick_hours=_env_float("FEED_PULSE_SCHEDULER_LOW_TICK_HOURS", 24.0),
                workers=int(os.getenv("FEED_PULSE_SCHEDULER_WORKERS", "2")),
                due_feeds_limit=int(os.getenv("FEED_PULSE_SCHEDULER_DUE_FEEDS_LIMIT", "100")),
                retry_failed_after_hours=_env_float(
                    "FEED_PULSE_SCHEDULER_RETRY_FAILED_AFTER_HOURS",
                    2.0,
                ),
            ),
            sync=SyncSettings(
                max_articles=int(os.getenv("FEED_PULSE_SYNC_MAX_ARTICLES", "100")),
                batch_size=int(os.getenv("FEED_PULSE_SYNC_BATCH_SIZE", "3")),
                max_concurrent=int(os.getenv("FEED_PULSE_SYNC_MAX_CONCURRENT", "2")),
                delay_between_batches_seconds=_env_float(
                    "FEED_PULSE_SYNC_DELAY_BETWEEN_BATCHES_SECONDS",
                    5.0,
                ),
                max_retries=int(os.getenv("FEED_PULSE_SYNC_MAX_RETRIES", "3")),
                retry_delay_seconds=_env_float("FEED_PULSE_SYNC_RETRY_DELAY_SECONDS", 1.0),
                timeout_seconds=_env_float("FEED_PULSE_SYNC_TIMEOUT_SECONDS", 30.0),
                validate_high_priority=_env_bool("FEED_PULSE_SYNC_VALIDATE_HIGH_PRIORITY", True),
            ),
            throttle=ThrottleSettings(
                requests_per_minute=int(
                    os.getenv("FEED_PULSE_THROTTLE_REQUESTS_PER_MINUTE", "30"),
                ),
                burst_limit=int(os.getenv("FEED_PULSE_THROTTLE_BURST_LIMIT", "10")),
                max_backoff_seconds=_env_float("FEED_PULSE_THROTTLE_MAX_BACKOFF_SECONDS", 30.0),
            ),
            usage=UsageSettings(
                embeddings_per_day=int(os.getenv("FEED_PULSE_LIMIT_EMBEDDINGS", "500")),
                clusterings_per_day=int(os.getenv("FEED_PULSE_LIMIT_CLUSTERINGS", "10")),
                searches_per_day=int(os.getenv("FEED_PULSE_LIMIT_SEARCHES", "100")),
                summaries_per_day=int(os.getenv("FEED_PULSE_LIMIT_SUMMARIES", "50")),
            ),
            embedding=EmbeddingSettings(
                provider=os.getenv("FEED_PULSE_EMBEDDING_PROVIDER", "openai").strip().lower(),
                model_name=os.getenv("FEED_PULSE_EMBEDDING_MODEL", "text-embedding-3-small"),
                api_key=_nullable_env("FEED_PULSE_EMBEDDING_API_KEY")
                or _nullable_env("OPENAI_API_KEY"),
                base_url=os.getenv("FEED_PULSE_EMBEDDING_BASE_URL", "https://api.openai.com/v1"),
                timeout_seconds=_env_float("FEED_PULSE_EMBEDDING_TIMEOUT_SECONDS", 30.0),
                batch_size=int(os.getenv("FEED_PULSE_EMBEDDING_BATCH_SIZE", "50")),
                max_attempts=int(os.getenv("FEED_PULSE_EMBEDDING_MAX_ATTEMPTS", "3")),
            ),
            clustering=ClusteringSettings(
                threshold=_env_float("FEED_PULSE_CLUSTER_THRESHOLD", 0.75),
                lookback_hours=int(os.getenv("FEED_PULSE_CLUSTER_LOOKBACK_HOURS", "48")),
                expiration_hours=int(os.getenv("FEED_PULSE_CLUSTER_EXPIRATION_HOURS", "48")),
                keyword_overlap_min=int(os.getenv("FEED_PULSE_CLUSTER_KEYWORD_OVERLAP_MIN", "0")),
            ),
            tenant=TenantSettings(
                tenant_id=os.getenv("FEED_PULSE_TENANT_ID", DEFAULT_TENANT_ID),
            ),
        )

    def validate(self) -> None:
        """Fail fast on settings that would make the pipeline misbehave."""

        if self.sync.batch_size <= 0:
            raise ValueError("FEED_PULSE_SYNC_BATCH_SIZE must be > 0.")
        if self.sync.max_concurrent <= 0:
            raise ValueError("FEED_PULSE_SYNC_MAX_CONCURRENT must be > 0.")
        if self.sync.max_retries <= 0:
            raise ValueError("FEED_PULSE_SYNC_MAX_RETRIES must be > 0.")
        if self.sync.delay_between_batches_seconds < 0:
            raise ValueError("FEED_PULSE_SYNC_DELAY_BETWEEN_BATCHES_SECONDS must be >= 0.")
        if self.sync.timeout_seconds <= 0:
            raise ValueError("FEED_PULSE_SYNC_TIMEOUT_SECONDS must be > 0.")
        if self.scheduler.workers <= 0:
            raise ValueError("FEED_PULSE_SCHEDULER_WORKERS must be > 0.")
        if self.throttle.requests_per_minute <= 0 or self.throttle.burst_limit <= 0:
            raise ValueError(
                "FEED_PULSE_THROTTLE_REQUESTS_PER_MINUTE and "
                "FEED_PULSE_THROTTLE_BURST_LIMIT must be > 0.",
            )
        for name, value in (
            ("FEED_PULSE_LIMIT_EMBEDDINGS", self.usage.embeddings_per_day),
            ("FEED_PULSE_LIMIT_CLUSTERINGS", self.usage.clusterings_per_day),
            ("FEED_PULSE_LIMIT_SEARCHES", self.usage.searches_per_day),
            ("FEED_PULSE_LIMIT_SUMMARIES", self.usage.summaries_per_day),
        ):
            if value < 0:
                raise ValueError(f"{name} must be >= 0.")
        if not 0.0 < self.clustering.threshold <= 1.0:
            raise ValueError("FEED_PULSE_CLUSTER_THRESHOLD must be in (0, 1].")
        if self.clustering.keyword_overlap_min < 0:
            raise ValueError("FEED_PULSE_CLUSTER_KEYWORD_OVERLAP_MIN must be >= 0.")
        if self.embedding.provider not in {"openai", "sentence-transformers", "hashing"}:
            raise ValueError(
                "FEED_PULSE_EMBEDDING_PROVIDER must be one of: "
                "openai, sentence-transformers, hashing.",
            )

    def daily_limits(self) -> dict[str, int]:
        """Daily quota per operation kind."""

        return {
            "embedding": self.usage.embeddings_per_day,
            "clustering": self.usage.clusterings_per_day,
            "search": self.usage.searches_per_day,
            "summary": self.usage.summaries_per_day,
        }


def _nullable_env(name: str) -> str | None:
    value = os.getenv(name)
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as error:
        raise ValueError(f"Invalid numeric value for {name}: {value!r}") from error


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
