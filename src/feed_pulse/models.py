"""Domain models shared by the scheduler, sync engine, enrichment and clustering."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any

from feed_pulse.config import DEFAULT_TENANT_ID

Vector = list[float]


class FeedStatus(str, Enum):
    """Lifecycle states for subscribed feeds."""

    ACTIVE = "active"
    PAUSED = "paused"
    ERROR = "error"


class SyncPriority(str, Enum):
    """Sync priority tiers; each tier owns a fixed sync interval."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def interval_hours(self) -> int:
        return _PRIORITY_INTERVAL_HOURS[self]


_PRIORITY_INTERVAL_HOURS = {
    SyncPriority.HIGH: 1,
    SyncPriority.MEDIUM: 24,
    SyncPriority.LOW: 168,
}


class EmbeddingStatus(str, Enum):
    """Embedding lifecycle of an article."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class QueueStatus(str, Enum):
    """Embedding queue entry states."""

    PENDING = "pending"
    PROCESSING = "processing"
    FAILED = "failed"
    DEAD_LETTER = "dead_letter"


class AIOperation(str, Enum):
    """Provider-backed operation kinds with daily quotas."""

    EMBEDDING = "embedding"
    CLUSTERING = "clustering"
    SEARCH = "search"
    SUMMARY = "summary"


class SyncLogStatus(str, Enum):
    """Outcome recorded for one feed sync."""

    SUCCESS = "success"
    ERROR = "error"


class UpsertAction(str, Enum):
    """Operation result for article upsert."""

    INSERTED = "inserted"
    UPDATED = "updated"
    SKIPPED = "skipped"


@dataclass(slots=True)
class Feed:
    """Subscribed feed with schedule state and HTTP caching tokens."""

    feed_id: str
    url: str
    name: str
    status: FeedStatus = FeedStatus.ACTIVE
    sync_priority: SyncPriority = SyncPriority.MEDIUM
    sync_interval_hours: int = 24
    next_sync_at: datetime | None = None
    last_fetched_at: datetime | None = None
    etag: str | None = None
    last_modified: str | None = None
    tenant_id: str = DEFAULT_TENANT_ID


@dataclass(slots=True)
class FeedScheduleUpdate:
    """Partial update of feed schedule fields; ``None`` leaves a field untouched."""

    sync_priority: SyncPriority | None = None
    sync_interval_hours: int | None = None
    next_sync_at: datetime | None = None
    last_fetched_at: datetime | None = None
    etag: str | None = None
    last_modified: str | None = None
    status: FeedStatus | None = None


@dataclass(slots=True)
class FeedSyncLog:
    """Persisted record of one sync attempt of a subscribed feed."""

    feed_id: str
    status: SyncLogStatus
    started_at: datetime
    completed_at: datetime
    duration_ms: int
    retry_count: int = 0
    http_status_code: int | None = None
    error: str | None = None
    error_code: str | None = None
    articles_found: int = 0
    articles_new: int = 0
    articles_updated: int = 0
    articles_skipped: int = 0
    feed_size_bytes: int | None = None
    etag_received: str | None = None
    last_modified_received: str | None = None
    log_id: int | None = None


@dataclass(slots=True)
class RecommendedFeed:
    """Catalog entry for a well-known source."""

    url: str
    name: str
    default_priority: SyncPriority = SyncPriority.MEDIUM
    category: str | None = None


@dataclass(slots=True)
class ArticleDraft:
    """Article fields extracted from one feed item, ready for persistence."""

    guid: str
    title: str
    url: str
    content: str | None = None
    excerpt: str | None = None
    author: str | None = None
    published_at: datetime | None = None
    image_url: str | None = None


@dataclass(slots=True)
class Article:
    """Persisted article with enrichment and cluster state."""

    article_id: str
    feed_id: str
    guid: str
    title: str
    url: str
    content: str | None = None
    excerpt: str | None = None
    author: str | None = None
    published_at: datetime | None = None
    image_url: str | None = None
    created_at: datetime | None = None
    embedding: Vector | None = None
    embedding_status: EmbeddingStatus = EmbeddingStatus.PENDING
    content_hash: str | None = None
    cluster_id: str | None = None


@dataclass(slots=True)
class EmbeddingQueueEntry:
    """Pending embedding work for one article."""

    entry_id: int
    article_id: str
    priority: int = 0
    attempts: int = 0
    max_attempts: int = 3
    status: QueueStatus = QueueStatus.PENDING
    error: str | None = None
    created_at: datetime | None = None


@dataclass(slots=True)
class DeadLetterItem:
    """Enrichment work that exhausted its retry budget."""

    item_id: int
    operation: str
    provider: str
    payload: dict[str, Any]
    error: str
    attempts: int
    created_at: datetime
    tenant_id: str | None = None


@dataclass(slots=True)
class UsageRecord:
    """One logical provider call outcome to be recorded against a tenant."""

    operation: AIOperation
    provider: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    success: bool = True
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class UsageLogEntry:
    """Immutable usage-log row."""

    tenant_id: str
    operation: AIOperation
    provider: str
    model: str
    input_tokens: int
    output_tokens: int
    cost_usd: float
    success: bool
    created_at: datetime
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class DailyUsage:
    """Per-tenant, per-UTC-date aggregate counters."""

    tenant_id: str
    usage_date: date
    embeddings_count: int = 0
    clusterings_count: int = 0
    searches_count: int = 0
    summaries_count: int = 0
    tokens_by_provider: dict[str, int] = field(default_factory=dict)
    total_cost_usd: float = 0.0
    limits: dict[str, int] = field(default_factory=dict)

    def count_for(self, operation: AIOperation) -> int:
        return int(getattr(self, _COUNTER_FIELDS[operation]))

    def increment(self, operation: AIOperation) -> None:
        name = _COUNTER_FIELDS[operation]
        setattr(self, name, getattr(self, name) + 1)


_COUNTER_FIELDS = {
    AIOperation.EMBEDDING: "embeddings_count",
    AIOperation.CLUSTERING: "clusterings_count",
    AIOperation.SEARCH: "searches_count",
    AIOperation.SUMMARY: "summaries_count",
}


@dataclass(slots=True)
class Cluster:
    """Topic cluster of related articles from at least two feeds."""

    cluster_id: str
    tenant_id: str
    topic: str
    summary: str | None
    article_ids: list[str]
    source_feed_ids: list[str]
    avg_similarity: float
    relevance_score: float
    timeframe_start: datetime | None
    timeframe_end: datetime | None
    created_at: datetime
    expires_at: datetime

    @property
    def article_count(self) -> int:
        return len(self.article_ids)

    @property
    def source_count(self) -> int:
        return len(self.source_feed_ids)
