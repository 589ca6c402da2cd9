"""SQLModel ORM tables for feed, article, enrichment and cluster storage."""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    LargeBinary,
    Text,
    UniqueConstraint,
)
from sqlmodel import Field, SQLModel

from feed_pulse.config import DEFAULT_TENANT_ID


class FeedRow(SQLModel, table=True):
    __tablename__ = "feeds"  # type: ignore[bad-override]
    __table_args__ = (UniqueConstraint("tenant_id", "url", name="uq_feeds_tenant_url"),)

    feed_id: str = Field(primary_key=True)
    tenant_id: str = Field(default=DEFAULT_TENANT_ID, index=True)
    url: str = Field(index=True)
    name: str
    status: str = Field(default="active", index=True)
    sync_priority: str = Field(default="medium", index=True)
    sync_interval_hours: int = 24
    next_sync_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True, index=True),
    )
    last_fetched_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    etag: str | None = None
    last_modified: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class FeedSyncLogRow(SQLModel, table=True):
    __tablename__ = "feed_sync_logs"  # type: ignore[bad-override]
    __table_args__ = (Index("ix_feed_sync_logs_feed_started", "feed_id", "started_at"),)

    log_id: int | None = Field(default=None, primary_key=True)
    feed_id: str = Field(
        sa_column=Column(ForeignKey("feeds.feed_id", ondelete="CASCADE"), nullable=False),
    )
    status: str = Field(index=True)
    started_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    completed_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    duration_ms: int = 0
    retry_count: int = 0
    http_status_code: int | None = None
    error: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    error_code: str | None = None
    articles_found: int = 0
    articles_new: int = 0
    articles_updated: int = 0
    articles_skipped: int = 0
    feed_size_bytes: int | None = None
    etag_received: str | None = None
    last_modified_received: str | None = None


class RecommendedFeedRow(SQLModel, table=True):
    __tablename__ = "recommended_feeds"  # type: ignore[bad-override]

    url: str = Field(primary_key=True)
    name: str
    default_priority: str = Field(default="medium")
    category: str | None = None


class ArticleRow(SQLModel, table=True):
    __tablename__ = "articles"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("feed_id", "guid", name="uq_articles_feed_guid"),
        Index("ix_articles_feed_created", "feed_id", "created_at"),
    )

    article_id: str = Field(primary_key=True)
    feed_id: str = Field(
        sa_column=Column(ForeignKey("feeds.feed_id", ondelete="CASCADE"), nullable=False),
    )
    guid: str
    title: str
    url: str
    content: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    excerpt: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    author: str | None = None
    published_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    image_url: str | None = None
    embedding_status: str = Field(default="pending", index=True)
    embedding_dim: int | None = None
    embedding_blob: bytes | None = Field(
        default=None,
        sa_column=Column(LargeBinary, nullable=True),
    )
    content_hash: str | None = None
    cluster_id: str | None = Field(default=None, index=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class EmbeddingQueueRow(SQLModel, table=True):
    __tablename__ = "embedding_queue"  # type: ignore[bad-override]
    __table_args__ = (Index("ix_embedding_queue_status_priority", "status", "priority"),)

    entry_id: int | None = Field(default=None, primary_key=True)
    article_id: str = Field(
        sa_column=Column(
            ForeignKey("articles.article_id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
    )
    priority: int = 0
    attempts: int = 0
    max_attempts: int = 3
    status: str = "pending"
    error: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class UsageLogRow(SQLModel, table=True):
    __tablename__ = "ai_usage_logs"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    tenant_id: str = Field(index=True)
    operation: str = Field(index=True)
    provider: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0
    success: bool = True
    error: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    metadata_json: str = Field(default="{}", sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class DailyUsageRow(SQLModel, table=True):
    __tablename__ = "ai_usage_daily"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("tenant_id", "usage_date", name="uq_ai_usage_daily_tenant_date"),
    )

    id: int | None = Field(default=None, primary_key=True)
    tenant_id: str = Field(index=True)
    usage_date: date = Field(sa_column=Column(Date, nullable=False))
    embeddings_count: int = 0
    clusterings_count: int = 0
    searches_count: int = 0
    summaries_count: int = 0
    tokens_by_provider_json: str = Field(default="{}", sa_column=Column(Text, nullable=False))
    total_cost_usd: float = 0.0
    limits_json: str = Field(default="{}", sa_column=Column(Text, nullable=False))


class DeadLetterRow(SQLModel, table=True):
    __tablename__ = "dead_letter_items"  # type: ignore[bad-override]

    item_id: int | None = Field(default=None, primary_key=True)
    tenant_id: str | None = Field(default=None, index=True)
    operation: str = Field(index=True)
    provider: str
    payload_json: str = Field(sa_column=Column(Text, nullable=False))
    error: str = Field(sa_column=Column(Text, nullable=False))
    attempts: int = 0
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ClusterRow(SQLModel, table=True):
    __tablename__ = "clusters"  # type: ignore[bad-override]

    cluster_id: str = Field(primary_key=True)
    tenant_id: str = Field(index=True)
    topic: str
    summary: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    article_ids_json: str = Field(sa_column=Column(Text, nullable=False))
    source_feed_ids_json: str = Field(sa_column=Column(Text, nullable=False))
    article_count: int = 0
    source_count: int = 0
    avg_similarity: float = 0.0
    relevance_score: float = 0.0
    timeframe_start: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    timeframe_end: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    expires_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )
