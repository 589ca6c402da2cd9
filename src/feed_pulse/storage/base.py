"""Persistence contracts consumed by the scheduler, sync engine, enrichment and clustering."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Protocol, runtime_checkable

from feed_pulse.models import (
    AIOperation,
    Article,
    ArticleDraft,
    Cluster,
    DailyUsage,
    DeadLetterItem,
    EmbeddingQueueEntry,
    EmbeddingStatus,
    Feed,
    FeedScheduleUpdate,
    FeedSyncLog,
    QueueStatus,
    RecommendedFeed,
    UsageLogEntry,
    Vector,
)


@runtime_checkable
class FeedStore(Protocol):
    """Feed lookups and schedule updates."""

    def get_feed_by_id(self, feed_id: str) -> Feed | None:
        """Return feed by id or ``None``."""
        raise NotImplementedError

    def get_feeds_due_for_sync(self, *, limit: int, now: datetime) -> list[Feed]:
        """Return active feeds whose ``next_sync_at`` is unset or not after ``now``."""
        raise NotImplementedError

    def update_feed_schedule(self, feed_id: str, update: FeedScheduleUpdate) -> None:
        """Apply non-``None`` fields of ``update`` to the feed."""
        raise NotImplementedError

    def list_feeds(self) -> list[Feed]:
        """Return all feeds of the current tenant."""
        raise NotImplementedError

    def get_recommended_feed_by_url(self, url: str) -> RecommendedFeed | None:
        """Return the catalog entry for a URL, if cataloged."""
        raise NotImplementedError

    def record_feed_sync(self, entry: FeedSyncLog) -> int:
        """Append a completed sync record and return its id."""
        raise NotImplementedError

    def list_feed_sync_logs(
        self,
        *,
        feed_id: str | None = None,
        limit: int = 20,
    ) -> list[FeedSyncLog]:
        """Return sync records newest first, optionally for one feed."""
        raise NotImplementedError


@runtime_checkable
class ArticleStore(Protocol):
    """Article persistence used by the sync engine and enrichment."""

    def get_article_by_guid(self, *, feed_id: str, guid: str) -> Article | None:
        """Return the article identified by ``(feed_id, guid)``."""
        raise NotImplementedError

    def create_article(self, *, feed_id: str, draft: ArticleDraft) -> str:
        """Insert a new article and return its id."""
        raise NotImplementedError

    def update_article(self, article_id: str, draft: ArticleDraft) -> None:
        """Overwrite the content fields of an existing article."""
        raise NotImplementedError

    def get_new_article_ids(self, *, feed_id: str, since: datetime) -> list[str]:
        """Return ids of articles of a feed created at or after ``since``."""
        raise NotImplementedError

    def get_articles(self, article_ids: list[str]) -> list[Article]:
        """Return articles for the given ids, skipping unknown ids."""
        raise NotImplementedError

    def update_article_embedding(
        self,
        *,
        article_id: str,
        embedding: Vector | None,
        status: EmbeddingStatus,
        content_hash: str | None = None,
    ) -> None:
        """Persist an embedding vector and status."""
        raise NotImplementedError

    def list_embedded_articles(self, *, since: datetime) -> list[Article]:
        """Return articles with completed embeddings created at or after ``since``."""
        raise NotImplementedError


@runtime_checkable
class EmbeddingQueueStore(Protocol):
    """Embedding work queue."""

    def add_to_embedding_queue(
        self,
        article_ids: list[str],
        *,
        priority: int,
        max_attempts: int = 3,
    ) -> int:
        """Enqueue articles not already queued; return the count enqueued."""
        raise NotImplementedError

    def list_pending_queue_entries(self, *, limit: int) -> list[EmbeddingQueueEntry]:
        """Return pending entries ordered by priority then age."""
        raise NotImplementedError

    def update_queue_entry(
        self,
        entry_id: int,
        *,
        status: QueueStatus,
        attempts: int,
        error: str | None = None,
    ) -> None:
        """Advance one queue entry."""
        raise NotImplementedError

    def remove_queue_entry(self, entry_id: int) -> None:
        """Delete a completed queue entry."""
        raise NotImplementedError

    def get_queue_stats(self) -> dict[str, int]:
        """Count entries per queue status."""
        raise NotImplementedError


@runtime_checkable
class ClusterStore(Protocol):
    """Cluster persistence and article assignment."""

    def supersede_active_clusters(self, *, now: datetime) -> int:
        """Expire all active clusters at ``now`` and clear member assignments."""
        raise NotImplementedError

    def create_cluster(self, cluster: Cluster) -> str:
        """Insert a cluster and return its id."""
        raise NotImplementedError

    def assign_articles_to_cluster(self, *, cluster_id: str, article_ids: list[str]) -> None:
        """Point member articles at the cluster."""
        raise NotImplementedError

    def list_active_clusters(self, *, now: datetime, limit: int) -> list[Cluster]:
        """Return non-expired clusters ordered by relevance descending."""
        raise NotImplementedError

    def expire_clusters(self, *, now: datetime) -> int:
        """Clear assignments of clusters past expiry; return how many were cleared."""
        raise NotImplementedError


@runtime_checkable
class UsageStore(Protocol):
    """Daily counters, usage log and dead-letter records."""

    def get_daily_usage(self, *, tenant_id: str, usage_date: date) -> DailyUsage | None:
        """Return the aggregate row for a tenant and UTC date."""
        raise NotImplementedError

    def increment_daily_usage(  # noqa: PLR0913
        self,
        *,
        tenant_id: str,
        usage_date: date,
        operation: AIOperation,
        provider: str,
        tokens: int,
        cost_usd: float,
        limits: dict[str, int],
    ) -> DailyUsage:
        """Atomically bump the counter of ``operation`` and token/cost totals."""
        raise NotImplementedError

    def list_daily_usage(self, *, tenant_id: str, since: date) -> list[DailyUsage]:
        """Return aggregate rows from ``since`` onward, oldest first."""
        raise NotImplementedError

    def append_usage_log(self, entry: UsageLogEntry) -> None:
        """Append one immutable usage-log entry."""
        raise NotImplementedError

    def add_dead_letter(  # noqa: PLR0913
        self,
        *,
        operation: str,
        provider: str,
        payload: dict[str, Any],
        error: str,
        attempts: int,
        tenant_id: str | None = None,
    ) -> DeadLetterItem:
        """Persist a dead-letter record."""
        raise NotImplementedError

    def list_dead_letters(self, *, limit: int) -> list[DeadLetterItem]:
        """Return dead-letter items, oldest first."""
        raise NotImplementedError

    def remove_dead_letter(self, item_id: int) -> bool:
        """Delete one dead-letter item; return whether it existed."""
        raise NotImplementedError

    def count_dead_letters(self) -> int:
        """Total dead-letter items."""
        raise NotImplementedError


class SyncStorage(FeedStore, ArticleStore, Protocol):
    """Storage surface needed by the sync engine and scheduler."""


class PipelineStorage(FeedStore, ArticleStore, EmbeddingQueueStore, ClusterStore, Protocol):
    """Full storage surface of the ingestion and enrichment pipeline."""
