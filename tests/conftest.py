"""Shared test fixtures."""

from __future__ import annotations

import itertools
import threading
from collections.abc import Callable
from dataclasses import fields, replace
from datetime import UTC, datetime
from xml.sax.saxutils import escape

import pytest

from feed_pulse.models import (
    Article,
    ArticleDraft,
    Cluster,
    EmbeddingQueueEntry,
    EmbeddingStatus,
    Feed,
    FeedScheduleUpdate,
    FeedStatus,
    FeedSyncLog,
    QueueStatus,
    RecommendedFeed,
    SyncPriority,
    Vector,
)
from feed_pulse.storage.memory import InMemoryUsageStore

FIXED_NOW = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)


class InMemoryPipelineStore(InMemoryUsageStore):
    """Feeds, articles, embedding queue and clusters kept in dictionaries."""

    def __init__(self, *, now: Callable[[], datetime] = lambda: FIXED_NOW) -> None:
        super().__init__()
        self.now = now
        self.feeds: dict[str, Feed] = {}
        self.catalog: dict[str, RecommendedFeed] = {}
        self.articles: dict[str, Article] = {}
        self.queue: dict[int, EmbeddingQueueEntry] = {}
        self.clusters: dict[str, Cluster] = {}
        self.schedule_updates: list[tuple[str, FeedScheduleUpdate]] = []
        self.sync_logs: list[FeedSyncLog] = []
        self.writes: list[str] = []
        self._records = threading.RLock()
        self._ids = itertools.count(1)

    # Feeds

    def add_feed(  # noqa: PLR0913
        self,
        *,
        url: str,
        name: str = "Example",
        feed_id: str | None = None,
        priority: SyncPriority = SyncPriority.MEDIUM,
        status: FeedStatus = FeedStatus.ACTIVE,
        next_sync_at: datetime | None = None,
        last_fetched_at: datetime | None = None,
        etag: str | None = None,
        last_modified: str | None = None,
    ) -> Feed:
        with self._records:
            feed = Feed(
                feed_id=feed_id or f"feed-{next(self._ids)}",
                url=url,
                name=name,
                status=status,
                sync_priority=priority,
                sync_interval_hours=priority.interval_hours,
                next_sync_at=next_sync_at,
                last_fetched_at=last_fetched_at,
                etag=etag,
                last_modified=last_modified,
            )
            self.feeds[feed.feed_id] = feed
            return replace(feed)

    def get_feed_by_id(self, feed_id: str) -> Feed | None:
        with self._records:
            feed = self.feeds.get(feed_id)
            return replace(feed) if feed is not None else None

    def get_feeds_due_for_sync(self, *, limit: int, now: datetime) -> list[Feed]:
        with self._records:
            due = [
                replace(feed)
                for feed in self.feeds.values()
                if feed.status == FeedStatus.ACTIVE
                and (feed.next_sync_at is None or feed.next_sync_at <= now)
            ]
        due.sort(key=lambda feed: (feed.next_sync_at is not None, feed.next_sync_at or now))
        return due[:limit]

    def update_feed_schedule(self, feed_id: str, update: FeedScheduleUpdate) -> None:
        with self._records:
            self.writes.append("update_feed_schedule")
            self.schedule_updates.append((feed_id, update))
            feed = self.feeds.get(feed_id)
            if feed is None:
                return
            for item in fields(update):
                value = getattr(update, item.name)
                if value is not None:
                    setattr(feed, item.name, value)

    def list_feeds(self) -> list[Feed]:
        with self._records:
            return [replace(feed) for feed in self.feeds.values()]

    def get_recommended_feed_by_url(self, url: str) -> RecommendedFeed | None:
        return self.catalog.get(url)

    def record_feed_sync(self, entry: FeedSyncLog) -> int:
        with self._records:
            self.writes.append("record_feed_sync")
            entry = replace(entry, log_id=len(self.sync_logs) + 1)
            self.sync_logs.append(entry)
            return entry.log_id

    def list_feed_sync_logs(
        self,
        *,
        feed_id: str | None = None,
        limit: int = 20,
    ) -> list[FeedSyncLog]:
        with self._records:
            logs = [log for log in reversed(self.sync_logs) if feed_id in (None, log.feed_id)]
        return logs[:limit]

    # Articles

    def put_article(self, article: Article) -> Article:
        with self._records:
            self.articles[article.article_id] = article
        return article

    def get_article_by_guid(self, *, feed_id: str, guid: str) -> Article | None:
        with self._records:
            for article in self.articles.values():
                if article.feed_id == feed_id and article.guid == guid:
                    return replace(article)
        return None

    def create_article(self, *, feed_id: str, draft: ArticleDraft) -> str:
        with self._records:
            self.writes.append("create_article")
            article_id = f"article-{next(self._ids)}"
            self.articles[article_id] = Article(
                article_id=article_id,
                feed_id=feed_id,
                guid=draft.guid,
                title=draft.title,
                url=draft.url,
                content=draft.content,
                excerpt=draft.excerpt,
                author=draft.author,
                published_at=draft.published_at,
                image_url=draft.image_url,
                created_at=self.now(),
            )
            return article_id

    def update_article(self, article_id: str, draft: ArticleDraft) -> None:
        with self._records:
            self.writes.append("update_article")
            article = self.articles.get(article_id)
            if article is None:
                raise LookupError(article_id)
            for item in fields(draft):
                setattr(article, item.name, getattr(draft, item.name))

    def get_new_article_ids(self, *, feed_id: str, since: datetime) -> list[str]:
        with self._records:
            return [
                article.article_id
                for article in self.articles.values()
                if article.feed_id == feed_id
                and article.created_at is not None
                and article.created_at >= since
            ]

    def get_articles(self, article_ids: list[str]) -> list[Article]:
        with self._records:
            return [
                replace(self.articles[article_id])
                for article_id in article_ids
                if article_id in self.articles
            ]

    def update_article_embedding(
        self,
        *,
        article_id: str,
        embedding: Vector | None,
        status: EmbeddingStatus,
        content_hash: str | None = None,
    ) -> None:
        with self._records:
            article = self.articles[article_id]
            article.embedding_status = status
            if embedding is not None or status != EmbeddingStatus.COMPLETED:
                article.embedding = embedding
            if content_hash is not None:
                article.content_hash = content_hash

    def list_embedded_articles(self, *, since: datetime) -> list[Article]:
        with self._records:
            embedded = [
                replace(article)
                for article in self.articles.values()
                if article.embedding_status == EmbeddingStatus.COMPLETED
                and article.embedding is not None
                and (article.created_at is None or article.created_at >= since)
            ]
        return sorted(embedded, key=lambda article: article.created_at or since, reverse=True)

    # Embedding queue

    def add_to_embedding_queue(
        self,
        article_ids: list[str],
        *,
        priority: int,
        max_attempts: int = 3,
    ) -> int:
        added = 0
        with self._records:
            queued = {entry.article_id for entry in self.queue.values()}
            for article_id in article_ids:
                if article_id in queued:
                    continue
                entry_id = next(self._ids)
                self.queue[entry_id] = EmbeddingQueueEntry(
                    entry_id=entry_id,
                    article_id=article_id,
                    priority=priority,
                    max_attempts=max_attempts,
                    created_at=self.now(),
                )
                queued.add(article_id)
                added += 1
        return added

    def list_pending_queue_entries(self, *, limit: int) -> list[EmbeddingQueueEntry]:
        with self._records:
            pending = [
                replace(entry)
                for entry in self.queue.values()
                if entry.status == QueueStatus.PENDING
            ]
        pending.sort(key=lambda entry: (entry.priority, entry.entry_id))
        return pending[:limit]

    def update_queue_entry(
        self,
        entry_id: int,
        *,
        status: QueueStatus,
        attempts: int,
        error: str | None = None,
    ) -> None:
        with self._records:
            entry = self.queue.get(entry_id)
            if entry is None:
                return
            entry.status = status
            entry.attempts = attempts
            entry.error = error

    def remove_queue_entry(self, entry_id: int) -> None:
        with self._records:
            self.queue.pop(entry_id, None)

    def get_queue_stats(self) -> dict[str, int]:
        stats = {status.value: 0 for status in QueueStatus}
        with self._records:
            for entry in self.queue.values():
                stats[entry.status.value] += 1
        return stats

    # Clusters

    def supersede_active_clusters(self, *, now: datetime) -> int:
        with self._records:
            active = [cluster for cluster in self.clusters.values() if cluster.expires_at > now]
            for cluster in active:
                cluster.expires_at = now
                self._clear_assignments(cluster.cluster_id)
            return len(active)

    def create_cluster(self, cluster: Cluster) -> str:
        with self._records:
            self.clusters[cluster.cluster_id] = cluster
        return cluster.cluster_id

    def assign_articles_to_cluster(self, *, cluster_id: str, article_ids: list[str]) -> None:
        with self._records:
            for article_id in article_ids:
                if article_id in self.articles:
                    self.articles[article_id].cluster_id = cluster_id

    def list_active_clusters(self, *, now: datetime, limit: int) -> list[Cluster]:
        with self._records:
            active = [cluster for cluster in self.clusters.values() if cluster.expires_at > now]
        active.sort(key=lambda cluster: (-cluster.relevance_score, -cluster.created_at.timestamp()))
        return active[:limit]

    def expire_clusters(self, *, now: datetime) -> int:
        cleared = 0
        with self._records:
            for cluster in self.clusters.values():
                if cluster.expires_at <= now and self._clear_assignments(cluster.cluster_id):
                    cleared += 1
        return cleared

    def _clear_assignments(self, cluster_id: str) -> int:
        members = [
            article for article in self.articles.values() if article.cluster_id == cluster_id
        ]
        for article in members:
            article.cluster_id = None
        return len(members)


def build_rss(
    items: list[dict[str, str]],
    *,
    title: str = "Example Feed",
    description: str = "Example feed used in tests",
    link: str = "https://example.com/",
) -> bytes:
    """RSS 2.0 document with one ``<item>`` per mapping of element name to text."""

    rendered = "".join(
        "<item>"
        + "".join(f"<{name}>{escape(value)}</{name}>" for name, value in item.items())
        + "</item>"
        for item in items
    )
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<rss version="2.0"><channel>'
        f"<title>{escape(title)}</title>"
        f"<description>{escape(description)}</description>"
        f"<link>{escape(link)}</link>"
        f"{rendered}"
        "</channel></rss>"
    ).encode()


def news_item(index: int, **overrides: str) -> dict[str, str]:
    item = {
        "title": f"Story number {index}",
        "link": f"https://example.com/story-{index}",
        "guid": f"story-{index}",
        "description": f"<p>Body of story {index} with enough text to keep.</p>",
        "pubDate": "Sat, 17 Oct 2026 08:00:00 GMT",
    }
    item.update(overrides)
    return item


@pytest.fixture()
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture()
def store() -> InMemoryPipelineStore:
    return InMemoryPipelineStore()


@pytest.fixture()
def rss_document() -> Callable[..., bytes]:
    return build_rss


@pytest.fixture()
def rss_item() -> Callable[..., dict[str, str]]:
    return news_item


@pytest.fixture()
def no_provider_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the embedding provider unconfigured so nothing reaches the network."""

    for name in ("OPENAI_API_KEY", "FEED_PULSE_EMBEDDING_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("FEED_PULSE_EMBEDDING_PROVIDER", "openai")
