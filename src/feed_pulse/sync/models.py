"""Sync engine inputs, outputs and parsed feed structures."""

from __future__ import annotations

import queue
from dataclasses import dataclass, field
from datetime import datetime

from feed_pulse.models import Feed, RecommendedFeed, SyncPriority


@dataclass(slots=True, frozen=True)
class SyncableFeed:
    """Normalized feed descriptor accepted by the sync engine.

    Persisted feeds and catalog entries are adapted to this shape at the boundary;
    catalog entries have no ``feed_id`` and no caching tokens, so their articles
    are parsed but never persisted.
    """

    url: str
    name: str
    feed_id: str | None = None
    etag: str | None = None
    last_modified: str | None = None
    priority: SyncPriority = SyncPriority.MEDIUM

    @classmethod
    def from_feed(cls, feed: Feed) -> SyncableFeed:
        return cls(
            url=feed.url,
            name=feed.name,
            feed_id=feed.feed_id,
            etag=feed.etag,
            last_modified=feed.last_modified,
            priority=feed.sync_priority,
        )

    @classmethod
    def from_catalog_entry(cls, entry: RecommendedFeed) -> SyncableFeed:
        return cls(url=entry.url, name=entry.name, priority=entry.default_priority)


@dataclass(slots=True)
class SyncOptions:
    """Per-feed sync options.

    High-priority feeds are validated before fetching unless ``validate_high_priority``
    is off; ``validate_content`` validates every feed.
    """

    max_articles: int = 100
    respect_caching: bool = True
    validate_content: bool = False
    validate_high_priority: bool = True
    max_retries: int = 3
    retry_delay_seconds: float = 1.0
    timeout_seconds: float = 30.0


@dataclass(slots=True)
class SyncResult:
    """Structured outcome of one feed sync."""

    feed_url: str
    success: bool
    feed_id: str | None = None
    feed_name: str | None = None
    articles_found: int = 0
    articles_new: int = 0
    articles_updated: int = 0
    articles_skipped: int = 0
    http_status_code: int | None = None
    feed_size_bytes: int = 0
    etag: str | None = None
    last_modified: str | None = None
    sync_duration_ms: int = 0
    retry_count: int = 0
    validation_passed: bool = True
    error: str | None = None
    error_code: str | None = None


@dataclass(slots=True)
class FeedItem:
    """Raw fields of one RSS item or Atom entry before extraction."""

    guid: str | None = None
    entry_id: str | None = None
    link: str | None = None
    title: str | None = None
    content_encoded: str | None = None
    content: str | None = None
    description: str | None = None
    summary: str | None = None
    author: str | None = None
    dates: tuple[str | None, ...] = ()
    enclosures: tuple[tuple[str, str | None], ...] = ()
    media_urls: tuple[str, ...] = ()


@dataclass(slots=True)
class ParsedFeed:
    """Channel-level metadata plus items of a parsed document."""

    feed_type: str
    title: str | None
    description: str | None
    link: str | None
    items: list[FeedItem] = field(default_factory=list)


@dataclass(slots=True)
class SyncProgressEvent:
    """Emitted after each feed of a batch run completes."""

    completed: int
    total: int
    feed_url: str
    feed_name: str
    success: bool


@dataclass(slots=True)
class SyncErrorEvent:
    """Emitted when one feed of a batch run fails."""

    feed_url: str
    feed_name: str
    feed_id: str | None
    error: str


SyncEvent = SyncProgressEvent | SyncErrorEvent


@dataclass(slots=True)
class BatchSyncOptions:
    """Batch driver options; ``events`` receives ``SyncEvent`` records when set."""

    batch_size: int = 3
    delay_between_batches_seconds: float = 5.0
    max_concurrent: int = 2
    fail_fast: bool = False
    sync_options: SyncOptions = field(default_factory=SyncOptions)
    events: queue.Queue[SyncEvent] | None = None


@dataclass(slots=True)
class SyncRunSummary:
    """Aggregate of a batch run."""

    results: list[SyncResult]
    started_at: datetime
    finished_at: datetime
    stopped_early: bool = False

    @property
    def success_count(self) -> int:
        return sum(1 for result in self.results if result.success)

    @property
    def failure_count(self) -> int:
        return len(self.results) - self.success_count

    @property
    def articles_new(self) -> int:
        return sum(result.articles_new for result in self.results)
