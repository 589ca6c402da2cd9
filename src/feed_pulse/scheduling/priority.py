"""Priority tiers, sync intervals and priority assignment for new feeds."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta
from urllib.parse import urlparse

from feed_pulse.errors import InvalidPriority
from feed_pulse.models import Feed, FeedStatus, RecommendedFeed, SyncPriority
from feed_pulse.storage.common import utc_now

BREAKING_NEWS_DOMAINS = frozenset(
    {
        "reuters.com",
        "apnews.com",
        "bbc.com",
        "bbc.co.uk",
        "cnn.com",
        "aljazeera.com",
        "nytimes.com",
        "theguardian.com",
        "npr.org",
        "bloomberg.com",
    },
)
DEFAULT_PRIORITY = SyncPriority.MEDIUM


def is_valid_priority(value: object) -> bool:
    if isinstance(value, SyncPriority):
        return True
    return isinstance(value, str) and value in {priority.value for priority in SyncPriority}


def parse_priority(value: object) -> SyncPriority:
    """Coerce a raw value into a ``SyncPriority`` or raise ``InvalidPriority``."""

    if not is_valid_priority(value):
        raise InvalidPriority(value)
    return SyncPriority(value)


def priority_interval_hours(priority: SyncPriority | str) -> int:
    return parse_priority(priority).interval_hours


def calculate_next_sync_at(
    priority: SyncPriority | str,
    last_sync_at: datetime | None = None,
) -> datetime:
    base = last_sync_at or utc_now()
    return base + timedelta(hours=priority_interval_hours(priority))


def is_due(feed: Feed, now: datetime) -> bool:
    return feed.next_sync_at is None or feed.next_sync_at <= now


def is_syncable(feed: Feed, now: datetime) -> bool:
    return feed.status == FeedStatus.ACTIVE and is_due(feed, now)


def is_breaking_news_source(url: str) -> bool:
    """Host equals, or is a subdomain of, an allowlisted breaking-news domain."""

    host = (urlparse(url.strip()).hostname or "").lower()
    if not host:
        return False
    return any(host == domain or host.endswith("." + domain) for domain in BREAKING_NEWS_DOMAINS)


def determine_new_feed_priority(
    url: str,
    defaults_lookup: Callable[[str], RecommendedFeed | None],
) -> SyncPriority:
    """Catalog default, then breaking-news allowlist, then medium."""

    recommended = defaults_lookup(url)
    if recommended is not None:
        return recommended.default_priority
    if is_breaking_news_source(url):
        return SyncPriority.HIGH
    return DEFAULT_PRIORITY
