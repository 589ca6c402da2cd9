from __future__ import annotations

from datetime import UTC, datetime, timedelta

import allure
import pytest

from feed_pulse.errors import InvalidPriority
from feed_pulse.models import Feed, FeedStatus, RecommendedFeed, SyncPriority
from feed_pulse.scheduling.priority import (
    calculate_next_sync_at,
    determine_new_feed_priority,
    is_breaking_news_source,
    is_syncable,
    is_valid_priority,
    parse_priority,
    priority_interval_hours,
)

pytestmark = [
    allure.epic("Feed Scheduling"),
    allure.feature("Priority Tiers"),
]

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)


@pytest.mark.parametrize(
    ("priority", "hours"),
    [("high", 1), ("medium", 24), ("low", 168)],
)
def test_priority_interval_hours(priority: str, hours: int) -> None:
    assert priority_interval_hours(priority) == hours
    assert calculate_next_sync_at(priority, NOW) == NOW + timedelta(hours=hours)


def test_parse_priority_rejects_unknown_values() -> None:
    assert parse_priority("high") is SyncPriority.HIGH
    assert is_valid_priority(SyncPriority.LOW)
    assert not is_valid_priority("urgent")
    assert not is_valid_priority(None)

    with pytest.raises(InvalidPriority) as error:
        parse_priority("urgent")
    assert "urgent" in str(error.value)


def test_breaking_news_source_matches_domain_and_subdomains_only() -> None:
    assert is_breaking_news_source("https://reuters.com/world/rss")
    assert is_breaking_news_source("https://feeds.bbc.co.uk/news/rss.xml")
    assert not is_breaking_news_source("https://notreuters.com/feed")
    assert not is_breaking_news_source("https://example.com/reuters.com")
    assert not is_breaking_news_source("not a url")


def test_new_feed_priority_prefers_catalog_default_over_allowlist() -> None:
    catalog = {
        "https://www.reuters.com/rss": RecommendedFeed(
            url="https://www.reuters.com/rss",
            name="Reuters",
            default_priority=SyncPriority.LOW,
        ),
    }

    assert determine_new_feed_priority("https://www.reuters.com/rss", catalog.get) is (
        SyncPriority.LOW
    )
    assert determine_new_feed_priority("https://apnews.com/feed", catalog.get) is SyncPriority.HIGH
    assert determine_new_feed_priority("https://blog.example.com/feed", catalog.get) is (
        SyncPriority.MEDIUM
    )


def test_only_active_due_feeds_are_syncable() -> None:
    due = Feed(feed_id="a", url="https://a.example.com", name="A", next_sync_at=NOW)
    never_synced = Feed(feed_id="b", url="https://b.example.com", name="B")
    future = Feed(
        feed_id="c",
        url="https://c.example.com",
        name="C",
        next_sync_at=NOW + timedelta(minutes=1),
    )
    paused = Feed(
        feed_id="d",
        url="https://d.example.com",
        name="D",
        status=FeedStatus.PAUSED,
    )

    assert is_syncable(due, NOW)
    assert is_syncable(never_synced, NOW)
    assert not is_syncable(future, NOW)
    assert not is_syncable(paused, NOW)
