from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import allure
import pytest

from feed_pulse.enrichment.usage import UsageTracker
from feed_pulse.models import (
    AIOperation,
    ArticleDraft,
    Cluster,
    EmbeddingStatus,
    FeedScheduleUpdate,
    FeedStatus,
    FeedSyncLog,
    QueueStatus,
    RecommendedFeed,
    SyncLogStatus,
    SyncPriority,
)
from feed_pulse.storage.common import utc_today
from feed_pulse.storage.repository import SQLiteRepository

pytestmark = [
    allure.epic("Storage"),
    allure.feature("Schema & Repository"),
]

LONG_AGO = datetime(2000, 1, 1, tzinfo=UTC)


@pytest.fixture()
def repo(tmp_path: Path):
    repository = SQLiteRepository(tmp_path / "pipeline.db")
    repository.init_schema()
    yield repository
    repository.close()


def _draft(guid: str, **overrides) -> ArticleDraft:
    fields = {
        "guid": guid,
        "title": f"Headline {guid}",
        "url": f"https://example.com/{guid}",
        "excerpt": f"Excerpt {guid}",
    }
    fields.update(overrides)
    return ArticleDraft(**fields)


def _cluster(cluster_id: str, article_ids: list[str], *, expires_at: datetime) -> Cluster:
    now = datetime.now(UTC)
    return Cluster(
        cluster_id=cluster_id,
        tenant_id="default_tenant",
        topic="Topic",
        summary="Summary",
        article_ids=article_ids,
        source_feed_ids=["feed-a", "feed-b"],
        avg_similarity=0.91,
        relevance_score=4.0,
        timeframe_start=now - timedelta(hours=3),
        timeframe_end=now,
        created_at=now,
        expires_at=expires_at,
    )


def test_feeds_are_scheduled_and_scoped_to_tenant(tmp_path: Path, repo: SQLiteRepository) -> None:
    now = datetime.now(UTC)
    due = repo.add_feed(url="https://example.com/due.xml", name="Due", priority=SyncPriority.HIGH)
    later = repo.add_feed(
        url="https://example.com/later.xml",
        name="Later",
        next_sync_at=now + timedelta(hours=1),
    )

    assert due.sync_interval_hours == 1
    assert [feed.feed_id for feed in repo.get_feeds_due_for_sync(limit=10, now=now)] == [
        due.feed_id,
    ]
    assert repo.get_feed_by_url("https://example.com/later.xml").feed_id == later.feed_id

    synced_at = now.replace(microsecond=0)
    repo.update_feed_schedule(
        due.feed_id,
        FeedScheduleUpdate(
            next_sync_at=synced_at + timedelta(hours=1),
            last_fetched_at=synced_at,
            etag='"v2"',
            status=FeedStatus.ERROR,
        ),
    )
    repo.update_feed_schedule("unknown", FeedScheduleUpdate(etag="ignored"))

    stored = repo.get_feed_by_id(due.feed_id)
    assert stored.etag == '"v2"'
    assert stored.status is FeedStatus.ERROR
    assert stored.sync_priority is SyncPriority.HIGH
    assert stored.last_fetched_at == synced_at
    assert stored.next_sync_at.tzinfo is not None

    other_tenant = SQLiteRepository(tmp_path / "pipeline.db", tenant_id="other")
    assert other_tenant.list_feeds() == []
    assert other_tenant.get_feed_by_id(due.feed_id) is None
    other_tenant.close()


def test_recommended_feeds_upsert_by_url(repo: SQLiteRepository) -> None:
    url = "https://news.example.org/rss"
    repo.add_recommended_feed(RecommendedFeed(url=url, name="Wire"))
    repo.add_recommended_feed(
        RecommendedFeed(url=url, name="Wire", default_priority=SyncPriority.HIGH, category="world"),
    )

    entry = repo.get_recommended_feed_by_url(url)
    assert entry.default_priority is SyncPriority.HIGH
    assert entry.category == "world"
    assert [item.url for item in repo.list_recommended_feeds()] == [url]
    assert repo.get_recommended_feed_by_url("https://unknown.example/") is None


def test_articles_round_trip_with_embeddings(repo: SQLiteRepository) -> None:
    feed = repo.add_feed(url="https://example.com/feed.xml", name="Example")
    started = datetime.now(UTC) - timedelta(seconds=5)
    article_id = repo.create_article(feed_id=feed.feed_id, draft=_draft("one"))

    assert repo.get_article_by_guid(feed_id=feed.feed_id, guid="one").article_id == article_id
    assert repo.get_new_article_ids(feed_id=feed.feed_id, since=started) == [article_id]

    repo.update_article(article_id, _draft("one", title="Corrected headline"))
    repo.update_article_embedding(
        article_id=article_id,
        embedding=[0.5, 0.25, -1.0],
        status=EmbeddingStatus.COMPLETED,
        content_hash="abc",
    )

    (article,) = repo.get_articles([article_id, "missing"])
    assert article.title == "Corrected headline"
    assert article.embedding == [0.5, 0.25, -1.0]
    assert article.embedding_status is EmbeddingStatus.COMPLETED
    assert article.content_hash == "abc"
    assert [item.article_id for item in repo.list_embedded_articles(since=LONG_AGO)] == [
        article_id,
    ]

    with pytest.raises(LookupError):
        repo.update_article("missing", _draft("missing"))


def test_embedding_queue_lifecycle(repo: SQLiteRepository) -> None:
    feed = repo.add_feed(url="https://example.com/feed.xml", name="Example")
    first = repo.create_article(feed_id=feed.feed_id, draft=_draft("one"))
    second = repo.create_article(feed_id=feed.feed_id, draft=_draft("two"))

    assert repo.add_to_embedding_queue([first], priority=5) == 1
    assert repo.add_to_embedding_queue([first, second, second], priority=0) == 1

    pending = repo.list_pending_queue_entries(limit=10)
    assert [entry.article_id for entry in pending] == [second, first]

    repo.update_queue_entry(pending[0].entry_id, status=QueueStatus.FAILED, attempts=3, error="x")
    stats = repo.get_queue_stats()
    assert (stats["pending"], stats["failed"]) == (1, 1)

    repo.remove_queue_entry(pending[1].entry_id)
    assert repo.list_pending_queue_entries(limit=10) == []


def test_clusters_supersede_and_expire(repo: SQLiteRepository) -> None:
    feed = repo.add_feed(url="https://example.com/feed.xml", name="Example")
    article_ids = [
        repo.create_article(feed_id=feed.feed_id, draft=_draft(guid)) for guid in ("a", "b")
    ]
    now = datetime.now(UTC)

    repo.create_cluster(_cluster("cluster:one", article_ids, expires_at=now + timedelta(hours=48)))
    repo.assign_articles_to_cluster(cluster_id="cluster:one", article_ids=article_ids)

    (active,) = repo.list_active_clusters(now=now, limit=10)
    assert active.article_ids == article_ids
    assert active.source_count == 2
    assert {article.cluster_id for article in repo.get_articles(article_ids)} == {"cluster:one"}

    assert repo.supersede_active_clusters(now=now) == 1
    assert repo.list_active_clusters(now=now, limit=10) == []
    assert {article.cluster_id for article in repo.get_articles(article_ids)} == {None}

    repo.create_cluster(_cluster("cluster:two", article_ids, expires_at=now - timedelta(hours=1)))
    repo.assign_articles_to_cluster(cluster_id="cluster:two", article_ids=article_ids)
    assert repo.expire_clusters(now=now) == 1
    assert repo.expire_clusters(now=now) == 0


def test_usage_counters_accumulate_through_the_tracker(repo: SQLiteRepository) -> None:
    tracker = UsageTracker(repo, limits={"embedding": 2})
    for tokens in (100, 50):
        tracker.record_success(
            "default_tenant",
            operation=AIOperation.EMBEDDING,
            provider="openai",
            model="text-embedding-3-small",
            input_tokens=tokens,
        )
    tracker.record_failure(
        "default_tenant",
        operation=AIOperation.CLUSTERING,
        provider="openai",
        model="text-embedding-3-small",
        error="HTTP 503",
    )

    usage = repo.get_daily_usage(tenant_id="default_tenant", usage_date=utc_today())
    assert usage.embeddings_count == 2
    assert usage.clusterings_count == 1
    assert usage.tokens_by_provider == {"openai": 150}
    assert not tracker.can_make_request("default_tenant", AIOperation.EMBEDDING).allowed

    log = repo.list_usage_log(tenant_id="default_tenant")
    assert [(entry.operation, entry.success) for entry in log] == [
        (AIOperation.EMBEDDING, True),
        (AIOperation.EMBEDDING, True),
        (AIOperation.CLUSTERING, False),
    ]
    assert log[-1].error == "HTTP 503"


def test_dead_letters_persist_payloads(repo: SQLiteRepository) -> None:
    item = repo.add_dead_letter(
        operation="embedding",
        provider="openai",
        payload={"article_id": "a1", "queue_entry_id": 7},
        error="429 Too Many Requests",
        attempts=3,
        tenant_id="default_tenant",
    )

    (stored,) = repo.list_dead_letters(limit=10)
    assert stored.payload == {"article_id": "a1", "queue_entry_id": 7}
    assert stored.created_at.tzinfo is not None
    assert repo.count_dead_letters() == 1
    assert repo.remove_dead_letter(item.item_id)
    assert not repo.remove_dead_letter(item.item_id)


def test_sync_records_are_listed_newest_first_per_tenant(
    tmp_path: Path,
    repo: SQLiteRepository,
) -> None:
    feed = repo.add_feed(url="https://example.com/feed.xml", name="Example")
    other = repo.add_feed(url="https://example.com/other.xml", name="Other")
    started = datetime.now(UTC).replace(microsecond=0)

    first_id = repo.record_feed_sync(
        FeedSyncLog(
            feed_id=feed.feed_id,
            status=SyncLogStatus.SUCCESS,
            started_at=started,
            completed_at=started + timedelta(seconds=2),
            duration_ms=2000,
            http_status_code=200,
            articles_found=3,
            articles_new=2,
            etag_received='"v1"',
        ),
    )
    second_id = repo.record_feed_sync(
        FeedSyncLog(
            feed_id=feed.feed_id,
            status=SyncLogStatus.ERROR,
            started_at=started + timedelta(hours=1),
            completed_at=started + timedelta(hours=1, seconds=1),
            duration_ms=1000,
            retry_count=2,
            http_status_code=503,
            error="HTTP 503 fetching https://example.com/feed.xml",
            error_code="http_status",
        ),
    )
    repo.record_feed_sync(
        FeedSyncLog(
            feed_id=other.feed_id,
            status=SyncLogStatus.SUCCESS,
            started_at=started,
            completed_at=started,
            duration_ms=0,
        ),
    )

    logs = repo.list_feed_sync_logs(feed_id=feed.feed_id)
    assert [log.log_id for log in logs] == [second_id, first_id]
    assert logs[0].status is SyncLogStatus.ERROR
    assert (logs[0].retry_count, logs[0].error_code) == (2, "http_status")
    assert logs[1].started_at == started
    assert (logs[1].articles_new, logs[1].etag_received) == (2, '"v1"')
    assert len(repo.list_feed_sync_logs()) == 3
    assert len(repo.list_feed_sync_logs(limit=1)) == 1

    other_tenant = SQLiteRepository(tmp_path / "pipeline.db", tenant_id="other")
    assert other_tenant.list_feed_sync_logs() == []
    other_tenant.close()
