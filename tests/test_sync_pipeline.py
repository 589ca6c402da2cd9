from __future__ import annotations

from datetime import timedelta

import allure

from feed_pulse.clustering.service import ClusteringService
from feed_pulse.enrichment.batch import DeadLetterQueueManager
from feed_pulse.enrichment.embeddings import EmbeddingQueueProcessor, HashingEmbedder
from feed_pulse.enrichment.usage import UsageTracker
from feed_pulse.models import ArticleDraft, EmbeddingStatus
from feed_pulse.scheduling.pipeline import SyncPipeline

pytestmark = [
    allure.epic("Scheduling"),
    allure.feature("Sync Pipeline"),
]

TENANT = "default_tenant"


class _BrokenQueue:
    def process_queue(self, limit: int = 50):
        raise RuntimeError("database is locked")


def _pipeline(store) -> SyncPipeline:
    tracker = UsageTracker(store, now=store.now)
    provider = HashingEmbedder()
    return SyncPipeline(
        store,
        embeddings=EmbeddingQueueProcessor(
            store,
            provider,
            tracker=tracker,
            dead_letters=DeadLetterQueueManager(store),
            tenant_id=TENANT,
            sleep=lambda _: None,
        ),
        clustering=ClusteringService(
            store,
            tracker=tracker,
            tenant_id=TENANT,
            is_available=lambda: True,
            provider=provider.provider,
            model_name=provider.model_name,
            now=store.now,
        ),
    )


def _draft(guid: str) -> ArticleDraft:
    return ArticleDraft(
        guid=guid,
        title="Central bank raises interest rates",
        url=f"https://example.com/{guid}",
        excerpt="Rates go up by a quarter point.",
    )


def test_sync_without_new_articles_queues_nothing(store) -> None:
    pipeline = _pipeline(store)

    assert pipeline.on_feed_sync_complete("feed-1", store.now(), 0) == 0
    assert not pipeline.clustering_scheduled
    assert pipeline.on_embedding_batch_complete() is None


def test_new_articles_are_queued_once_and_schedule_clustering(store) -> None:
    started = store.now() - timedelta(minutes=1)
    store.create_article(feed_id="feed-1", draft=_draft("one"))
    store.create_article(feed_id="feed-1", draft=_draft("two"))
    store.create_article(feed_id="feed-2", draft=_draft("elsewhere"))
    pipeline = _pipeline(store)

    assert pipeline.on_feed_sync_complete("feed-1", started, 2) == 2
    assert pipeline.clustering_scheduled
    assert pipeline.on_feed_sync_complete("feed-1", started, 2) == 0
    assert {entry.priority for entry in store.queue.values()} == {0}


def test_enrichment_embeds_then_clusters_once(store) -> None:
    started = store.now() - timedelta(minutes=1)
    first = store.create_article(feed_id="feed-1", draft=_draft("one"))
    second = store.create_article(feed_id="feed-2", draft=_draft("two"))
    pipeline = _pipeline(store)
    pipeline.on_feed_sync_complete("feed-1", started, 1)
    pipeline.on_feed_sync_complete("feed-2", started, 1)

    report = pipeline.run_enrichment()

    assert report.error is None
    assert report.embeddings.completed == 2
    assert report.clustering.status == "completed"
    (cluster,) = report.clustering.clusters
    assert sorted(cluster.article_ids) == sorted([first, second])
    assert store.articles[first].embedding_status is EmbeddingStatus.COMPLETED
    assert not pipeline.clustering_scheduled

    again = pipeline.run_enrichment()
    assert again.embeddings.processed == 0
    assert again.clustering is None


def test_enrichment_failures_are_reported_not_raised(store) -> None:
    pipeline = SyncPipeline(store, embeddings=_BrokenQueue())

    report = pipeline.run_enrichment()

    assert report.error == "database is locked"
    assert report.clustering is None
