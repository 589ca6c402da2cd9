from __future__ import annotations

import json

import allure
import httpx
import pytest

from feed_pulse.config import EmbeddingSettings
from feed_pulse.enrichment.batch import DeadLetterQueueManager
from feed_pulse.enrichment.embeddings import (
    EmbeddingBatch,
    EmbeddingQueueProcessor,
    HashingEmbedder,
    OpenAIEmbeddingProvider,
    build_embedding_provider,
    generate_content_hash,
    needs_embedding_update,
    requeue_embedding_item,
)
from feed_pulse.enrichment.usage import UsageTracker
from feed_pulse.errors import ProviderUnavailable
from feed_pulse.models import Article, DeadLetterItem, EmbeddingStatus, QueueStatus

pytestmark = [
    allure.epic("Enrichment"),
    allure.feature("Embedding Queue"),
]

TENANT = "default_tenant"


class _FailingProvider:
    provider = "openai"
    model_name = "text-embedding-3-small"

    def __init__(self, error: Exception) -> None:
        self.error = error
        self.calls = 0

    def embed(self, texts: list[str]) -> EmbeddingBatch:
        self.calls += 1
        raise self.error


def _article(store, article_id: str, **overrides) -> Article:
    fields = {
        "article_id": article_id,
        "feed_id": "feed-1",
        "guid": article_id,
        "title": f"Headline {article_id}",
        "url": f"https://example.com/{article_id}",
        "excerpt": "Excerpt text",
        "created_at": store.now(),
    }
    fields.update(overrides)
    return store.put_article(Article(**fields))


def _processor(
    store,
    provider,
    *,
    limits: dict[str, int] | None = None,
) -> EmbeddingQueueProcessor:
    return EmbeddingQueueProcessor(
        store,
        provider,
        tracker=UsageTracker(store, limits=limits, now=store.now),
        dead_letters=DeadLetterQueueManager(store),
        tenant_id=TENANT,
        sleep=lambda _: None,
    )


def test_queue_pass_embeds_articles_and_removes_entries(store) -> None:
    _article(store, "a1")
    _article(store, "a2")
    store.add_to_embedding_queue(["a1", "a2"], priority=0)

    report = _processor(store, HashingEmbedder()).process_queue(limit=10)

    assert (report.processed, report.completed, report.failed) == (2, 2, 0)
    assert store.queue == {}
    article = store.articles["a1"]
    assert article.embedding_status is EmbeddingStatus.COMPLETED
    assert len(article.embedding) == 384
    assert article.content_hash == generate_content_hash("Headline a1", "Excerpt text")
    assert [entry.success for entry in store.usage_log()] == [True, True]


def test_up_to_date_embeddings_are_skipped(store) -> None:
    _article(
        store,
        "a1",
        embedding=[1.0, 0.0],
        embedding_status=EmbeddingStatus.COMPLETED,
        content_hash=generate_content_hash("Headline a1", "Excerpt text"),
    )
    store.add_to_embedding_queue(["a1", "missing"], priority=0)
    provider = _FailingProvider(RuntimeError("should not be called"))

    report = _processor(store, provider).process_queue()

    assert report.skipped == 2
    assert provider.calls == 0
    assert store.queue == {}


def test_needs_embedding_update_tracks_content_changes() -> None:
    article = Article(
        article_id="a1",
        feed_id="f",
        guid="g",
        title="Old title",
        url="https://example.com/a",
        embedding=[0.1],
        embedding_status=EmbeddingStatus.COMPLETED,
        content_hash=generate_content_hash("Old title", None),
    )
    assert not needs_embedding_update(article)

    article.title = "New title"
    assert needs_embedding_update(article)


def test_exhausted_retries_dead_letter_and_replay_requeues(store) -> None:
    _article(store, "a1")
    store.add_to_embedding_queue(["a1"], priority=5)
    provider = _FailingProvider(RuntimeError("503 Service Unavailable"))

    report = _processor(store, provider).process_queue()

    assert report.dead_lettered == 1
    assert provider.calls == 3
    (entry,) = store.queue.values()
    assert entry.status is QueueStatus.DEAD_LETTER
    assert entry.attempts == 3
    assert store.articles["a1"].embedding_status is EmbeddingStatus.FAILED
    (item,) = store.list_dead_letters(limit=10)
    assert item.payload == {"article_id": "a1", "queue_entry_id": entry.entry_id}

    requeue_embedding_item(store, item)

    assert entry.status is QueueStatus.PENDING
    assert entry.attempts == 0
    assert len(store.queue) == 1
    assert store.articles["a1"].embedding_status is EmbeddingStatus.PENDING


def test_non_retryable_failures_count_attempts_until_failed(store) -> None:
    _article(store, "a1")
    store.add_to_embedding_queue(["a1"], priority=0, max_attempts=2)
    processor = _processor(store, _FailingProvider(ValueError("input rejected")))

    first = processor.process_queue()
    (entry,) = store.queue.values()
    assert first.failed == 1
    assert (entry.status, entry.attempts) == (QueueStatus.PENDING, 1)

    processor.process_queue()
    assert (entry.status, entry.attempts) == (QueueStatus.FAILED, 2)
    assert entry.error == "input rejected"
    assert store.articles["a1"].embedding_status is EmbeddingStatus.FAILED


def test_budget_refusal_defers_remaining_entries(store) -> None:
    _article(store, "a1")
    _article(store, "a2")
    store.add_to_embedding_queue(["a1", "a2"], priority=0)

    report = _processor(store, HashingEmbedder(), limits={"embedding": 1}).process_queue()

    assert (report.completed, report.deferred) == (1, 1)
    (entry,) = store.queue.values()
    assert entry.article_id == "a2"
    assert (entry.status, entry.attempts) == (QueueStatus.PENDING, 0)
    assert "Daily embedding limit" in entry.error
    assert store.get_queue_stats()["pending"] == 1


def test_requeue_rejects_foreign_or_orphaned_items(store, fixed_now) -> None:
    foreign = DeadLetterItem(
        item_id=1,
        operation="summary",
        provider="openai",
        payload={"article_id": "a1"},
        error="x",
        attempts=3,
        created_at=fixed_now,
    )
    orphan = DeadLetterItem(
        item_id=2,
        operation="embedding",
        provider="openai",
        payload={"article_id": "gone"},
        error="x",
        attempts=3,
        created_at=fixed_now,
    )

    with pytest.raises(ValueError):
        requeue_embedding_item(store, foreign)
    with pytest.raises(LookupError):
        requeue_embedding_item(store, orphan)


def test_provider_factory() -> None:
    with pytest.raises(ProviderUnavailable):
        build_embedding_provider(EmbeddingSettings(provider="openai", api_key=None))

    hashing = build_embedding_provider(EmbeddingSettings(provider="hashing", model_name="h"))
    assert isinstance(hashing, HashingEmbedder)
    assert hashing.embed(["same text"]).vectors == hashing.embed(["same text"]).vectors


def test_openai_provider_orders_vectors_and_counts_tokens() -> None:
    captured: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(json.loads(request.content))
        assert request.headers["Authorization"] == "Bearer secret"
        return httpx.Response(
            200,
            json={
                "data": [
                    {"index": 1, "embedding": [0.0, 1.0]},
                    {"index": 0, "embedding": [1.0, 0.0]},
                ],
                "usage": {"prompt_tokens": 7},
            },
        )

    provider = OpenAIEmbeddingProvider(
        api_key="secret",
        transport=httpx.MockTransport(handler),
    )
    batch = provider.embed(["first", "second"])
    provider.close()

    assert batch.vectors == [[1.0, 0.0], [0.0, 1.0]]
    assert batch.input_tokens == 7
    assert captured == [{"model": "text-embedding-3-small", "input": ["first", "second"]}]


def test_openai_provider_surfaces_rate_limits() -> None:
    provider = OpenAIEmbeddingProvider(
        api_key="secret",
        transport=httpx.MockTransport(lambda _: httpx.Response(429)),
    )

    with pytest.raises(httpx.HTTPStatusError):
        provider.embed(["text"])
