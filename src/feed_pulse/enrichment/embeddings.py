"""Embedding providers and the embedding queue processor."""

from __future__ import annotations

import hashlib
import logging
import math
import time
from array import array
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import httpx

from feed_pulse.config import EmbeddingSettings
from feed_pulse.enrichment.batch import BatchProcessor, DeadLetterQueueManager
from feed_pulse.enrichment.retry import RETRY_DELAYS_MS
from feed_pulse.enrichment.usage import UsageTracker
from feed_pulse.errors import ProviderUnavailable
from feed_pulse.models import (
    AIOperation,
    Article,
    DeadLetterItem,
    EmbeddingQueueEntry,
    EmbeddingStatus,
    QueueStatus,
    Vector,
)
from feed_pulse.storage.base import ArticleStore, EmbeddingQueueStore

logger = logging.getLogger(__name__)

MAX_PROVIDER_BATCH_SIZE = 100


@dataclass(slots=True)
class EmbeddingBatch:
    """Vectors for a list of input texts plus the tokens the provider billed."""

    vectors: list[Vector]
    input_tokens: int = 0


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Embedding backend interface."""

    provider: str
    model_name: str

    def embed(self, texts: list[str]) -> EmbeddingBatch:
        """Encode texts into vectors."""
        raise NotImplementedError


@dataclass(slots=True)
class HashingEmbedder:
    """CPU-friendly local embedder based on hashed character n-grams."""

    model_name: str = "hashing-384"
    dimensions: int = 384
    ngram_size: int = 3
    provider: str = "hashing"

    def embed(self, texts: list[str]) -> EmbeddingBatch:
        return EmbeddingBatch(
            vectors=[self._embed_single(text) for text in texts],
            input_tokens=sum(len((text or "").split()) for text in texts),
        )

    def _embed_single(self, text: str) -> Vector:
        normalized = (text or "").lower().strip()
        vector = array("f", [0.0]) * self.dimensions
        if not normalized:
            return list(vector)

        if len(normalized) < self.ngram_size:
            normalized = normalized + " " * (self.ngram_size - len(normalized))

        for index in range(len(normalized) - self.ngram_size + 1):
            ngram = normalized[index : index + self.ngram_size]
            ngram_bytes = ngram.encode("utf-8")
            digest = hashlib.sha1(ngram_bytes, usedforsecurity=False).digest()  # noqa: S324
            bucket = int.from_bytes(digest[:4], byteorder="little") % self.dimensions
            vector[bucket] += 1.0

        norm = math.sqrt(sum(value * value for value in vector))
        if norm > 0:
            vector = array("f", (value / norm for value in vector))
        return list(vector)


@dataclass(slots=True)
class SentenceTransformerEmbedder:
    """Sentence-transformers backend with lazy import."""

    model_name: str
    provider: str = "sentence-transformers"
    _model: Any = field(init=False, repr=False)

    def __post_init__(self) -> None:
        from sentence_transformers import SentenceTransformer  # type: ignore

        self._model = SentenceTransformer(self.model_name)

    def embed(self, texts: list[str]) -> EmbeddingBatch:
        vectors = self._model.encode(texts, normalize_embeddings=True)
        return EmbeddingBatch(
            vectors=[vector.tolist() for vector in vectors],
            input_tokens=sum(len(text.split()) for text in texts),
        )


class OpenAIEmbeddingProvider:
    """OpenAI-compatible ``/embeddings`` endpoint over httpx.

    HTTP errors surface as ``httpx.HTTPStatusError`` so the retry layer can
    classify 429 and 5xx responses as retryable.
    """

    provider = "openai"

    def __init__(
        self,
        *,
        api_key: str,
        model_name: str = "text-embedding-3-small",
        base_url: str = "https://api.openai.com/v1",
        timeout_seconds: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.model_name = model_name
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds, connect=min(10.0, timeout_seconds)),
            headers={"Authorization": f"Bearer {api_key}"},
            transport=transport,
        )

    def embed(self, texts: list[str]) -> EmbeddingBatch:
        vectors: list[Vector] = []
        tokens = 0
        for start in range(0, len(texts), MAX_PROVIDER_BATCH_SIZE):
            chunk = texts[start : start + MAX_PROVIDER_BATCH_SIZE]
            response = self._client.post(
                "/embeddings",
                json={"model": self.model_name, "input": chunk},
            )
            response.raise_for_status()
            payload = response.json()
            data = sorted(payload.get("data", []), key=lambda row: int(row.get("index", 0)))
            if len(data) != len(chunk):
                raise ValueError(
                    f"Embedding provider returned {len(data)} vectors for {len(chunk)} inputs",
                )
            vectors.extend([float(value) for value in row["embedding"]] for row in data)
            tokens += int((payload.get("usage") or {}).get("prompt_tokens", 0))
        return EmbeddingBatch(vectors=vectors, input_tokens=tokens)

    def close(self) -> None:
        self._client.close()


def build_embedding_provider(settings: EmbeddingSettings) -> EmbeddingProvider:
    """Build the configured provider or raise ``ProviderUnavailable``."""

    if settings.provider == "openai":
        if not settings.api_key:
            raise ProviderUnavailable(
                "Embedding provider credential is not configured. "
                "Set FEED_PULSE_EMBEDDING_API_KEY or OPENAI_API_KEY.",
            )
        return OpenAIEmbeddingProvider(
            api_key=settings.api_key,
            model_name=settings.model_name,
            base_url=settings.base_url,
            timeout_seconds=settings.timeout_seconds,
        )
    if settings.provider == "sentence-transformers":
        try:
            return SentenceTransformerEmbedder(model_name=settings.model_name)
        except (ImportError, OSError, RuntimeError, ValueError) as error:
            raise ProviderUnavailable(
                f"Failed to initialize embedding model {settings.model_name}. "
                "Install feed-pulse[local-embeddings].",
            ) from error
    return HashingEmbedder(model_name=settings.model_name)


def generate_content_hash(title: str, excerpt: str | None) -> str:
    return hashlib.sha256(f"{title}|{excerpt or ''}".encode()).hexdigest()


def prepare_embedding_input(title: str, excerpt: str | None) -> str:
    if not excerpt:
        return title
    return f"{title}\n\n{excerpt}"


def needs_embedding_update(article: Article) -> bool:
    if article.embedding_status != EmbeddingStatus.COMPLETED or article.embedding is None:
        return True
    return article.content_hash != generate_content_hash(article.title, article.excerpt)


class EmbeddingQueueStorage(ArticleStore, EmbeddingQueueStore, Protocol):
    """Storage surface of the embedding queue processor."""


@dataclass(slots=True)
class EmbeddingRunReport:
    """Counters of one embedding queue pass."""

    processed: int = 0
    completed: int = 0
    skipped: int = 0
    failed: int = 0
    dead_lettered: int = 0
    deferred: int = 0


class EmbeddingQueueProcessor:
    """Drains the embedding queue through the budgeted batch processor."""

    def __init__(  # noqa: PLR0913
        self,
        storage: EmbeddingQueueStorage,
        provider: EmbeddingProvider,
        *,
        tracker: UsageTracker,
        dead_letters: DeadLetterQueueManager,
        tenant_id: str,
        delays_ms: tuple[int, ...] = RETRY_DELAYS_MS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._storage = storage
        self._provider = provider
        self._tracker = tracker
        self._tenant_id = tenant_id
        self._batch = BatchProcessor[EmbeddingQueueEntry, Vector](
            operation=AIOperation.EMBEDDING,
            provider=provider.provider,
            tracker=tracker,
            dead_letters=dead_letters,
            delays_ms=delays_ms,
            payload_builder=_queue_payload,
            sleep=sleep,
        )

    def process_queue(self, limit: int = 50) -> EmbeddingRunReport:
        report = EmbeddingRunReport()
        entries = self._storage.list_pending_queue_entries(limit=limit)
        if not entries:
            return report

        articles = {
            article.article_id: article
            for article in self._storage.get_articles([entry.article_id for entry in entries])
        }
        work: list[EmbeddingQueueEntry] = []
        for entry in entries:
            article = articles.get(entry.article_id)
            if article is None or not needs_embedding_update(article):
                self._storage.remove_queue_entry(entry.entry_id)
                report.skipped += 1
                continue
            self._storage.update_queue_entry(
                entry.entry_id,
                status=QueueStatus.PROCESSING,
                attempts=entry.attempts,
            )
            work.append(entry)

        outcome = self._batch.process_batch(
            work,
            lambda entry: self._embed(articles[entry.article_id]),
            tenant_id=self._tenant_id,
        )
        report.processed = len(work)

        for success in outcome.successful:
            article = articles[success.item.article_id]
            self._storage.update_article_embedding(
                article_id=article.article_id,
                embedding=success.result,
                status=EmbeddingStatus.COMPLETED,
                content_hash=generate_content_hash(article.title, article.excerpt),
            )
            self._storage.remove_queue_entry(success.item.entry_id)
            report.completed += 1

        for dead in outcome.dead_lettered:
            self._storage.update_queue_entry(
                dead.item.entry_id,
                status=QueueStatus.DEAD_LETTER,
                attempts=dead.item.attempts + dead.attempts,
                error=dead.error,
            )
            self._mark_failed(dead.item.article_id, dead.error)
            report.dead_lettered += 1

        for failure in outcome.failed:
            entry = failure.item
            if failure.attempts == 0:
                self._storage.update_queue_entry(
                    entry.entry_id,
                    status=QueueStatus.PENDING,
                    attempts=entry.attempts,
                    error=failure.error,
                )
                report.deferred += 1
                continue
            attempts = entry.attempts + 1
            exhausted = attempts >= entry.max_attempts
            self._storage.update_queue_entry(
                entry.entry_id,
                status=QueueStatus.FAILED if exhausted else QueueStatus.PENDING,
                attempts=attempts,
                error=failure.error,
            )
            if exhausted:
                self._mark_failed(entry.article_id, failure.error)
            else:
                self._record_failure(failure.error)
            report.failed += 1

        logger.info(
            "Embedding pass: %s completed, %s failed, %s dead-lettered, %s deferred",
            report.completed,
            report.failed,
            report.dead_lettered,
            report.deferred,
        )
        return report

    def get_queue_stats(self) -> dict[str, int]:
        return self._storage.get_queue_stats()

    def _embed(self, article: Article) -> Vector:
        batch = self._provider.embed([prepare_embedding_input(article.title, article.excerpt)])
        if not batch.vectors:
            raise ValueError(f"Embedding provider returned no vector for {article.article_id}")
        self._tracker.record_success(
            self._tenant_id,
            operation=AIOperation.EMBEDDING,
            provider=self._provider.provider,
            model=self._provider.model_name,
            input_tokens=batch.input_tokens,
        )
        return batch.vectors[0]

    def _mark_failed(self, article_id: str, error: str | None) -> None:
        self._storage.update_article_embedding(
            article_id=article_id,
            embedding=None,
            status=EmbeddingStatus.FAILED,
        )
        self._record_failure(error)

    def _record_failure(self, error: str | None) -> None:
        self._tracker.record_failure(
            self._tenant_id,
            operation=AIOperation.EMBEDDING,
            provider=self._provider.provider,
            model=self._provider.model_name,
            error=error or "unknown error",
        )


def _queue_payload(entry: EmbeddingQueueEntry) -> dict[str, Any]:
    return {"article_id": entry.article_id, "queue_entry_id": entry.entry_id}


def requeue_embedding_item(storage: EmbeddingQueueStorage, item: DeadLetterItem) -> None:
    """Put a dead-lettered embedding back on the queue with a fresh attempt budget."""

    if item.operation != AIOperation.EMBEDDING.value:
        raise ValueError(f"Cannot replay {item.operation} item {item.item_id} as an embedding")
    article_id = item.payload.get("article_id")
    if not article_id:
        raise ValueError(f"Dead-letter item {item.item_id} carries no article_id")
    if not storage.get_articles([str(article_id)]):
        raise LookupError(f"Article not found: {article_id}")

    entry_id = item.payload.get("queue_entry_id")
    if entry_id is not None:
        storage.update_queue_entry(int(entry_id), status=QueueStatus.PENDING, attempts=0)
    storage.add_to_embedding_queue([str(article_id)], priority=0)
    storage.update_article_embedding(
        article_id=str(article_id),
        embedding=None,
        status=EmbeddingStatus.PENDING,
    )
