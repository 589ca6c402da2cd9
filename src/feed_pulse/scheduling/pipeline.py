"""Coordinates sync completion, embedding enqueueing and clustering triggers."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from feed_pulse.clustering.service import ClusteringRunResult, ClusteringService
from feed_pulse.enrichment.embeddings import EmbeddingQueueProcessor, EmbeddingRunReport
from feed_pulse.storage.base import ArticleStore, EmbeddingQueueStore

logger = logging.getLogger(__name__)

NEW_ARTICLE_QUEUE_PRIORITY = 0


class PipelineStorage(ArticleStore, EmbeddingQueueStore, Protocol):
    """Storage surface of the sync pipeline coordinator."""


@dataclass(slots=True)
class EnrichmentReport:
    """What one enrichment pass did."""

    embeddings: EmbeddingRunReport | None = None
    clustering: ClusteringRunResult | None = None
    error: str | None = None


class SyncPipeline:
    """Turns successful syncs into embedding work and clustering runs.

    Failures in enrichment are logged and reported, never raised, so they cannot
    fail the sync that triggered them.
    """

    def __init__(
        self,
        storage: PipelineStorage,
        *,
        embeddings: EmbeddingQueueProcessor | None = None,
        clustering: ClusteringService | None = None,
        embedding_batch_size: int = 50,
        max_attempts: int = 3,
    ) -> None:
        self._storage = storage
        self._embeddings = embeddings
        self._clustering = clustering
        self._embedding_batch_size = embedding_batch_size
        self._max_attempts = max_attempts
        self._lock = threading.Lock()
        self._clustering_scheduled = False

    @property
    def clustering_scheduled(self) -> bool:
        with self._lock:
            return self._clustering_scheduled

    def on_feed_sync_complete(
        self,
        feed_id: str,
        sync_started_at: datetime,
        articles_new: int,
    ) -> int:
        """Enqueue the feed's new articles at top priority; return how many were queued."""

        if articles_new <= 0:
            return 0
        article_ids = self._storage.get_new_article_ids(feed_id=feed_id, since=sync_started_at)
        if not article_ids:
            return 0
        queued = self._storage.add_to_embedding_queue(
            article_ids,
            priority=NEW_ARTICLE_QUEUE_PRIORITY,
            max_attempts=self._max_attempts,
        )
        with self._lock:
            self._clustering_scheduled = True
        logger.info("Queued %s new article(s) of feed %s for embedding", queued, feed_id)
        return queued

    def on_embedding_batch_complete(self) -> ClusteringRunResult | None:
        """Run clustering once if a sync scheduled it since the last run."""

        with self._lock:
            scheduled = self._clustering_scheduled
            self._clustering_scheduled = False
        if not scheduled or self._clustering is None:
            return None
        return self._clustering.generate_clusters()

    def run_enrichment(self) -> EnrichmentReport:
        report = EnrichmentReport()
        try:
            if self._embeddings is not None:
                report.embeddings = self._embeddings.process_queue(
                    limit=self._embedding_batch_size,
                )
            report.clustering = self.on_embedding_batch_complete()
        except Exception as error:  # noqa: BLE001
            logger.exception("Enrichment pass failed")
            report.error = str(error)
        return report
