"""Wires settings into the storage, sync, enrichment and clustering components."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from feed_pulse.clustering.service import ClusteringService, is_clustering_service_available
from feed_pulse.config import Settings
from feed_pulse.enrichment.batch import DeadLetterQueueManager
from feed_pulse.enrichment.embeddings import (
    EmbeddingProvider,
    EmbeddingQueueProcessor,
    build_embedding_provider,
)
from feed_pulse.enrichment.usage import UsageTracker
from feed_pulse.errors import ProviderUnavailable
from feed_pulse.http.fetcher import FeedHttpClient
from feed_pulse.scheduling.pipeline import SyncPipeline
from feed_pulse.scheduling.scheduler import FeedScheduler, TieredSyncScheduler
from feed_pulse.storage.repository import SQLiteRepository
from feed_pulse.sync.engine import SyncEngine
from feed_pulse.sync.throttle import RequestThrottle
from feed_pulse.sync.validation import FeedValidator

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PipelineRuntime:
    """Fully wired components sharing one repository and HTTP client."""

    settings: Settings
    repository: SQLiteRepository
    client: FeedHttpClient
    engine: SyncEngine
    feed_scheduler: FeedScheduler
    scheduler: TieredSyncScheduler
    tracker: UsageTracker
    dead_letters: DeadLetterQueueManager
    clustering: ClusteringService
    pipeline: SyncPipeline
    embeddings: EmbeddingQueueProcessor | None = None
    provider: EmbeddingProvider | None = None

    def close(self) -> None:
        self.client.close()
        close_provider = getattr(self.provider, "close", None)
        if callable(close_provider):
            close_provider()
        self.repository.close()


def build_runtime(settings: Settings, *, client: FeedHttpClient | None = None) -> PipelineRuntime:
    """Build every component from settings; schema is migrated to head first."""

    repository = SQLiteRepository(settings.db_path, tenant_id=settings.tenant.tenant_id)
    repository.init_schema()
    client = client or FeedHttpClient(timeout_seconds=settings.sync.timeout_seconds)

    tracker = UsageTracker(repository, limits=settings.daily_limits())
    dead_letters = DeadLetterQueueManager(repository)

    provider: EmbeddingProvider | None
    try:
        provider = build_embedding_provider(settings.embedding)
    except ProviderUnavailable as error:
        logger.warning("Embedding enrichment disabled: %s", error)
        provider = None

    embeddings = (
        EmbeddingQueueProcessor(
            repository,
            provider,
            tracker=tracker,
            dead_letters=dead_letters,
            tenant_id=settings.tenant.tenant_id,
        )
        if provider is not None
        else None
    )
    clustering = ClusteringService(
        repository,
        tracker=tracker,
        tenant_id=settings.tenant.tenant_id,
        is_available=lambda: provider is not None
        and is_clustering_service_available(settings.embedding),
        provider=settings.embedding.provider,
        model_name=settings.embedding.model_name,
        threshold=settings.clustering.threshold,
        lookback_hours=settings.clustering.lookback_hours,
        expiration_hours=settings.clustering.expiration_hours,
        keyword_overlap_min=settings.clustering.keyword_overlap_min,
    )
    pipeline = SyncPipeline(
        repository,
        embeddings=embeddings,
        clustering=clustering,
        embedding_batch_size=settings.embedding.batch_size,
        max_attempts=settings.embedding.max_attempts,
    )

    engine = SyncEngine(repository, client=client, validator=FeedValidator(client))
    feed_scheduler = FeedScheduler(repository)
    scheduler = TieredSyncScheduler(
        feed_scheduler=feed_scheduler,
        engine=engine,
        pipeline=pipeline,
        scheduler_settings=settings.scheduler,
        sync_settings=settings.sync,
        throttle=RequestThrottle(
            requests_per_minute=settings.throttle.requests_per_minute,
            burst_limit=settings.throttle.burst_limit,
            max_backoff_seconds=settings.throttle.max_backoff_seconds,
        ),
    )
    return PipelineRuntime(
        settings=settings,
        repository=repository,
        client=client,
        engine=engine,
        feed_scheduler=feed_scheduler,
        scheduler=scheduler,
        tracker=tracker,
        dead_letters=dead_letters,
        clustering=clustering,
        pipeline=pipeline,
        embeddings=embeddings,
        provider=provider,
    )


@contextmanager
def open_runtime(settings: Settings) -> Iterator[PipelineRuntime]:
    runtime = build_runtime(settings)
    try:
        yield runtime
    finally:
        runtime.close()
