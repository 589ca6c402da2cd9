"""Clustering runs over stored embeddings: gating, budgeting, persistence and listings."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Protocol

from feed_pulse.clustering.cluster import (
    CLUSTER_EXPIRATION_HOURS,
    DEFAULT_CLUSTER_THRESHOLD,
    ArticleGroup,
    build_cluster_id,
    form_clusters,
)
from feed_pulse.clustering.similarity import SimilarArticle, find_similar_articles
from feed_pulse.config import EmbeddingSettings
from feed_pulse.enrichment.usage import UsageTracker
from feed_pulse.models import AIOperation, Cluster
from feed_pulse.storage.base import ArticleStore, ClusterStore
from feed_pulse.storage.common import utc_now
from feed_pulse.sync.cleaning import truncate

logger = logging.getLogger(__name__)

TOPIC_MAX_CHARS = 100
SUMMARY_MAX_CHARS = 200


class ClusteringStorage(ArticleStore, ClusterStore, Protocol):
    """Storage surface of the clustering service."""


@dataclass(slots=True)
class ClusteringRunResult:
    """Outcome of one clustering run."""

    status: str
    clusters: list[Cluster] = field(default_factory=list)
    articles_considered: int = 0
    superseded: int = 0
    reason: str | None = None


def is_clustering_service_available(settings: EmbeddingSettings) -> bool:
    """Whether the embedding provider credential is configured."""

    if settings.provider == "openai":
        return bool(settings.api_key)
    return True


class ClusteringService:
    """Forms topic clusters for one tenant and keeps them fresh."""

    def __init__(  # noqa: PLR0913
        self,
        storage: ClusteringStorage,
        *,
        tracker: UsageTracker,
        tenant_id: str,
        is_available: Callable[[], bool],
        provider: str,
        model_name: str,
        threshold: float = DEFAULT_CLUSTER_THRESHOLD,
        lookback_hours: int = 48,
        expiration_hours: int = CLUSTER_EXPIRATION_HOURS,
        keyword_overlap_min: int = 0,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self._storage = storage
        self._tracker = tracker
        self._tenant_id = tenant_id
        self._is_available = is_available
        self._provider = provider
        self._model_name = model_name
        self._threshold = threshold
        self._lookback = timedelta(hours=lookback_hours)
        self._expiration = timedelta(hours=expiration_hours)
        self._keyword_overlap_min = keyword_overlap_min
        self._now = now

    def generate_clusters(self) -> ClusteringRunResult:
        if not self._is_available():
            logger.info("Clustering skipped: embedding provider is not configured")
            return ClusteringRunResult(
                status="skipped",
                reason="Embedding provider credential is not configured",
            )

        check = self._tracker.can_make_request(self._tenant_id, AIOperation.CLUSTERING)
        if not check.allowed:
            logger.info("Clustering skipped for tenant %s: %s", self._tenant_id, check.reason)
            return ClusteringRunResult(status="budget_exceeded", reason=check.reason)

        now = self._now()
        articles = self._storage.list_embedded_articles(since=now - self._lookback)
        groups = form_clusters(
            articles,
            self._threshold,
            keyword_overlap_min=self._keyword_overlap_min,
        )
        superseded = self._storage.supersede_active_clusters(now=now)

        clusters: list[Cluster] = []
        for group in groups:
            cluster = self._build_cluster(group, now)
            self._storage.create_cluster(cluster)
            self._storage.assign_articles_to_cluster(
                cluster_id=cluster.cluster_id,
                article_ids=cluster.article_ids,
            )
            clusters.append(cluster)

        self._tracker.record_success(
            self._tenant_id,
            operation=AIOperation.CLUSTERING,
            provider=self._provider,
            model=self._model_name,
        )
        logger.info(
            "Formed %s cluster(s) from %s article(s); superseded %s",
            len(clusters),
            len(articles),
            superseded,
        )
        return ClusteringRunResult(
            status="completed",
            clusters=clusters,
            articles_considered=len(articles),
            superseded=superseded,
        )

    def list_clusters(self, limit: int = 20) -> list[Cluster]:
        return self._storage.list_active_clusters(now=self._now(), limit=limit)

    def expire_old_clusters(self) -> int:
        expired = self._storage.expire_clusters(now=self._now())
        if expired:
            logger.info("Expired %s cluster(s)", expired)
        return expired

    def find_related(
        self,
        article_id: str,
        *,
        threshold: float = 0.7,
        max_results: int = 5,
    ) -> list[SimilarArticle]:
        found = self._storage.get_articles([article_id])
        if not found:
            return []
        candidates = self._storage.list_embedded_articles(since=self._now() - self._lookback)
        return find_similar_articles(
            found[0],
            candidates,
            threshold=threshold,
            max_results=max_results,
        )

    def _build_cluster(self, group: ArticleGroup, now: datetime) -> Cluster:
        lead = group.articles[0]
        dates = [
            value
            for value in (article.published_at or article.created_at for article in group.articles)
            if value is not None
        ]
        return Cluster(
            cluster_id=build_cluster_id(group.article_ids, now),
            tenant_id=self._tenant_id,
            topic=truncate(lead.title, TOPIC_MAX_CHARS),
            summary=truncate(lead.excerpt, SUMMARY_MAX_CHARS) if lead.excerpt else None,
            article_ids=group.article_ids,
            source_feed_ids=group.source_feed_ids,
            avg_similarity=group.avg_similarity,
            relevance_score=float(group.relevance_score),
            timeframe_start=min(dates) if dates else None,
            timeframe_end=max(dates) if dates else None,
            created_at=now,
            expires_at=now + self._expiration,
        )
