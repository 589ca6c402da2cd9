"""Prefect flow running one full ingestion and enrichment cycle.

Each stage runs as a Prefect task so failures and durations show up per stage
in the Prefect UI. Components come from a wired ``PipelineRuntime``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from prefect import flow, task

from feed_pulse.clustering.service import ClusteringRunResult
from feed_pulse.enrichment.embeddings import EmbeddingRunReport
from feed_pulse.runtime import PipelineRuntime
from feed_pulse.sync.models import SyncRunSummary

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PipelineCycleReport:
    """What one flow run did, stage by stage."""

    feeds_due: int = 0
    sync: SyncRunSummary | None = None
    embeddings: EmbeddingRunReport | None = None
    clustering: ClusteringRunResult | None = None
    clusters_expired: int = 0


@task
def sync_due_feeds_task(*, runtime: PipelineRuntime, limit: int) -> SyncRunSummary | None:
    feeds = runtime.feed_scheduler.get_feeds_due_for_sync(limit)
    if not feeds:
        return None
    return runtime.scheduler.sync_now(feeds, enrich=False)


@task
def process_embeddings_task(*, runtime: PipelineRuntime, limit: int) -> EmbeddingRunReport | None:
    if runtime.embeddings is None:
        return None
    return runtime.embeddings.process_queue(limit=limit)


@task
def generate_clusters_task(
    *,
    runtime: PipelineRuntime,
    force: bool,
) -> ClusteringRunResult | None:
    if force:
        return runtime.clustering.generate_clusters()
    return runtime.pipeline.on_embedding_batch_complete()


@task
def expire_clusters_task(*, runtime: PipelineRuntime) -> int:
    return runtime.clustering.expire_old_clusters()


@flow(name="feed_pipeline_flow")
def feed_pipeline_flow(
    *,
    runtime: PipelineRuntime,
    due_limit: int = 100,
    embedding_limit: int = 50,
    force_clustering: bool = False,
    on_progress: Callable[[str], None] | None = None,
) -> PipelineCycleReport:
    """Sync due feeds, embed queued articles, regenerate clusters and expire stale ones."""

    emit = on_progress or (lambda _: None)
    report = PipelineCycleReport()

    report.sync = sync_due_feeds_task(runtime=runtime, limit=due_limit)
    if report.sync is not None:
        report.feeds_due = len(report.sync.results)
        emit(
            f"Synced {report.sync.success_count}/{report.feeds_due} feed(s), "
            f"{report.sync.articles_new} new article(s)",
        )
    else:
        emit("No feeds due")

    report.embeddings = process_embeddings_task(runtime=runtime, limit=embedding_limit)
    if report.embeddings is not None:
        emit(
            f"Embeddings: completed={report.embeddings.completed} "
            f"failed={report.embeddings.failed} "
            f"dead_lettered={report.embeddings.dead_lettered} "
            f"deferred={report.embeddings.deferred}",
        )

    report.clustering = generate_clusters_task(runtime=runtime, force=force_clustering)
    if report.clustering is not None:
        emit(
            f"Clustering: status={report.clustering.status} "
            f"clusters={len(report.clustering.clusters)}",
        )

    report.clusters_expired = expire_clusters_task(runtime=runtime)
    logger.info(
        "Pipeline cycle finished: feeds=%s expired_clusters=%s",
        report.feeds_due,
        report.clusters_expired,
    )
    return report
