"""Controllers for feed-pulse CLI commands."""

from __future__ import annotations

import threading
from collections.abc import Callable
from contextlib import AbstractContextManager
from dataclasses import dataclass
from pathlib import Path

from feed_pulse.config import Settings
from feed_pulse.enrichment.embeddings import requeue_embedding_item
from feed_pulse.errors import FeedNotFound
from feed_pulse.flows import feed_pipeline_flow
from feed_pulse.http.fetcher import FeedHttpClient
from feed_pulse.models import Cluster, Feed, FeedSyncLog, RecommendedFeed, SyncPriority
from feed_pulse.runtime import PipelineRuntime, open_runtime
from feed_pulse.scheduling.priority import determine_new_feed_priority, parse_priority
from feed_pulse.scheduling.scheduler import SchedulerStats
from feed_pulse.sync.cleaning import extract_domain
from feed_pulse.sync.engine import SyncEngine
from feed_pulse.sync.models import SyncableFeed, SyncOptions, SyncResult, SyncRunSummary

RuntimeFactory = Callable[[Settings], AbstractContextManager[PipelineRuntime]]


@dataclass(slots=True)
class FeedAddCommand:
    """CLI inputs for adding a feed."""

    db_path: Path | None
    url: str
    name: str | None


@dataclass(slots=True)
class FeedDueCommand:
    """CLI inputs for listing due feeds."""

    db_path: Path | None
    limit: int


@dataclass(slots=True)
class FeedSyncCommand:
    """CLI inputs for an on-demand sync."""

    db_path: Path | None
    feed_ids: tuple[str, ...]
    all_due: bool


@dataclass(slots=True)
class FeedHistoryCommand:
    """CLI inputs for listing recorded syncs."""

    db_path: Path | None
    feed_id: str | None
    limit: int


@dataclass(slots=True)
class FeedPriorityCommand:
    """CLI inputs for changing a feed's priority tier."""

    db_path: Path | None
    feed_id: str
    priority: str


@dataclass(slots=True)
class CatalogAddCommand:
    """CLI inputs for seeding a catalog entry."""

    db_path: Path | None
    url: str
    name: str
    priority: str
    category: str | None


@dataclass(slots=True)
class FeedPreviewCommand:
    """CLI inputs for a non-persisting fetch of any feed URL."""

    url: str
    max_articles: int
    validate: bool


@dataclass(slots=True)
class SchedulerRunCommand:
    """CLI inputs for running the tiered scheduler."""

    db_path: Path | None
    once: bool


@dataclass(slots=True)
class SchedulerTickCommand:
    """CLI inputs for running one tier immediately."""

    db_path: Path | None
    tier: str


@dataclass(slots=True)
class UsageShowCommand:
    db_path: Path | None
    days: int


@dataclass(slots=True)
class DeadLetterListCommand:
    db_path: Path | None
    limit: int


@dataclass(slots=True)
class DeadLetterRemoveCommand:
    db_path: Path | None
    item_id: int


@dataclass(slots=True)
class DeadLetterReplayCommand:
    db_path: Path | None
    limit: int


@dataclass(slots=True)
class ClustersCommand:
    """CLI inputs shared by cluster commands."""

    db_path: Path | None
    limit: int = 20


@dataclass(slots=True)
class PipelineRunCommand:
    """CLI inputs for one Prefect pipeline cycle."""

    db_path: Path | None
    due_limit: int
    embedding_limit: int
    force_clustering: bool


class FeedPulseCliController:
    """Coordinates CLI command execution against a wired runtime."""

    def __init__(
        self,
        *,
        runtime_factory: RuntimeFactory = open_runtime,
        client_factory: Callable[[], FeedHttpClient] = FeedHttpClient,
        wait_for_shutdown: Callable[[], None] | None = None,
    ) -> None:
        self._runtime_factory = runtime_factory
        self._client_factory = client_factory
        self._wait_for_shutdown = wait_for_shutdown or _wait_forever

    def add_feed(self, command: FeedAddCommand) -> list[str]:
        with self._runtime(command.db_path) as runtime:
            repository = runtime.repository
            existing = repository.get_feed_by_url(command.url)
            if existing is not None:
                return [f"Feed already exists: {existing.feed_id} ({existing.url})"]

            catalog = repository.get_recommended_feed_by_url(command.url)
            priority = determine_new_feed_priority(
                command.url,
                repository.get_recommended_feed_by_url,
            )
            name = command.name or (catalog.name if catalog else extract_domain(command.url))
            feed = repository.add_feed(url=command.url, name=name, priority=priority)
            runtime.feed_scheduler.initialize_feed_schedule(feed.feed_id, priority)
        return [
            f"Feed added: feed_id={feed.feed_id} name={name} priority={priority.value}",
        ]

    def due_feeds(self, command: FeedDueCommand) -> list[str]:
        with self._runtime(command.db_path) as runtime:
            feeds = runtime.feed_scheduler.get_feeds_due_for_sync(command.limit)
        if not feeds:
            return ["No feeds due for sync."]
        return [f"Feeds due: {len(feeds)}", *(_format_feed(feed) for feed in feeds)]

    def sync_feeds(self, command: FeedSyncCommand) -> list[str]:
        if not command.feed_ids and not command.all_due:
            raise ValueError("Pass --feed-id at least once or use --all-due.")
        with self._runtime(command.db_path) as runtime:
            feeds: list[Feed] = []
            for feed_id in command.feed_ids:
                feed = runtime.repository.get_feed_by_id(feed_id)
                if feed is None:
                    raise FeedNotFound(feed_id)
                feeds.append(feed)
            if command.all_due:
                known = {feed.feed_id for feed in feeds}
                feeds.extend(
                    feed
                    for feed in runtime.feed_scheduler.get_feeds_due_for_sync(
                        runtime.settings.scheduler.due_feeds_limit,
                    )
                    if feed.feed_id not in known
                )
            if not feeds:
                return ["No feeds to sync."]
            summary = runtime.scheduler.sync_now(feeds)
        return _summary_lines(summary)

    def sync_history(self, command: FeedHistoryCommand) -> list[str]:
        with self._runtime(command.db_path) as runtime:
            if command.feed_id is not None and (
                runtime.repository.get_feed_by_id(command.feed_id) is None
            ):
                raise FeedNotFound(command.feed_id)
            logs = runtime.repository.list_feed_sync_logs(
                feed_id=command.feed_id,
                limit=command.limit,
            )
        if not logs:
            return ["No syncs recorded."]
        return [f"Recorded syncs: {len(logs)}", *(_format_sync_log(log) for log in logs)]

    def set_priority(self, command: FeedPriorityCommand) -> list[str]:
        with self._runtime(command.db_path) as runtime:
            next_sync_at = runtime.feed_scheduler.update_feed_priority(
                command.feed_id,
                command.priority,
            )
        return [
            f"Feed {command.feed_id} priority={command.priority} "
            f"next_sync_at={next_sync_at.isoformat()}",
        ]

    def add_catalog_entry(self, command: CatalogAddCommand) -> list[str]:
        priority = parse_priority(command.priority)
        with self._runtime(command.db_path) as runtime:
            runtime.repository.add_recommended_feed(
                RecommendedFeed(
                    url=command.url,
                    name=command.name,
                    default_priority=priority,
                    category=command.category,
                ),
            )
        return [f"Catalog entry saved: {command.url} default_priority={priority.value}"]

    def preview_feed(self, command: FeedPreviewCommand) -> list[str]:
        with self._client_factory() as client:
            engine = SyncEngine(None, client=client)
            result = engine.sync_feed(
                SyncableFeed(url=command.url, name=extract_domain(command.url)),
                SyncOptions(max_articles=command.max_articles, validate_content=command.validate),
            )
        return [_format_result(result)]

    def run_scheduler(self, command: SchedulerRunCommand) -> list[str]:
        with self._runtime(command.db_path) as runtime:
            scheduler = runtime.scheduler
            if command.once:
                lines: list[str] = []
                for priority in SyncPriority:
                    summary = scheduler.run_tier(priority)
                    if summary is None:
                        lines.append(f"Tier {priority.value}: nothing due")
                        continue
                    lines.append(f"Tier {priority.value}:")
                    lines.extend(f"  {line}" for line in _summary_lines(summary))
                return [*lines, *_stats_lines(scheduler.get_stats())]

            scheduler.start()
            try:
                self._wait_for_shutdown()
            except KeyboardInterrupt:
                pass
            finally:
                scheduler.stop()
            return _stats_lines(scheduler.get_stats())

    def tick(self, command: SchedulerTickCommand) -> list[str]:
        priority = parse_priority(command.tier)
        with self._runtime(command.db_path) as runtime:
            summary = runtime.scheduler.run_tier(priority)
        if summary is None:
            return [f"Tier {priority.value}: nothing due"]
        return _summary_lines(summary)

    def show_usage(self, command: UsageShowCommand) -> list[str]:
        with self._runtime(command.db_path) as runtime:
            tenant_id = runtime.settings.tenant.tenant_id
            snapshot = runtime.tracker.get_usage_stats(tenant_id)
            history = runtime.tracker.get_historical_usage(tenant_id, days=command.days)

        lines = [f"Usage for tenant {tenant_id} on {snapshot.usage_date.isoformat()}:"]
        for operation, limit in sorted(snapshot.limits.items()):
            lines.append(
                f"  {operation}: used={snapshot.counts.get(operation, 0)} "
                f"limit={limit} remaining={snapshot.remaining.get(operation, limit)}",
            )
        lines.append(f"  cost_usd={snapshot.total_cost_usd:.6f}")
        if snapshot.reset_at is not None:
            lines.append(f"  resets_at={snapshot.reset_at.isoformat()}")
        if history:
            lines.append(f"Last {command.days} day(s):")
            lines.extend(
                f"  {row.usage_date.isoformat()} embeddings={row.embeddings_count} "
                f"clusterings={row.clusterings_count} searches={row.searches_count} "
                f"summaries={row.summaries_count} cost_usd={row.total_cost_usd:.6f}"
                for row in history
            )
        return lines

    def list_dead_letters(self, command: DeadLetterListCommand) -> list[str]:
        with self._runtime(command.db_path) as runtime:
            items = runtime.dead_letters.get_items(command.limit)
            total = runtime.dead_letters.count()
        if not items:
            return ["Dead-letter queue is empty."]
        return [
            f"Dead-letter items: {total}",
            *(
                f"  id={item.item_id} operation={item.operation} provider={item.provider} "
                f"attempts={item.attempts} created_at={item.created_at.isoformat()} "
                f"error={item.error}"
                for item in items
            ),
        ]

    def remove_dead_letter(self, command: DeadLetterRemoveCommand) -> list[str]:
        with self._runtime(command.db_path) as runtime:
            removed = runtime.dead_letters.remove_item(command.item_id)
        if not removed:
            return [f"Dead-letter item not found: {command.item_id}"]
        return [f"Dead-letter item removed: {command.item_id}"]

    def replay_dead_letters(self, command: DeadLetterReplayCommand) -> list[str]:
        with self._runtime(command.db_path) as runtime:
            repository = runtime.repository
            report = runtime.dead_letters.retry_items(
                lambda item: requeue_embedding_item(repository, item),
                limit=command.limit,
            )
        return [
            f"Replayed: succeeded={report.succeeded} failed={report.failed} "
            f"remaining={report.remaining}",
        ]

    def generate_clusters(self, command: ClustersCommand) -> list[str]:
        with self._runtime(command.db_path) as runtime:
            result = runtime.clustering.generate_clusters()
        lines = [
            f"Clustering {result.status}: clusters={len(result.clusters)} "
            f"articles={result.articles_considered} superseded={result.superseded}",
        ]
        if result.reason:
            lines.append(f"  reason: {result.reason}")
        lines.extend(_format_cluster(cluster) for cluster in result.clusters)
        return lines

    def list_clusters(self, command: ClustersCommand) -> list[str]:
        with self._runtime(command.db_path) as runtime:
            clusters = runtime.clustering.list_clusters(command.limit)
        if not clusters:
            return ["No active clusters."]
        return [f"Active clusters: {len(clusters)}", *(_format_cluster(c) for c in clusters)]

    def expire_clusters(self, command: ClustersCommand) -> list[str]:
        with self._runtime(command.db_path) as runtime:
            expired = runtime.clustering.expire_old_clusters()
        return [f"Expired clusters: {expired}"]

    def run_pipeline(self, command: PipelineRunCommand) -> list[str]:
        lines: list[str] = []
        with self._runtime(command.db_path) as runtime:
            report = feed_pipeline_flow(
                runtime=runtime,
                due_limit=command.due_limit,
                embedding_limit=command.embedding_limit,
                force_clustering=command.force_clustering,
                on_progress=lines.append,
            )
        lines.append(f"Expired clusters: {report.clusters_expired}")
        return lines

    def _runtime(self, db_path: Path | None) -> AbstractContextManager[PipelineRuntime]:
        settings = Settings.from_env(db_path=db_path)
        settings.validate()
        return self._runtime_factory(settings)


def _wait_forever() -> None:
    threading.Event().wait()


def _format_feed(feed: Feed) -> str:
    next_sync = feed.next_sync_at.isoformat() if feed.next_sync_at else "now"
    return (
        f"  {feed.feed_id} priority={feed.sync_priority.value} status={feed.status.value} "
        f"next_sync_at={next_sync} url={feed.url}"
    )


def _format_result(result: SyncResult) -> str:
    line = (
        f"  {'ok' if result.success else 'FAILED'} {result.feed_url} "
        f"status={result.http_status_code or '-'} found={result.articles_found} "
        f"new={result.articles_new} updated={result.articles_updated} "
        f"skipped={result.articles_skipped} retries={result.retry_count} "
        f"duration_ms={result.sync_duration_ms}"
    )
    if result.error:
        line += f" error={result.error}"
    return line


def _format_sync_log(log: FeedSyncLog) -> str:
    line = (
        f"  {log.started_at.isoformat()} {log.feed_id} {log.status.value} "
        f"status={log.http_status_code or '-'} found={log.articles_found} "
        f"new={log.articles_new} updated={log.articles_updated} "
        f"retries={log.retry_count} duration_ms={log.duration_ms}"
    )
    if log.error:
        line += f" error={log.error_code or '-'}: {log.error}"
    return line


def _summary_lines(summary: SyncRunSummary) -> list[str]:
    lines = [
        f"Synced {summary.success_count}/{len(summary.results)} feed(s): "
        f"new_articles={summary.articles_new} failed={summary.failure_count}"
        + (" (stopped early)" if summary.stopped_early else ""),
    ]
    lines.extend(_format_result(result) for result in summary.results)
    return lines


def _stats_lines(stats: SchedulerStats) -> list[str]:
    last_sync = stats.last_sync_at.isoformat() if stats.last_sync_at else "-"
    return [
        f"Scheduler: runs={stats.total_runs} success_rate={stats.success_rate:.0%} "
        f"avg_duration={stats.average_duration_seconds:.1f}s last_sync={last_sync}",
        f"Failed feeds: {', '.join(stats.failed_feed_ids) or '-'}",
    ]


def _format_cluster(cluster: Cluster) -> str:
    return (
        f"  {cluster.cluster_id[:12]} relevance={cluster.relevance_score:g} "
        f"articles={cluster.article_count} sources={cluster.source_count} "
        f"similarity={cluster.avg_similarity:.2f} topic={cluster.topic}"
    )
