"""CLI entrypoint for feed-pulse."""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from feed_pulse import __version__
from feed_pulse.controllers import (
    CatalogAddCommand,
    ClustersCommand,
    DeadLetterListCommand,
    DeadLetterRemoveCommand,
    DeadLetterReplayCommand,
    FeedAddCommand,
    FeedDueCommand,
    FeedHistoryCommand,
    FeedPreviewCommand,
    FeedPriorityCommand,
    FeedPulseCliController,
    FeedSyncCommand,
    PipelineRunCommand,
    SchedulerRunCommand,
    SchedulerTickCommand,
    UsageShowCommand,
)
from feed_pulse.errors import FeedPulseError
from feed_pulse.models import SyncPriority

click.rich_click.USE_MARKDOWN = True
CONTROLLER = FeedPulseCliController()
PRIORITY_CHOICES = [priority.value for priority in SyncPriority]
LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]

C = TypeVar("C")

db_path_option = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path.",
)


@click.group()
@click.version_option(version=__version__, prog_name="feed-pulse")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging verbosity.",
)
def feed_pulse(log_level: str) -> None:
    """Feed ingestion, enrichment and clustering CLI."""

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@feed_pulse.group()
def feeds() -> None:
    """Feed subscription and sync commands."""


@feeds.command("add")
@db_path_option
@click.argument("url")
@click.option("--name", default=None, help="Display name; defaults to catalog name or host.")
def feeds_add(db_path: Path | None, url: str, name: str | None) -> None:
    """Subscribe to a feed; its priority tier is derived from catalog and domain."""

    _emit_lines(_run(CONTROLLER.add_feed, FeedAddCommand(db_path=db_path, url=url, name=name)))


@feeds.command("due")
@db_path_option
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=100,
    show_default=True,
    help="Max number of feeds to list.",
)
def feeds_due(db_path: Path | None, limit: int) -> None:
    """List active feeds that are due for sync."""

    _emit_lines(_run(CONTROLLER.due_feeds, FeedDueCommand(db_path=db_path, limit=limit)))


@feeds.command("sync")
@db_path_option
@click.option("--feed-id", "feed_ids", multiple=True, help="Feed id to sync. Can be repeated.")
@click.option("--all-due", is_flag=True, default=False, help="Sync every due feed.")
def feeds_sync(db_path: Path | None, feed_ids: tuple[str, ...], all_due: bool) -> None:
    """Sync feeds now, outside the scheduler."""

    if not feed_ids and not all_due:
        raise click.UsageError("Pass --feed-id at least once or use --all-due.")
    _emit_lines(
        _run(
            CONTROLLER.sync_feeds,
            FeedSyncCommand(db_path=db_path, feed_ids=feed_ids, all_due=all_due),
        ),
    )


@feeds.command("history")
@db_path_option
@click.option("--feed-id", default=None, help="Only syncs of this feed.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=20,
    show_default=True,
    help="Max number of records to list.",
)
def feeds_history(db_path: Path | None, feed_id: str | None, limit: int) -> None:
    """List recorded syncs, newest first."""

    _emit_lines(
        _run(
            CONTROLLER.sync_history,
            FeedHistoryCommand(db_path=db_path, feed_id=feed_id, limit=limit),
        ),
    )


@feeds.command("priority")
@db_path_option
@click.argument("feed_id")
@click.argument("priority", type=click.Choice(PRIORITY_CHOICES))
def feeds_priority(db_path: Path | None, feed_id: str, priority: str) -> None:
    """Move a feed to another priority tier."""

    _emit_lines(
        _run(
            CONTROLLER.set_priority,
            FeedPriorityCommand(db_path=db_path, feed_id=feed_id, priority=priority),
        ),
    )


@feeds.command("catalog-add")
@db_path_option
@click.argument("url")
@click.option("--name", required=True, help="Catalog display name.")
@click.option(
    "--priority",
    type=click.Choice(PRIORITY_CHOICES),
    default=SyncPriority.MEDIUM.value,
    show_default=True,
    help="Default priority inherited by new subscriptions.",
)
@click.option("--category", default=None, help="Optional catalog category.")
def feeds_catalog_add(
    db_path: Path | None,
    url: str,
    name: str,
    priority: str,
    category: str | None,
) -> None:
    """Seed or update a recommended-feed catalog entry."""

    _emit_lines(
        _run(
            CONTROLLER.add_catalog_entry,
            CatalogAddCommand(
                db_path=db_path,
                url=url,
                name=name,
                priority=priority,
                category=category,
            ),
        ),
    )


@feeds.command("preview")
@click.argument("url")
@click.option(
    "--max-articles",
    type=click.IntRange(min=1, max=1000),
    default=100,
    show_default=True,
    help="Max items to extract.",
)
@click.option(
    "--validate/--no-validate",
    default=True,
    show_default=True,
    help="Run the pre-flight health and content checks.",
)
def feeds_preview(url: str, max_articles: int, validate: bool) -> None:
    """Fetch and parse any feed URL without storing anything."""

    _emit_lines(
        _run(
            CONTROLLER.preview_feed,
            FeedPreviewCommand(url=url, max_articles=max_articles, validate=validate),
        ),
    )


@feed_pulse.group()
def scheduler() -> None:
    """Tiered sync scheduler commands."""


@scheduler.command("run")
@db_path_option
@click.option("--once", is_flag=True, default=False, help="Run every tier once and exit.")
def scheduler_run(db_path: Path | None, once: bool) -> None:
    """Run the tiered scheduler until interrupted."""

    _emit_lines(
        _run(CONTROLLER.run_scheduler, SchedulerRunCommand(db_path=db_path, once=once)),
    )


@scheduler.command("tick")
@db_path_option
@click.argument("tier", type=click.Choice(PRIORITY_CHOICES))
def scheduler_tick(db_path: Path | None, tier: str) -> None:
    """Run one priority tier immediately."""

    _emit_lines(_run(CONTROLLER.tick, SchedulerTickCommand(db_path=db_path, tier=tier)))


@feed_pulse.group()
def usage() -> None:
    """Provider usage and quota commands."""


@usage.command("show")
@db_path_option
@click.option(
    "--days",
    type=click.IntRange(min=1, max=90),
    default=7,
    show_default=True,
    help="History window.",
)
def usage_show(db_path: Path | None, days: int) -> None:
    """Show today's usage, remaining quota and recent history."""

    _emit_lines(_run(CONTROLLER.show_usage, UsageShowCommand(db_path=db_path, days=days)))


@feed_pulse.group()
def dlq() -> None:
    """Dead-letter queue commands."""


@dlq.command("list")
@db_path_option
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=100,
    show_default=True,
    help="Max number of items to print.",
)
def dlq_list(db_path: Path | None, limit: int) -> None:
    """List dead-lettered enrichment work."""

    _emit_lines(
        _run(CONTROLLER.list_dead_letters, DeadLetterListCommand(db_path=db_path, limit=limit)),
    )


@dlq.command("remove")
@db_path_option
@click.argument("item_id", type=int)
def dlq_remove(db_path: Path | None, item_id: int) -> None:
    """Delete one dead-letter item."""

    _emit_lines(
        _run(
            CONTROLLER.remove_dead_letter,
            DeadLetterRemoveCommand(db_path=db_path, item_id=item_id),
        ),
    )


@dlq.command("replay")
@db_path_option
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=10,
    show_default=True,
    help="Max number of items to replay.",
)
def dlq_replay(db_path: Path | None, limit: int) -> None:
    """Requeue dead-lettered embeddings; replayed items are removed."""

    _emit_lines(
        _run(
            CONTROLLER.replay_dead_letters,
            DeadLetterReplayCommand(db_path=db_path, limit=limit),
        ),
    )


@feed_pulse.group()
def clusters() -> None:
    """Topic cluster commands."""


@clusters.command("generate")
@db_path_option
def clusters_generate(db_path: Path | None) -> None:
    """Regenerate clusters from recent embedded articles."""

    _emit_lines(_run(CONTROLLER.generate_clusters, ClustersCommand(db_path=db_path)))


@clusters.command("list")
@db_path_option
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=20,
    show_default=True,
    help="Max number of clusters to print.",
)
def clusters_list(db_path: Path | None, limit: int) -> None:
    """List active clusters by relevance."""

    _emit_lines(_run(CONTROLLER.list_clusters, ClustersCommand(db_path=db_path, limit=limit)))


@clusters.command("expire")
@db_path_option
def clusters_expire(db_path: Path | None) -> None:
    """Clear article assignments of expired clusters."""

    _emit_lines(_run(CONTROLLER.expire_clusters, ClustersCommand(db_path=db_path)))


@feed_pulse.group()
def pipeline() -> None:
    """Prefect pipeline commands."""


@pipeline.command("run")
@db_path_option
@click.option(
    "--due-limit",
    type=click.IntRange(min=1),
    default=100,
    show_default=True,
    help="Max due feeds to sync.",
)
@click.option(
    "--embedding-limit",
    type=click.IntRange(min=1),
    default=50,
    show_default=True,
    help="Max queue entries to embed.",
)
@click.option(
    "--force-clustering/--no-force-clustering",
    default=False,
    show_default=True,
    help="Regenerate clusters even when no new articles were embedded.",
)
def pipeline_run(
    db_path: Path | None,
    due_limit: int,
    embedding_limit: int,
    force_clustering: bool,
) -> None:
    """Run one sync, embed, cluster and expire cycle as a Prefect flow."""

    _emit_lines(
        _run(
            CONTROLLER.run_pipeline,
            PipelineRunCommand(
                db_path=db_path,
                due_limit=due_limit,
                embedding_limit=embedding_limit,
                force_clustering=force_clustering,
            ),
        ),
    )


def _run(handler: Callable[[C], list[str]], command: C) -> list[str]:
    try:
        return handler(command)
    except (FeedPulseError, ValueError, LookupError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    feed_pulse()
