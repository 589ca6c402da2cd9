"""Batch driver that syncs many feeds under concurrency and rate constraints."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor

from feed_pulse.storage.common import utc_now
from feed_pulse.sync.engine import SyncEngine
from feed_pulse.sync.models import (
    BatchSyncOptions,
    SyncableFeed,
    SyncErrorEvent,
    SyncProgressEvent,
    SyncResult,
    SyncRunSummary,
)
from feed_pulse.sync.throttle import RequestThrottle

logger = logging.getLogger(__name__)


def sync_feeds(
    engine: SyncEngine,
    feeds: list[SyncableFeed],
    options: BatchSyncOptions | None = None,
    *,
    throttle: RequestThrottle | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> SyncRunSummary:
    """Sync feeds in batches; each batch runs concurrently and completes before the next starts.

    With ``fail_fast`` the driver stops issuing new batches after a batch that had
    a failure; feeds of unissued batches get no result.
    """

    options = options or BatchSyncOptions()
    throttle = throttle or RequestThrottle()
    started_at = utc_now()
    results: list[SyncResult] = []
    total = len(feeds)
    batch_size = max(1, options.batch_size)
    stopped_early = False

    with ThreadPoolExecutor(
        max_workers=max(1, options.max_concurrent),
        thread_name_prefix="feed-sync",
    ) as executor:
        for start in range(0, total, batch_size):
            if start:
                sleep(options.delay_between_batches_seconds)
            batch = feeds[start : start + batch_size]
            batch_results = list(
                executor.map(
                    lambda feed: _sync_one(engine, feed, options, throttle),
                    batch,
                ),
            )
            for feed, result in zip(batch, batch_results, strict=True):
                results.append(result)
                _emit(options, feed, result, completed=len(results), total=total)

            if options.fail_fast and any(not result.success for result in batch_results):
                stopped_early = start + batch_size < total
                if stopped_early:
                    logger.warning(
                        "Stopping batch sync after failure; %s feed(s) not attempted",
                        total - len(results),
                    )
                break

    summary = SyncRunSummary(
        results=results,
        started_at=started_at,
        finished_at=utc_now(),
        stopped_early=stopped_early,
    )
    logger.info(
        "Batch sync finished: %s/%s succeeded, %s new article(s)",
        summary.success_count,
        len(results),
        summary.articles_new,
    )
    return summary


def _sync_one(
    engine: SyncEngine,
    feed: SyncableFeed,
    options: BatchSyncOptions,
    throttle: RequestThrottle,
) -> SyncResult:
    throttle.acquire()
    return engine.sync_feed(feed, options.sync_options)


def _emit(
    options: BatchSyncOptions,
    feed: SyncableFeed,
    result: SyncResult,
    *,
    completed: int,
    total: int,
) -> None:
    if options.events is None:
        return
    if not result.success:
        options.events.put(
            SyncErrorEvent(
                feed_url=feed.url,
                feed_name=feed.name,
                feed_id=feed.feed_id,
                error=result.error or "unknown error",
            ),
        )
    options.events.put(
        SyncProgressEvent(
            completed=completed,
            total=total,
            feed_url=feed.url,
            feed_name=feed.name,
            success=result.success,
        ),
    )
