"""Feed schedule operations and the tiered recurring sync scheduler."""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta

from feed_pulse.config import SchedulerSettings, SyncSettings
from feed_pulse.errors import FeedNotFound, InvalidPriority
from feed_pulse.models import Feed, FeedScheduleUpdate, SyncPriority
from feed_pulse.scheduling.pipeline import SyncPipeline
from feed_pulse.scheduling.priority import (
    calculate_next_sync_at,
    is_syncable,
    parse_priority,
    priority_interval_hours,
)
from feed_pulse.storage.base import FeedStore
from feed_pulse.storage.common import utc_now
from feed_pulse.sync.batch import sync_feeds
from feed_pulse.sync.engine import SyncEngine
from feed_pulse.sync.models import (
    BatchSyncOptions,
    SyncableFeed,
    SyncErrorEvent,
    SyncEvent,
    SyncOptions,
    SyncProgressEvent,
    SyncRunSummary,
)
from feed_pulse.sync.throttle import RequestThrottle

logger = logging.getLogger(__name__)

HISTORY_CAPACITY = 50
STATS_WINDOW = 10
RECENT_HISTORY_SIZE = 20
HEALTHY_SUCCESS_RATE = 0.8
RETRY_TIER = "retry"
MANUAL_TIER = "manual"


class FeedScheduler:
    """Schedule bookkeeping on top of the feed store."""

    def __init__(self, storage: FeedStore, *, now: Callable[[], datetime] = utc_now) -> None:
        self._storage = storage
        self._now = now

    @property
    def storage(self) -> FeedStore:
        return self._storage

    def get_feeds_due_for_sync(
        self,
        limit: int = 100,
        *,
        priority: SyncPriority | None = None,
    ) -> list[Feed]:
        now = self._now()
        feeds = [
            feed
            for feed in self._storage.get_feeds_due_for_sync(limit=limit, now=now)
            if is_syncable(feed, now) and (priority is None or feed.sync_priority == priority)
        ]
        return feeds[:limit]

    def schedule_next_sync(self, feed_id: str, last_sync_at: datetime | None = None) -> datetime:
        feed = self._require_feed(feed_id)
        last_sync_at = last_sync_at or self._now()
        next_sync_at = calculate_next_sync_at(feed.sync_priority, last_sync_at)
        self._storage.update_feed_schedule(
            feed_id,
            FeedScheduleUpdate(
                sync_interval_hours=priority_interval_hours(feed.sync_priority),
                next_sync_at=next_sync_at,
                last_fetched_at=last_sync_at,
            ),
        )
        return next_sync_at

    def update_feed_priority(self, feed_id: str, new_priority: SyncPriority | str) -> datetime:
        """Change a feed's tier and recompute its next sync from ``last_fetched_at``."""

        priority = parse_priority(new_priority)
        feed = self._require_feed(feed_id)
        next_sync_at = calculate_next_sync_at(priority, feed.last_fetched_at or self._now())
        self._storage.update_feed_schedule(
            feed_id,
            FeedScheduleUpdate(
                sync_priority=priority,
                sync_interval_hours=priority.interval_hours,
                next_sync_at=next_sync_at,
            ),
        )
        logger.info("Feed %s priority set to %s", feed_id, priority.value)
        return next_sync_at

    def initialize_feed_schedule(self, feed_id: str, priority: SyncPriority | str) -> None:
        """Set tier and make a new feed due immediately."""

        resolved = parse_priority(priority)
        self._require_feed(feed_id)
        self._storage.update_feed_schedule(
            feed_id,
            FeedScheduleUpdate(
                sync_priority=resolved,
                sync_interval_hours=resolved.interval_hours,
                next_sync_at=self._now(),
            ),
        )

    def bulk_update_priorities(self, updates: dict[str, SyncPriority | str]) -> int:
        updated = 0
        for feed_id, priority in updates.items():
            try:
                self.update_feed_priority(feed_id, priority)
            except (FeedNotFound, InvalidPriority) as error:
                logger.warning("Priority update for feed %s failed: %s", feed_id, error)
                continue
            updated += 1
        return updated

    def trigger_manual_sync(self, feed_id: str) -> None:
        self._require_feed(feed_id)
        self._storage.update_feed_schedule(feed_id, FeedScheduleUpdate(next_sync_at=self._now()))

    def get_sync_schedule(self) -> list[Feed]:
        now = self._now()
        return sorted(
            self._storage.list_feeds(),
            key=lambda feed: (feed.next_sync_at or now, feed.feed_id),
        )

    def _require_feed(self, feed_id: str) -> Feed:
        feed = self._storage.get_feed_by_id(feed_id)
        if feed is None:
            raise FeedNotFound(feed_id)
        return feed


@dataclass(slots=True)
class TierPolicy:
    """How one priority tier is ticked and synced."""

    name: str
    tick_seconds: float
    stagger_seconds: float
    sync_options: SyncOptions
    priority: SyncPriority | None = None


@dataclass(slots=True)
class SyncHistoryEntry:
    """One tier run."""

    timestamp: datetime
    tier: str
    feed_count: int
    success_count: int
    duration_seconds: float


@dataclass(slots=True)
class SchedulerStats:
    """Health snapshot exposed to operators."""

    is_running: bool
    success_rate: float
    average_duration_seconds: float
    failed_feed_ids: list[str]
    recent_history: list[SyncHistoryEntry]
    last_sync_at: datetime | None
    next_sync_at: dict[str, datetime | None] = field(default_factory=dict)
    total_runs: int = 0


class TieredSyncScheduler:
    """One ticker per priority tier feeding a work queue drained by a worker pool.

    ``start`` launches daemon threads; ``stop`` signals them and waits. A tier run
    in progress completes before shutdown; overlapping runs of the same tier are
    skipped.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        feed_scheduler: FeedScheduler,
        engine: SyncEngine,
        pipeline: SyncPipeline | None = None,
        scheduler_settings: SchedulerSettings | None = None,
        sync_settings: SyncSettings | None = None,
        throttle: RequestThrottle | None = None,
        now: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._feeds = feed_scheduler
        self._engine = engine
        self._pipeline = pipeline
        self._settings = scheduler_settings or SchedulerSettings()
        self._sync = sync_settings or SyncSettings()
        self._throttle = throttle or RequestThrottle()
        self._now = now
        self._sleep = sleep

        self._state_lock = threading.Lock()
        self._failed_feeds: set[str] = set()
        self._history: deque[SyncHistoryEntry] = deque(maxlen=HISTORY_CAPACITY)
        self._next_fire: dict[str, datetime | None] = {}
        self._tier_locks = {
            name: threading.Lock() for name in [p.value for p in SyncPriority] + [RETRY_TIER]
        }

        self._stop = threading.Event()
        self._jobs: queue.Queue[Callable[[], object] | None] = queue.Queue()
        self._threads: list[threading.Thread] = []
        self._workers: list[threading.Thread] = []

    @property
    def is_running(self) -> bool:
        return bool(self._threads) and not self._stop.is_set()

    def tier_policies(self) -> list[TierPolicy]:
        settings = self._settings
        base = SyncOptions(
            max_articles=self._sync.max_articles,
            validate_high_priority=self._sync.validate_high_priority,
            max_retries=2,
            retry_delay_seconds=2.0,
            timeout_seconds=self._sync.timeout_seconds,
        )
        return [
            TierPolicy(
                name=SyncPriority.HIGH.value,
                priority=SyncPriority.HIGH,
                tick_seconds=settings.high_tick_hours * 3600,
                stagger_seconds=settings.high_stagger_minutes * 60,
                sync_options=replace(base, max_retries=self._sync.max_retries),
            ),
            TierPolicy(
                name=SyncPriority.MEDIUM.value,
                priority=SyncPriority.MEDIUM,
                tick_seconds=settings.medium_tick_hours * 3600,
                stagger_seconds=settings.medium_stagger_minutes * 60,
                sync_options=base,
            ),
            TierPolicy(
                name=SyncPriority.LOW.value,
                priority=SyncPriority.LOW,
                tick_seconds=settings.low_tick_hours * 3600,
                stagger_seconds=settings.low_stagger_minutes * 60,
                sync_options=base,
            ),
        ]

    def start(self) -> None:
        if self._threads:
            logger.warning("Scheduler already running")
            return
        self._stop.clear()
        for index in range(max(1, self._settings.workers)):
            worker = threading.Thread(
                target=self._worker_loop,
                daemon=True,
                name=f"sync-worker-{index}",
            )
            worker.start()
            self._workers.append(worker)

        for policy in self.tier_policies():
            self._start_ticker(
                name=policy.name,
                first_delay=policy.stagger_seconds,
                interval=policy.tick_seconds,
                job=lambda priority=policy.priority: self.run_tier(priority),
            )
        self._start_ticker(
            name=RETRY_TIER,
            first_delay=self._settings.retry_failed_first_delay_minutes * 60,
            interval=self._settings.retry_failed_after_hours * 3600,
            job=self.retry_failed_feeds,
        )
        self._start_ticker(
            name="health",
            first_delay=self._settings.health_check_first_delay_minutes * 60,
            interval=self._settings.health_check_interval_minutes * 60,
            job=self.health_check,
        )
        logger.info("Scheduler started with %s worker(s)", len(self._workers))

    def stop(self, timeout: float = 30.0) -> None:
        if not self._threads and not self._workers:
            return
        self._stop.set()
        for _ in self._workers:
            self._jobs.put(None)
        for thread in [*self._threads, *self._workers]:
            thread.join(timeout=timeout)
        self._threads.clear()
        self._workers.clear()
        logger.info("Scheduler stopped")

    def run_tier(self, priority: SyncPriority) -> SyncRunSummary | None:
        """Sync due feeds of one tier; ``None`` when nothing ran."""

        policy = next(item for item in self.tier_policies() if item.priority == priority)
        lock = self._tier_locks[policy.name]
        if not lock.acquire(blocking=False):
            logger.info("Tier %s run already in progress; skipping", policy.name)
            return None
        try:
            feeds = self._feeds.get_feeds_due_for_sync(
                self._settings.due_feeds_limit,
                priority=priority,
            )
            if not feeds:
                logger.debug("No %s-priority feeds due", policy.name)
                return None
            options = BatchSyncOptions(
                batch_size=self._sync.batch_size,
                delay_between_batches_seconds=self._sync.delay_between_batches_seconds,
                max_concurrent=self._sync.max_concurrent,
                sync_options=policy.sync_options,
            )
            return self._run_batch(feeds, options, tier=policy.name)
        finally:
            lock.release()

    def retry_failed_feeds(self) -> SyncRunSummary | None:
        """Retry previously failed feeds one at a time with conservative settings."""

        lock = self._tier_locks[RETRY_TIER]
        if not lock.acquire(blocking=False):
            return None
        try:
            with self._state_lock:
                failed_ids = sorted(self._failed_feeds)
            feeds = [
                feed
                for feed in (self._feeds.storage.get_feed_by_id(feed_id) for feed_id in failed_ids)
                if feed is not None
            ]
            if not feeds:
                return None
            logger.info("Retrying %s failed feed(s)", len(feeds))
            options = BatchSyncOptions(
                batch_size=1,
                delay_between_batches_seconds=10.0,
                max_concurrent=1,
                sync_options=SyncOptions(
                    max_articles=self._sync.max_articles,
                    validate_content=False,
                    validate_high_priority=False,
                    max_retries=1,
                    timeout_seconds=self._sync.timeout_seconds,
                ),
            )
            return self._run_batch(feeds, options, tier=RETRY_TIER)
        finally:
            lock.release()

    def sync_now(
        self,
        feeds: list[Feed],
        *,
        sync_options: SyncOptions | None = None,
        enrich: bool = True,
    ) -> SyncRunSummary:
        """Sync the given feeds immediately, outside the tier timers."""

        options = BatchSyncOptions(
            batch_size=self._sync.batch_size,
            delay_between_batches_seconds=self._sync.delay_between_batches_seconds,
            max_concurrent=self._sync.max_concurrent,
            sync_options=sync_options
            or SyncOptions(
                max_articles=self._sync.max_articles,
                validate_high_priority=self._sync.validate_high_priority,
                max_retries=self._sync.max_retries,
                retry_delay_seconds=self._sync.retry_delay_seconds,
                timeout_seconds=self._sync.timeout_seconds,
            ),
        )
        return self._run_batch(feeds, options, tier=MANUAL_TIER, enrich=enrich)

    def health_check(self) -> SchedulerStats:
        stats = self.get_stats()
        if stats.failed_feed_ids:
            logger.warning(
                "%s feed(s) failing: %s",
                len(stats.failed_feed_ids),
                ", ".join(stats.failed_feed_ids),
            )
        if stats.recent_history and stats.success_rate < HEALTHY_SUCCESS_RATE:
            logger.warning("Sync success rate is low: %.0f%%", stats.success_rate * 100)
        return stats

    def get_stats(self) -> SchedulerStats:
        with self._state_lock:
            history = list(self._history)
            failed = sorted(self._failed_feeds)
            next_fire = dict(self._next_fire)

        window = history[-STATS_WINDOW:]
        feeds_synced = sum(entry.feed_count for entry in window)
        succeeded = sum(entry.success_count for entry in window)
        return SchedulerStats(
            is_running=self.is_running,
            success_rate=succeeded / feeds_synced if feeds_synced else 1.0,
            average_duration_seconds=(
                sum(entry.duration_seconds for entry in window) / len(window) if window else 0.0
            ),
            failed_feed_ids=failed,
            recent_history=history[-RECENT_HISTORY_SIZE:],
            last_sync_at=history[-1].timestamp if history else None,
            next_sync_at=next_fire,
            total_runs=len(history),
        )

    def _run_batch(
        self,
        feeds: list[Feed],
        options: BatchSyncOptions,
        *,
        tier: str,
        enrich: bool = True,
    ) -> SyncRunSummary:
        events: queue.Queue[SyncEvent] = queue.Queue()
        options.events = events
        sync_started_at = self._now()
        started = time.monotonic()
        summary = sync_feeds(
            self._engine,
            [SyncableFeed.from_feed(feed) for feed in feeds],
            options,
            throttle=self._throttle,
            sleep=self._sleep,
        )
        self._consume_events(events)

        for result in summary.results:
            if not result.success or result.feed_id is None:
                continue
            with self._state_lock:
                self._failed_feeds.discard(result.feed_id)
            try:
                self._feeds.schedule_next_sync(result.feed_id, sync_started_at)
            except FeedNotFound:
                logger.warning("Feed %s disappeared during sync", result.feed_id)
                continue
            if self._pipeline is not None:
                try:
                    self._pipeline.on_feed_sync_complete(
                        result.feed_id,
                        sync_started_at,
                        result.articles_new,
                    )
                except Exception:  # noqa: BLE001
                    logger.exception("Failed to queue enrichment for feed %s", result.feed_id)

        duration = time.monotonic() - started
        with self._state_lock:
            self._history.append(
                SyncHistoryEntry(
                    timestamp=self._now(),
                    tier=tier,
                    feed_count=len(summary.results),
                    success_count=summary.success_count,
                    duration_seconds=duration,
                ),
            )
        logger.info(
            "Tier %s: %s/%s feed(s) synced in %.1fs",
            tier,
            summary.success_count,
            len(summary.results),
            duration,
        )

        if enrich and self._pipeline is not None:
            self._pipeline.run_enrichment()
        return summary

    def _consume_events(self, events: queue.Queue[SyncEvent]) -> None:
        while True:
            try:
                event = events.get_nowait()
            except queue.Empty:
                return
            if isinstance(event, SyncErrorEvent):
                logger.warning("Feed %s failed: %s", event.feed_url, event.error)
                if event.feed_id is not None:
                    with self._state_lock:
                        self._failed_feeds.add(event.feed_id)
            elif isinstance(event, SyncProgressEvent):
                logger.debug("Progress %s/%s: %s", event.completed, event.total, event.feed_name)

    def _start_ticker(
        self,
        *,
        name: str,
        first_delay: float,
        interval: float,
        job: Callable[[], object],
    ) -> None:
        thread = threading.Thread(
            target=self._ticker_loop,
            args=(name, first_delay, interval, job),
            daemon=True,
            name=f"ticker-{name}",
        )
        thread.start()
        self._threads.append(thread)

    def _ticker_loop(
        self,
        name: str,
        first_delay: float,
        interval: float,
        job: Callable[[], object],
    ) -> None:
        delay = first_delay
        while True:
            with self._state_lock:
                self._next_fire[name] = self._now() + timedelta(seconds=delay)
            if self._stop.wait(delay):
                return
            self._jobs.put(job)
            delay = interval

    def _worker_loop(self) -> None:
        while True:
            job = self._jobs.get()
            try:
                if job is None:
                    return
                job()
            except Exception:  # noqa: BLE001
                logger.exception("Scheduled job failed")
            finally:
                self._jobs.task_done()
