"""Budgeted batch processing, dead-letter queue and deferred request queue."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Generic, TypeVar

from feed_pulse.enrichment.retry import (
    MAX_RETRY_ATTEMPTS,
    RETRY_DELAYS_MS,
    RetryResult,
    with_exponential_backoff,
)
from feed_pulse.enrichment.usage import UsageTracker
from feed_pulse.errors import BudgetExceeded
from feed_pulse.models import AIOperation, DeadLetterItem
from feed_pulse.storage.base import UsageStore
from feed_pulse.storage.common import next_utc_midnight, utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass(slots=True)
class ItemOutcome(Generic[T, R]):
    """Processing outcome of one batch item."""

    item: T
    attempts: int
    result: R | None = None
    error: str | None = None


@dataclass(slots=True)
class BatchResult(Generic[T, R]):
    """Items partitioned by outcome."""

    successful: list[ItemOutcome[T, R]] = field(default_factory=list)
    failed: list[ItemOutcome[T, R]] = field(default_factory=list)
    dead_lettered: list[ItemOutcome[T, R]] = field(default_factory=list)


@dataclass(slots=True)
class ReplayReport:
    """Outcome of a dead-letter replay."""

    succeeded: int
    failed: int
    remaining: int


class DeadLetterQueueManager:
    """Durable record of enrichment work that exhausted its retries."""

    def __init__(self, store: UsageStore) -> None:
        self._store = store

    def add_to_queue(  # noqa: PLR0913
        self,
        *,
        operation: str,
        provider: str,
        payload: dict[str, Any],
        error: str,
        attempts: int,
        tenant_id: str | None = None,
    ) -> DeadLetterItem:
        item = self._store.add_dead_letter(
            operation=operation,
            provider=provider,
            payload=payload,
            error=error,
            attempts=attempts,
            tenant_id=tenant_id,
        )
        logger.warning(
            "Dead-lettered %s item %s after %s attempt(s): %s",
            operation,
            item.item_id,
            attempts,
            error,
        )
        return item

    def get_items(self, limit: int = 100) -> list[DeadLetterItem]:
        return self._store.list_dead_letters(limit=limit)

    def remove_item(self, item_id: int) -> bool:
        return self._store.remove_dead_letter(item_id)

    def count(self) -> int:
        return self._store.count_dead_letters()

    def retry_items(
        self,
        handler: Callable[[DeadLetterItem], object],
        *,
        limit: int = 10,
    ) -> ReplayReport:
        """Replay up to ``limit`` items; successful replays are removed."""

        succeeded = 0
        failed = 0
        for item in self.get_items(limit):
            try:
                handler(item)
            except Exception:  # noqa: BLE001
                logger.exception("Replay of dead-letter item %s failed", item.item_id)
                failed += 1
                continue
            self.remove_item(item.item_id)
            succeeded += 1
        return ReplayReport(succeeded=succeeded, failed=failed, remaining=self.count())


class BatchProcessor(Generic[T, R]):
    """Runs each item through ``process_fn`` under exponential backoff.

    Items are routed to ``successful``, ``failed`` (non-retryable error or refused
    by the daily budget) or ``dead_lettered`` (retries exhausted). One item's
    failure never aborts the rest of the batch.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        operation: AIOperation,
        provider: str,
        tracker: UsageTracker | None = None,
        dead_letters: DeadLetterQueueManager | None = None,
        max_attempts: int = MAX_RETRY_ATTEMPTS,
        delays_ms: tuple[int, ...] = RETRY_DELAYS_MS,
        payload_builder: Callable[[T], dict[str, Any]] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.operation = operation
        self.provider = provider
        self._tracker = tracker
        self._dead_letters = dead_letters
        self._max_attempts = max_attempts
        self._delays_ms = delays_ms
        self._payload_builder = payload_builder or _default_payload
        self._sleep = sleep

    def process_batch(
        self,
        items: list[T],
        process_fn: Callable[[T], R],
        *,
        tenant_id: str | None = None,
    ) -> BatchResult[T, R]:
        batch: BatchResult[T, R] = BatchResult()
        for item in items:
            if self._tracker is not None and tenant_id is not None:
                check = self._tracker.can_make_request(tenant_id, self.operation)
                if not check.allowed:
                    refusal = BudgetExceeded(
                        check.reason or "Daily limit reached",
                        operation=self.operation.value,
                        limit=check.daily_limit,
                    )
                    batch.failed.append(ItemOutcome(item=item, attempts=0, error=str(refusal)))
                    continue

            outcome: RetryResult[R] = with_exponential_backoff(
                lambda item=item: process_fn(item),
                max_attempts=self._max_attempts,
                delays_ms=self._delays_ms,
                sleep=self._sleep,
            )
            if outcome.success:
                batch.successful.append(
                    ItemOutcome(item=item, attempts=outcome.attempts, result=outcome.result),
                )
                continue

            record = ItemOutcome(
                item=item,
                attempts=outcome.attempts,
                error=outcome.error_message or "unknown error",
            )
            if outcome.exhausted:
                batch.dead_lettered.append(record)
                if self._dead_letters is not None:
                    self._dead_letters.add_to_queue(
                        operation=self.operation.value,
                        provider=self.provider,
                        payload=self._payload_builder(item),
                        error=record.error or "unknown error",
                        attempts=outcome.attempts,
                        tenant_id=tenant_id,
                    )
            else:
                batch.failed.append(record)

        logger.info(
            "%s batch: %s succeeded, %s failed, %s dead-lettered",
            self.operation.value,
            len(batch.successful),
            len(batch.failed),
            len(batch.dead_lettered),
        )
        return batch


@dataclass(slots=True)
class QueuedRequest:
    """Request deferred until the tenant's quota resets."""

    request_id: int
    tenant_id: str
    operation: AIOperation
    payload: dict[str, Any]
    scheduled_for: datetime
    created_at: datetime


class RequestQueueManager:
    """Holds over-budget requests until the next UTC midnight."""

    def __init__(self, *, now: Callable[[], datetime] = utc_now) -> None:
        self._now = now
        self._lock = threading.Lock()
        self._queue: list[QueuedRequest] = []
        self._next_id = 1

    def queue_request(
        self,
        *,
        tenant_id: str,
        operation: AIOperation,
        payload: dict[str, Any],
    ) -> QueuedRequest:
        now = self._now()
        with self._lock:
            request = QueuedRequest(
                request_id=self._next_id,
                tenant_id=tenant_id,
                operation=operation,
                payload=dict(payload),
                scheduled_for=next_utc_midnight(now),
                created_at=now,
            )
            self._next_id += 1
            self._queue.append(request)
        logger.info(
            "Deferred %s request for tenant %s until %s",
            operation.value,
            tenant_id,
            request.scheduled_for.isoformat(),
        )
        return request

    def pending(self) -> list[QueuedRequest]:
        with self._lock:
            return list(self._queue)

    def process_queued_requests(self, handler: Callable[[QueuedRequest], object]) -> int:
        """Hand due requests to ``handler``; failed ones are requeued. Returns handled count."""

        now = self._now()
        with self._lock:
            due = [request for request in self._queue if request.scheduled_for <= now]
            self._queue = [request for request in self._queue if request.scheduled_for > now]

        handled = 0
        requeue: list[QueuedRequest] = []
        for request in due:
            try:
                handler(request)
            except Exception:  # noqa: BLE001
                logger.exception("Deferred request %s failed; requeueing", request.request_id)
                requeue.append(request)
                continue
            handled += 1

        if requeue:
            with self._lock:
                self._queue.extend(requeue)
        return handled


def execute_with_rate_limiting(  # noqa: PLR0913
    tracker: UsageTracker,
    tenant_id: str,
    fn: Callable[[], R],
    *,
    operation: AIOperation,
    provider: str,
    model: str,
    token_counter: Callable[[R], tuple[int, int]] | None = None,
    max_attempts: int = MAX_RETRY_ATTEMPTS,
    delays_ms: tuple[int, ...] = RETRY_DELAYS_MS,
    sleep: Callable[[float], None] = time.sleep,
) -> RetryResult[R]:
    """Budget check, backoff and one usage record for a single provider call."""

    check = tracker.can_make_request(tenant_id, operation)
    if not check.allowed:
        return RetryResult(
            success=False,
            attempts=0,
            error=BudgetExceeded(
                check.reason or "Daily limit reached",
                operation=operation.value,
                limit=check.daily_limit,
            ),
        )

    outcome = with_exponential_backoff(
        fn,
        max_attempts=max_attempts,
        delays_ms=delays_ms,
        sleep=sleep,
    )
    if outcome.success:
        input_tokens, output_tokens = (0, 0)
        if token_counter and outcome.result is not None:
            input_tokens, output_tokens = token_counter(outcome.result)
        tracker.record_success(
            tenant_id,
            operation=operation,
            provider=provider,
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )
    else:
        tracker.record_failure(
            tenant_id,
            operation=operation,
            provider=provider,
            model=model,
            error=outcome.error_message or "unknown error",
        )
    return outcome


def _default_payload(item: object) -> dict[str, Any]:
    if isinstance(item, dict):
        return dict(item)
    return {"item": repr(item)}
