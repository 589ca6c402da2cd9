from __future__ import annotations

from datetime import UTC, datetime, timedelta

import allure

from feed_pulse.enrichment.batch import (
    BatchProcessor,
    DeadLetterQueueManager,
    RequestQueueManager,
    execute_with_rate_limiting,
)
from feed_pulse.enrichment.usage import UsageTracker
from feed_pulse.errors import BudgetExceeded
from feed_pulse.models import AIOperation
from feed_pulse.storage.memory import InMemoryUsageStore

pytestmark = [
    allure.epic("Enrichment"),
    allure.feature("Budgeted Batches & Dead Letters"),
]

TENANT = "tenant-a"
NOW = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)


def _processor(
    store: InMemoryUsageStore,
    *,
    limits: dict[str, int] | None = None,
    sleeps: list[float] | None = None,
) -> BatchProcessor:
    return BatchProcessor(
        operation=AIOperation.EMBEDDING,
        provider="openai",
        tracker=UsageTracker(store, limits=limits, now=lambda: NOW),
        dead_letters=DeadLetterQueueManager(store),
        sleep=(sleeps if sleeps is not None else []).append,
    )


def test_rate_limited_item_is_dead_lettered_and_batch_continues() -> None:
    store = InMemoryUsageStore()
    sleeps: list[float] = []
    calls: list[int] = []

    def process(item: dict) -> str:
        calls.append(item["id"])
        if item["id"] == 2:
            raise RuntimeError("429 Too Many Requests")
        return f"done-{item['id']}"

    result = _processor(store, sleeps=sleeps).process_batch(
        [{"id": 1}, {"id": 2}, {"id": 3}],
        process,
        tenant_id=TENANT,
    )

    assert [outcome.result for outcome in result.successful] == ["done-1", "done-3"]
    assert result.failed == []
    (dead,) = result.dead_lettered
    assert dead.item == {"id": 2}
    assert dead.attempts == 3
    assert calls == [1, 2, 2, 2, 3]
    assert sleeps == [1.0, 2.0]

    (item,) = store.list_dead_letters(limit=10)
    assert item.operation == "embedding"
    assert item.payload == {"id": 2}
    assert item.attempts == 3
    assert item.tenant_id == TENANT
    assert "429" in item.error


def test_non_retryable_error_fails_without_dead_letter() -> None:
    store = InMemoryUsageStore()

    def process(item: str) -> str:
        raise ValueError(f"cannot embed {item}")

    result = _processor(store).process_batch(["a"], process, tenant_id=TENANT)

    assert [(outcome.item, outcome.attempts) for outcome in result.failed] == [("a", 1)]
    assert result.dead_lettered == []
    assert store.count_dead_letters() == 0


def test_exhausted_budget_refuses_items_without_calling_provider() -> None:
    store = InMemoryUsageStore()
    processor = _processor(store, limits={"embedding": 1})
    UsageTracker(store, limits={"embedding": 1}, now=lambda: NOW).record_success(
        TENANT,
        operation=AIOperation.EMBEDDING,
        provider="openai",
        model="text-embedding-3-small",
    )
    calls: list[str] = []

    result = processor.process_batch(["a", "b"], calls.append, tenant_id=TENANT)

    assert calls == []
    assert [outcome.attempts for outcome in result.failed] == [0, 0]
    assert result.failed[0].error == "Daily embedding limit of 1 reached. Resets at midnight UTC."


def test_dead_letter_replay_removes_successes_only() -> None:
    store = InMemoryUsageStore()
    manager = DeadLetterQueueManager(store)
    for article_id in ("good", "bad"):
        manager.add_to_queue(
            operation="embedding",
            provider="openai",
            payload={"article_id": article_id},
            error="HTTP 503",
            attempts=3,
        )

    def handler(item) -> None:
        if item.payload["article_id"] == "bad":
            raise LookupError("article vanished")

    report = manager.retry_items(handler, limit=10)

    assert (report.succeeded, report.failed, report.remaining) == (1, 1, 1)
    assert [item.payload["article_id"] for item in manager.get_items()] == ["bad"]
    assert manager.remove_item(manager.get_items()[0].item_id)
    assert not manager.remove_item(999)
    assert manager.count() == 0


def test_deferred_requests_wait_for_midnight_and_requeue_failures() -> None:
    clock = {"now": NOW}
    manager = RequestQueueManager(now=lambda: clock["now"])
    first, _ = (
        manager.queue_request(
            tenant_id=TENANT,
            operation=AIOperation.SUMMARY,
            payload={"a": index},
        )
        for index in (1, 2)
    )
    handled: list[dict] = []

    assert first.scheduled_for == datetime(2026, 10, 19, tzinfo=UTC)
    assert manager.process_queued_requests(lambda request: handled.append(request.payload)) == 0

    clock["now"] = NOW + timedelta(hours=12)

    def handler(request) -> None:
        if request.payload["a"] == 2:
            raise RuntimeError("still failing")
        handled.append(request.payload)

    assert manager.process_queued_requests(handler) == 1
    assert handled == [{"a": 1}]
    assert [request.payload for request in manager.pending()] == [{"a": 2}]


def _rejected_prompt() -> str:
    raise ValueError("bad prompt")


def test_execute_with_rate_limiting_records_one_usage_per_call() -> None:
    store = InMemoryUsageStore()
    tracker = UsageTracker(store, limits={"summary": 2}, now=lambda: NOW)
    failures = [TimeoutError("timed out")]

    def call() -> str:
        if failures:
            raise failures.pop(0)
        return "summary text"

    outcome = execute_with_rate_limiting(
        tracker,
        TENANT,
        call,
        operation=AIOperation.SUMMARY,
        provider="openai",
        model="gpt-4o-mini",
        token_counter=lambda text: (len(text.split()), 5),
        sleep=lambda _: None,
    )

    assert outcome.success
    assert outcome.attempts == 2
    (entry,) = store.usage_log()
    assert (entry.input_tokens, entry.output_tokens, entry.success) == (2, 5, True)

    execute_with_rate_limiting(
        tracker,
        TENANT,
        _rejected_prompt,
        operation=AIOperation.SUMMARY,
        provider="openai",
        model="gpt-4o-mini",
        sleep=lambda _: None,
    )
    refused = execute_with_rate_limiting(
        tracker,
        TENANT,
        call,
        operation=AIOperation.SUMMARY,
        provider="openai",
        model="gpt-4o-mini",
    )

    assert [entry.success for entry in store.usage_log()] == [True, False]
    assert refused.attempts == 0
    assert isinstance(refused.error, BudgetExceeded)
