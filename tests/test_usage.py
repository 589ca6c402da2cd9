from __future__ import annotations

from datetime import UTC, datetime, timedelta

import allure
import pytest

from feed_pulse.enrichment.usage import FALLBACK_DAILY_LIMIT, UsageTracker
from feed_pulse.models import AIOperation
from feed_pulse.storage.memory import InMemoryUsageStore

pytestmark = [
    allure.epic("Enrichment"),
    allure.feature("Usage Accounting"),
]

TENANT = "tenant-a"


class _Clock:
    def __init__(self, value: datetime) -> None:
        self.value = value

    def __call__(self) -> datetime:
        return self.value


class _BrokenStore(InMemoryUsageStore):
    def append_usage_log(self, entry) -> None:
        raise RuntimeError("disk full")


@pytest.fixture()
def clock() -> _Clock:
    return _Clock(datetime(2026, 10, 18, 23, 30, tzinfo=UTC))


def test_quota_is_exhausted_at_the_limit(clock: _Clock) -> None:
    tracker = UsageTracker(InMemoryUsageStore(), limits={"embedding": 2}, now=clock)

    fresh = tracker.can_make_request(TENANT, AIOperation.EMBEDDING)
    assert (fresh.allowed, fresh.current_count, fresh.remaining) == (True, 0, 2)

    for _ in range(2):
        tracker.record_success(
            TENANT,
            operation=AIOperation.EMBEDDING,
            provider="openai",
            model="text-embedding-3-small",
            input_tokens=10,
        )

    check = tracker.can_make_request(TENANT, "embedding")
    assert not check.allowed
    assert check.remaining == 0
    assert check.current_count == 2
    assert check.reason == "Daily embedding limit of 2 reached. Resets at midnight UTC."
    assert tracker.can_make_request("tenant-b", AIOperation.EMBEDDING).allowed


def test_failures_count_against_the_quota(clock: _Clock) -> None:
    store = InMemoryUsageStore()
    tracker = UsageTracker(store, limits={"clustering": 1}, now=clock)

    tracker.record_failure(
        TENANT,
        operation=AIOperation.CLUSTERING,
        provider="openai",
        model="text-embedding-3-small",
        error="HTTP 503",
    )

    assert not tracker.can_make_request(TENANT, AIOperation.CLUSTERING).allowed
    (entry,) = store.usage_log()
    assert not entry.success
    assert entry.error == "HTTP 503"


def test_counters_reset_on_the_next_utc_day(clock: _Clock) -> None:
    store = InMemoryUsageStore()
    tracker = UsageTracker(store, limits={"search": 1}, now=clock)
    tracker.record_success(TENANT, operation=AIOperation.SEARCH, provider="openai", model="m")
    assert not tracker.can_make_request(TENANT, AIOperation.SEARCH).allowed

    clock.value += timedelta(hours=1)

    assert tracker.can_make_request(TENANT, AIOperation.SEARCH).allowed
    history = tracker.get_historical_usage(TENANT, days=7)
    assert [row.usage_date.isoformat() for row in history] == ["2026-10-18"]


def test_usage_snapshot_reports_counts_tokens_and_reset(clock: _Clock) -> None:
    tracker = UsageTracker(InMemoryUsageStore(), limits={"embedding": 5}, now=clock)
    tracker.record_success(
        TENANT,
        operation=AIOperation.EMBEDDING,
        provider="openai",
        model="text-embedding-3-small",
        input_tokens=1000,
    )

    snapshot = tracker.get_usage_stats(TENANT)

    assert snapshot.counts["embedding"] == 1
    assert snapshot.remaining["embedding"] == 4
    assert snapshot.remaining["summary"] == 50
    assert snapshot.tokens_by_provider == {"openai": 1000}
    assert snapshot.total_cost_usd == pytest.approx(0.00002)
    assert snapshot.reset_at == datetime(2026, 10, 19, tzinfo=UTC)


def test_unknown_operation_uses_fallback_limit(clock: _Clock) -> None:
    tracker = UsageTracker(InMemoryUsageStore(), now=clock)

    check = tracker.can_make_request(TENANT, "translation")

    assert check.allowed
    assert check.daily_limit == FALLBACK_DAILY_LIMIT


def test_recording_failures_in_storage_are_swallowed(clock: _Clock) -> None:
    tracker = UsageTracker(_BrokenStore(), now=clock)

    tracker.record_success(TENANT, operation=AIOperation.SUMMARY, provider="openai", model="m")

    assert tracker.can_make_request(TENANT, AIOperation.SUMMARY).current_count == 0
