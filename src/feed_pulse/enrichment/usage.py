"""Per-tenant daily quotas, usage recording and usage snapshots."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from feed_pulse.enrichment.pricing import calculate_cost
from feed_pulse.models import AIOperation, DailyUsage, UsageLogEntry, UsageRecord
from feed_pulse.storage.base import UsageStore
from feed_pulse.storage.common import next_utc_midnight, utc_now, utc_today

logger = logging.getLogger(__name__)

DEFAULT_DAILY_LIMITS: dict[str, int] = {
    AIOperation.EMBEDDING.value: 500,
    AIOperation.CLUSTERING.value: 10,
    AIOperation.SEARCH.value: 100,
    AIOperation.SUMMARY.value: 50,
}
FALLBACK_DAILY_LIMIT = 100


@dataclass(slots=True)
class QuotaCheck:
    """Answer of ``can_make_request``."""

    allowed: bool
    current_count: int
    daily_limit: int
    remaining: int
    reason: str | None = None


@dataclass(slots=True)
class UsageSnapshot:
    """Today's counters, limits and remaining quota for a tenant."""

    tenant_id: str
    usage_date: date
    counts: dict[str, int]
    limits: dict[str, int]
    remaining: dict[str, int]
    tokens_by_provider: dict[str, int] = field(default_factory=dict)
    total_cost_usd: float = 0.0
    reset_at: datetime | None = None


class UsageTracker:
    """Checks budgets and records provider usage against a ``UsageStore``."""

    def __init__(
        self,
        store: UsageStore,
        *,
        limits: dict[str, int] | None = None,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._limits = {**DEFAULT_DAILY_LIMITS, **(limits or {})}
        self._now = now

    @property
    def store(self) -> UsageStore:
        return self._store

    def limit_for(self, operation: AIOperation | str) -> int:
        return self._limits.get(_operation_key(operation), FALLBACK_DAILY_LIMIT)

    def can_make_request(self, tenant_id: str, operation: AIOperation | str) -> QuotaCheck:
        """Compare today's counter for ``operation`` with the tenant's limit."""

        key = _operation_key(operation)
        limit = self.limit_for(key)
        current = self._current_count(tenant_id, key)
        if current >= limit:
            return QuotaCheck(
                allowed=False,
                current_count=current,
                daily_limit=limit,
                remaining=0,
                reason=f"Daily {key} limit of {limit} reached. Resets at midnight UTC.",
            )
        return QuotaCheck(
            allowed=True,
            current_count=current,
            daily_limit=limit,
            remaining=limit - current,
        )

    def record_usage(self, tenant_id: str, usage: UsageRecord) -> None:
        """Append a usage-log entry and bump today's aggregates.

        Storage failures are logged and swallowed so that recording never breaks
        the enrichment work that triggered it.
        """

        now = self._now()
        cost = calculate_cost(usage.provider, usage.model, usage.input_tokens, usage.output_tokens)
        try:
            self._store.append_usage_log(
                UsageLogEntry(
                    tenant_id=tenant_id,
                    operation=usage.operation,
                    provider=usage.provider,
                    model=usage.model,
                    input_tokens=usage.input_tokens,
                    output_tokens=usage.output_tokens,
                    cost_usd=cost,
                    success=usage.success,
                    created_at=now,
                    error=usage.error,
                    metadata=dict(usage.metadata),
                ),
            )
            self._store.increment_daily_usage(
                tenant_id=tenant_id,
                usage_date=utc_today(now),
                operation=usage.operation,
                provider=usage.provider,
                tokens=usage.input_tokens + usage.output_tokens,
                cost_usd=cost,
                limits=dict(self._limits),
            )
        except Exception:  # noqa: BLE001
            logger.exception(
                "Failed to record %s usage for tenant %s",
                usage.operation.value,
                tenant_id,
            )

    def record_success(  # noqa: PLR0913
        self,
        tenant_id: str,
        *,
        operation: AIOperation,
        provider: str,
        model: str,
        input_tokens: int = 0,
        output_tokens: int = 0,
    ) -> None:
        self.record_usage(
            tenant_id,
            UsageRecord(
                operation=operation,
                provider=provider,
                model=model,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
            ),
        )

    def record_failure(
        self,
        tenant_id: str,
        *,
        operation: AIOperation,
        provider: str,
        model: str,
        error: str,
    ) -> None:
        self.record_usage(
            tenant_id,
            UsageRecord(
                operation=operation,
                provider=provider,
                model=model,
                success=False,
                error=error,
            ),
        )

    def get_usage_stats(self, tenant_id: str) -> UsageSnapshot:
        now = self._now()
        today = utc_today(now)
        row = self._store.get_daily_usage(tenant_id=tenant_id, usage_date=today)
        counts = {
            operation.value: row.count_for(operation) if row is not None else 0
            for operation in AIOperation
        }
        limits = {operation.value: self.limit_for(operation) for operation in AIOperation}
        return UsageSnapshot(
            tenant_id=tenant_id,
            usage_date=today,
            counts=counts,
            limits=limits,
            remaining={key: max(0, limits[key] - counts[key]) for key in counts},
            tokens_by_provider=dict(row.tokens_by_provider) if row is not None else {},
            total_cost_usd=row.total_cost_usd if row is not None else 0.0,
            reset_at=next_utc_midnight(now),
        )

    def get_historical_usage(self, tenant_id: str, days: int = 7) -> list[DailyUsage]:
        since = utc_today(self._now()) - timedelta(days=max(0, days - 1))
        return self._store.list_daily_usage(tenant_id=tenant_id, since=since)

    def _current_count(self, tenant_id: str, key: str) -> int:
        row = self._store.get_daily_usage(tenant_id=tenant_id, usage_date=utc_today(self._now()))
        if row is None:
            return 0
        try:
            return row.count_for(AIOperation(key))
        except ValueError:
            return 0


def _operation_key(operation: AIOperation | str) -> str:
    if isinstance(operation, AIOperation):
        return operation.value
    return str(operation)
