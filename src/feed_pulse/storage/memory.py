"""Per-process usage counters and dead-letter records.

Counters are keyed by ``(tenant_id, usage_date)`` and updated under a lock so each
increment is atomic. A multi-instance deployment swaps this for a shared store
implementing the same ``UsageStore`` contract (``SQLiteRepository`` does).
"""

from __future__ import annotations

import threading
from copy import deepcopy
from datetime import date
from typing import Any

from feed_pulse.models import AIOperation, DailyUsage, DeadLetterItem, UsageLogEntry
from feed_pulse.storage.common import utc_now


class InMemoryUsageStore:
    """``UsageStore`` backed by dictionaries living in this process."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._daily: dict[tuple[str, date], DailyUsage] = {}
        self._log: list[UsageLogEntry] = []
        self._dead_letters: dict[int, DeadLetterItem] = {}
        self._next_dead_letter_id = 1

    def get_daily_usage(self, *, tenant_id: str, usage_date: date) -> DailyUsage | None:
        with self._lock:
            row = self._daily.get((tenant_id, usage_date))
            return deepcopy(row) if row is not None else None

    def increment_daily_usage(  # noqa: PLR0913
        self,
        *,
        tenant_id: str,
        usage_date: date,
        operation: AIOperation,
        provider: str,
        tokens: int,
        cost_usd: float,
        limits: dict[str, int],
    ) -> DailyUsage:
        with self._lock:
            key = (tenant_id, usage_date)
            row = self._daily.get(key)
            if row is None:
                row = DailyUsage(tenant_id=tenant_id, usage_date=usage_date)
                self._daily[key] = row
            row.increment(operation)
            if tokens:
                row.tokens_by_provider[provider] = row.tokens_by_provider.get(provider, 0) + tokens
            row.total_cost_usd += cost_usd
            row.limits = dict(limits)
            return deepcopy(row)

    def list_daily_usage(self, *, tenant_id: str, since: date) -> list[DailyUsage]:
        with self._lock:
            rows = [
                deepcopy(row)
                for (row_tenant, row_date), row in self._daily.items()
                if row_tenant == tenant_id and row_date >= since
            ]
        return sorted(rows, key=lambda row: row.usage_date)

    def append_usage_log(self, entry: UsageLogEntry) -> None:
        with self._lock:
            self._log.append(entry)

    def usage_log(self) -> list[UsageLogEntry]:
        with self._lock:
            return list(self._log)

    def add_dead_letter(  # noqa: PLR0913
        self,
        *,
        operation: str,
        provider: str,
        payload: dict[str, Any],
        error: str,
        attempts: int,
        tenant_id: str | None = None,
    ) -> DeadLetterItem:
        with self._lock:
            item = DeadLetterItem(
                item_id=self._next_dead_letter_id,
                operation=operation,
                provider=provider,
                payload=dict(payload),
                error=error,
                attempts=attempts,
                created_at=utc_now(),
                tenant_id=tenant_id,
            )
            self._dead_letters[item.item_id] = item
            self._next_dead_letter_id += 1
            return item

    def list_dead_letters(self, *, limit: int) -> list[DeadLetterItem]:
        with self._lock:
            return list(self._dead_letters.values())[:limit]

    def remove_dead_letter(self, item_id: int) -> bool:
        with self._lock:
            return self._dead_letters.pop(item_id, None) is not None

    def count_dead_letters(self) -> int:
        with self._lock:
            return len(self._dead_letters)
