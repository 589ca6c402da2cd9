"""Error taxonomy shared by the sync, scheduling, enrichment and clustering layers."""

from __future__ import annotations

from dataclasses import dataclass


class FeedPulseError(Exception):
    """Base class for all feed-pulse errors."""


@dataclass(slots=True, eq=False)
class SyncError(FeedPulseError):
    """Feed sync failure with a stable machine-readable code."""

    message: str
    code: str = "sync_error"

    def __str__(self) -> str:
        return self.message


@dataclass(slots=True, eq=False)
class ValidationFailed(SyncError):
    """Pre-flight validation rejected the feed. Never retried."""

    errors: tuple[str, ...] = ()


@dataclass(slots=True, eq=False)
class TransientSyncError(SyncError):
    """Timeout, 429, 5xx or connection failure. Retried with backoff."""

    status_code: int | None = None


@dataclass(slots=True, eq=False)
class PermanentSyncError(SyncError):
    """Client error other than 429, parse failure or oversized content. Not retried."""

    status_code: int | None = None


class InvalidPriority(FeedPulseError, ValueError):
    """Priority value is not one of high, medium or low."""

    def __init__(self, value: object) -> None:
        super().__init__(f"Invalid sync priority: {value!r}. Expected one of high, medium, low.")
        self.value = value


class FeedNotFound(FeedPulseError, LookupError):
    """Feed id is unknown to the storage collaborator."""

    def __init__(self, feed_id: str) -> None:
        super().__init__(f"Feed not found: {feed_id}")
        self.feed_id = feed_id


class BudgetExceeded(FeedPulseError):
    """Daily quota for an operation is exhausted; the provider was not called."""

    def __init__(self, reason: str, *, operation: str, limit: int) -> None:
        super().__init__(reason)
        self.reason = reason
        self.operation = operation
        self.limit = limit


class DimensionMismatch(FeedPulseError, ValueError):
    """Vectors compared for similarity have different lengths."""

    def __init__(self, left: int, right: int) -> None:
        super().__init__(f"Vectors must have the same dimension: {left} != {right}")
        self.left = left
        self.right = right


class ProviderUnavailable(FeedPulseError):
    """Embedding provider credential or backend is not configured."""
