"""Single-feed sync: validate, fetch, parse, extract and deduplicate."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import datetime

import httpx

from feed_pulse.errors import (
    PermanentSyncError,
    SyncError,
    TransientSyncError,
    ValidationFailed,
)
from feed_pulse.http.fetcher import FeedHttpClient, FetchResponse, build_conditional_headers
from feed_pulse.models import (
    Article,
    ArticleDraft,
    FeedScheduleUpdate,
    FeedSyncLog,
    SyncLogStatus,
    SyncPriority,
    UpsertAction,
)
from feed_pulse.storage.base import SyncStorage
from feed_pulse.storage.common import utc_now
from feed_pulse.sync.cleaning import is_valid_url
from feed_pulse.sync.extraction import extract_article
from feed_pulse.sync.models import SyncableFeed, SyncOptions, SyncResult
from feed_pulse.sync.parser import parse_feed
from feed_pulse.sync.validation import MAX_FEED_BYTES, FeedValidator

logger = logging.getLogger(__name__)

HTTP_NOT_MODIFIED = 304
HTTP_TOO_MANY_REQUESTS = 429


class SyncEngine:
    """Syncs one feed at a time against the storage collaborator.

    ``sync_feed`` never raises for feed-level problems; every outcome is a
    ``SyncResult``. Feeds without a ``feed_id`` (catalog previews) are parsed and
    counted but nothing is persisted for them. Every other sync except a 304 appends
    one sync record through ``record_feed_sync``.
    """

    def __init__(  # noqa: PLR0913
        self,
        storage: SyncStorage | None,
        *,
        client: FeedHttpClient,
        validator: FeedValidator | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self._storage = storage
        self._client = client
        self._validator = validator or FeedValidator(client)
        self._sleep = sleep
        self._clock = clock
        self._now = now

    def sync_feed(self, feed: SyncableFeed, options: SyncOptions | None = None) -> SyncResult:
        options = options or SyncOptions()
        started = self._clock()
        started_at = self._now()
        result = SyncResult(
            feed_url=feed.url,
            success=False,
            feed_id=feed.feed_id,
            feed_name=feed.name,
        )

        rejection = self._preflight(feed, options, result)
        if rejection is not None:
            result.validation_passed = False
            result.error = rejection.message
            result.error_code = rejection.code
            result.sync_duration_ms = self._elapsed_ms(started)
            logger.warning("Feed %s failed validation: %s", feed.url, result.error)
            self._record(feed, result, started_at)
            return result

        last_error: SyncError | None = None
        for attempt in range(1, max(1, options.max_retries) + 1):
            result.retry_count = attempt - 1
            try:
                response = self._fetch(feed, options)
                self._process(feed, options, response, result)
                result.sync_duration_ms = self._elapsed_ms(started)
                logger.info(
                    "Synced %s: found=%s new=%s updated=%s skipped=%s in %sms",
                    feed.url,
                    result.articles_found,
                    result.articles_new,
                    result.articles_updated,
                    result.articles_skipped,
                    result.sync_duration_ms,
                )
                self._record(feed, result, started_at)
                return result
            except TransientSyncError as error:
                last_error = error
                result.http_status_code = error.status_code
                if attempt < options.max_retries:
                    delay = options.retry_delay_seconds * 2 ** (attempt - 1)
                    logger.warning(
                        "Attempt %s/%s for %s failed (%s); retrying in %.1fs",
                        attempt,
                        options.max_retries,
                        feed.url,
                        error.message,
                        delay,
                    )
                    self._sleep(delay)
            except PermanentSyncError as error:
                last_error = error
                result.http_status_code = error.status_code or result.http_status_code
                break

        result.success = False
        result.error = str(last_error) if last_error else "Sync failed"
        result.error_code = last_error.code if last_error else None
        result.sync_duration_ms = self._elapsed_ms(started)
        logger.warning(
            "Sync of %s failed after %s attempt(s) in %sms: %s",
            feed.url,
            result.retry_count + 1,
            result.sync_duration_ms,
            result.error,
        )
        self._record(feed, result, started_at)
        return result

    def _preflight(
        self,
        feed: SyncableFeed,
        options: SyncOptions,
        result: SyncResult,
    ) -> ValidationFailed | None:
        if not is_valid_url(feed.url):
            return ValidationFailed(
                message=f"Malformed feed URL: {feed.url!r}",
                code="invalid_url",
                errors=("Malformed feed URL",),
            )
        high_priority = feed.priority is SyncPriority.HIGH and options.validate_high_priority
        if not (options.validate_content or high_priority):
            return None

        report = self._validator.validate(feed.url)
        for warning in report.content.warnings:
            logger.debug("Feed %s validation warning: %s", feed.url, warning)
        if report.is_valid:
            return None
        result.http_status_code = report.health.status_code or None
        return ValidationFailed(
            message="Validation failed: " + "; ".join(report.errors),
            code="validation_failed",
            errors=tuple(report.errors),
        )

    def _fetch(self, feed: SyncableFeed, options: SyncOptions) -> FetchResponse:
        headers: dict[str, str] = {}
        if options.respect_caching:
            headers = build_conditional_headers(etag=feed.etag, last_modified=feed.last_modified)
        try:
            response = self._client.get(
                feed.url,
                headers=headers,
                timeout_seconds=options.timeout_seconds,
            )
        except httpx.TimeoutException as error:
            raise TransientSyncError(
                message=f"Timeout fetching {feed.url}",
                code="timeout",
            ) from error
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as error:
            raise PermanentSyncError(
                message=f"Invalid feed URL {feed.url}: {error}",
                code="invalid_url",
            ) from error
        except httpx.HTTPError as error:
            raise TransientSyncError(
                message=f"Network error fetching {feed.url}: {error}",
                code="network_error",
            ) from error

        status = response.status_code
        if status == HTTP_NOT_MODIFIED or response.is_success:
            return response
        if 400 <= status < 500 and status != HTTP_TOO_MANY_REQUESTS:
            raise PermanentSyncError(
                message=f"HTTP {status} fetching {feed.url}",
                code="http_client_error",
                status_code=status,
            )
        raise TransientSyncError(
            message=f"HTTP {status} fetching {feed.url}",
            code="http_status",
            status_code=status,
        )

    def _process(
        self,
        feed: SyncableFeed,
        options: SyncOptions,
        response: FetchResponse,
        result: SyncResult,
    ) -> None:
        result.http_status_code = response.status_code
        if response.status_code == HTTP_NOT_MODIFIED:
            result.success = True
            result.etag = response.etag or feed.etag
            result.last_modified = response.last_modified or feed.last_modified
            logger.debug("Feed %s not modified", feed.url)
            return

        size = len(response.body)
        result.feed_size_bytes = size
        if size == 0:
            raise PermanentSyncError(
                message="Feed content is empty",
                code="empty_feed",
                status_code=response.status_code,
            )
        if size > MAX_FEED_BYTES:
            raise PermanentSyncError(
                message=f"Feed content is too large ({size} bytes)",
                code="feed_too_large",
                status_code=response.status_code,
            )

        parsed = parse_feed(response.body, feed.url)
        items = parsed.items[: options.max_articles]
        result.articles_found = len(items)

        for item in items:
            try:
                draft = extract_article(item)
                if draft is None:
                    result.articles_skipped += 1
                    continue
                action = self._upsert(feed, draft)
            except Exception:  # noqa: BLE001
                logger.exception("Failed to process item of %s", feed.url)
                result.articles_skipped += 1
                continue
            if action == UpsertAction.INSERTED:
                result.articles_new += 1
            elif action == UpsertAction.UPDATED:
                result.articles_updated += 1
            else:
                result.articles_skipped += 1

        result.etag = response.etag
        result.last_modified = response.last_modified
        result.success = True
        self._persist_caching_tokens(feed, result)

    def _upsert(self, feed: SyncableFeed, draft: ArticleDraft) -> UpsertAction:
        if self._storage is None or feed.feed_id is None:
            return UpsertAction.SKIPPED
        existing = self._storage.get_article_by_guid(feed_id=feed.feed_id, guid=draft.guid)
        if existing is None:
            self._storage.create_article(feed_id=feed.feed_id, draft=draft)
            return UpsertAction.INSERTED
        if _has_changed(existing, draft):
            self._storage.update_article(existing.article_id, draft)
            return UpsertAction.UPDATED
        return UpsertAction.SKIPPED

    def _persist_caching_tokens(self, feed: SyncableFeed, result: SyncResult) -> None:
        if self._storage is None or feed.feed_id is None:
            return
        if result.etag == feed.etag and result.last_modified == feed.last_modified:
            return
        if result.etag is None and result.last_modified is None:
            return
        self._storage.update_feed_schedule(
            feed.feed_id,
            FeedScheduleUpdate(etag=result.etag, last_modified=result.last_modified),
        )

    def _record(self, feed: SyncableFeed, result: SyncResult, started_at: datetime) -> None:
        if self._storage is None or feed.feed_id is None:
            return
        if result.success and result.http_status_code == HTTP_NOT_MODIFIED:
            return
        entry = FeedSyncLog(
            feed_id=feed.feed_id,
            status=SyncLogStatus.SUCCESS if result.success else SyncLogStatus.ERROR,
            started_at=started_at,
            completed_at=self._now(),
            duration_ms=result.sync_duration_ms,
            retry_count=result.retry_count,
            http_status_code=result.http_status_code,
            error=result.error,
            error_code=result.error_code,
            articles_found=result.articles_found,
            articles_new=result.articles_new,
            articles_updated=result.articles_updated,
            articles_skipped=result.articles_skipped,
            feed_size_bytes=result.feed_size_bytes or None,
            etag_received=result.etag,
            last_modified_received=result.last_modified,
        )
        try:
            self._storage.record_feed_sync(entry)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to record sync of %s", feed.url)

    def _elapsed_ms(self, started: float) -> int:
        return int((self._clock() - started) * 1000)


def _has_changed(existing: Article, draft: ArticleDraft) -> bool:
    return (
        existing.title != draft.title
        or existing.content != draft.content
        or existing.excerpt != draft.excerpt
        or existing.image_url != draft.image_url
    )
