"""Pre-flight feed validation: HTTP health check and content-shape check."""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field

import httpx

from feed_pulse.errors import PermanentSyncError
from feed_pulse.http.fetcher import FeedHttpClient, FetchResponse
from feed_pulse.sync.parser import parse_feed

logger = logging.getLogger(__name__)

MIN_FEED_BYTES = 100
MAX_FEED_BYTES = 50 * 1024 * 1024
ITEMS_TO_INSPECT = 5
_XML_ENCODING_RE = re.compile(rb"""<\?xml[^>]*encoding\s*=\s*["']([A-Za-z0-9._-]+)["']""")
_HTML_START_RE = re.compile(rb"^\s*(<!doctype\s+html|<html[\s>])", re.IGNORECASE)


@dataclass(slots=True)
class FeedHealthStatus:
    """Outcome of the HTTP health check."""

    url: str
    healthy: bool
    status_code: int = 0
    error: str | None = None
    response_time_ms: int = 0
    content_type: str | None = None
    feed_size_bytes: int = 0
    item_count: int = 0
    last_modified: str | None = None
    etag: str | None = None


@dataclass(slots=True)
class ContentValidation:
    """Outcome of the content-shape check."""

    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    item_count: int = 0
    has_valid_items: bool = False
    feed_type: str = "unknown"
    encoding: str = "utf-8"


@dataclass(slots=True)
class FeedValidationReport:
    """Health check plus content check for one feed URL."""

    health: FeedHealthStatus
    content: ContentValidation

    @property
    def is_valid(self) -> bool:
        return self.health.healthy and self.content.is_valid

    @property
    def errors(self) -> list[str]:
        errors = list(self.content.errors)
        if self.health.error and self.health.error not in errors:
            errors.insert(0, self.health.error)
        return errors


def validate_content(body: bytes, *, content_type: str = "") -> ContentValidation:
    """Check that a response body is a plausible RSS/Atom document."""

    result = ContentValidation(is_valid=False, encoding=_detect_encoding(body, content_type))
    size = len(body)
    if size < MIN_FEED_BYTES:
        result.errors.append(f"Feed content is too small ({size} bytes)")
        return result
    if size > MAX_FEED_BYTES:
        result.errors.append(f"Feed content is too large ({size} bytes)")
        return result
    if _HTML_START_RE.match(body):
        result.errors.append("Response is an HTML page, not a feed")
        return result

    try:
        parsed = parse_feed(body, "validation")
    except PermanentSyncError as error:
        result.errors.append(error.message)
        return result

    result.feed_type = "rss" if parsed.feed_type == "rdf" else parsed.feed_type
    result.item_count = len(parsed.items)
    if not parsed.title:
        result.errors.append("Feed is missing a title")
    if not parsed.description:
        result.warnings.append("Feed is missing a description")
    if not parsed.link:
        result.warnings.append("Feed is missing a link")
    if not parsed.items:
        result.warnings.append("Feed contains no items")

    for index, item in enumerate(parsed.items[:ITEMS_TO_INSPECT], start=1):
        has_title = bool(item.title and item.title.strip())
        has_link = bool((item.link or item.guid or "").strip())
        if not has_title:
            result.warnings.append(f"Item {index} is missing a title")
        if not has_link:
            result.warnings.append(f"Item {index} is missing a link")
        if has_title and has_link:
            result.has_valid_items = True

    result.is_valid = not result.errors
    return result


class FeedValidator:
    """Runs the health check and content check with one GET per feed."""

    def __init__(
        self,
        client: FeedHttpClient,
        *,
        timeout_seconds: float = 15.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._timeout_seconds = timeout_seconds
        self._sleep = sleep

    def validate(self, url: str) -> FeedValidationReport:
        try:
            response = self._client.get(url, timeout_seconds=self._timeout_seconds)
        except httpx.TimeoutException:
            return _unreachable(url, "Health check timed out")
        except httpx.InvalidURL as error:
            return _unreachable(url, f"Invalid feed URL: {error}")
        except httpx.HTTPError as error:
            return _unreachable(url, f"Health check failed: {error}")

        health = _health_from_response(url, response)
        if not health.healthy:
            return FeedValidationReport(
                health=health,
                content=ContentValidation(is_valid=False, errors=[health.error or "unhealthy"]),
            )
        content = validate_content(response.body, content_type=response.content_type)
        health.item_count = content.item_count
        return FeedValidationReport(health=health, content=content)

    def validate_feeds(
        self,
        urls: list[str],
        *,
        batch_size: int = 3,
        delay_seconds: float = 2.0,
    ) -> dict[str, FeedValidationReport]:
        """Validate many feeds in small sequential batches."""

        reports: dict[str, FeedValidationReport] = {}
        for start in range(0, len(urls), batch_size):
            if start:
                self._sleep(delay_seconds)
            for url in urls[start : start + batch_size]:
                reports[url] = self.validate(url)
                if not reports[url].is_valid:
                    logger.info("Feed %s failed validation: %s", url, reports[url].errors)
        return reports


def _health_from_response(url: str, response: FetchResponse) -> FeedHealthStatus:
    healthy = response.is_success
    return FeedHealthStatus(
        url=url,
        healthy=healthy,
        status_code=response.status_code,
        error=None if healthy else f"HTTP {response.status_code}",
        response_time_ms=response.elapsed_ms,
        content_type=response.content_type or None,
        feed_size_bytes=len(response.body),
        last_modified=response.last_modified,
        etag=response.etag,
    )


def _unreachable(url: str, message: str) -> FeedValidationReport:
    return FeedValidationReport(
        health=FeedHealthStatus(url=url, healthy=False, error=message),
        content=ContentValidation(is_valid=False, errors=[message]),
    )


def _detect_encoding(body: bytes, content_type: str) -> str:
    match = _XML_ENCODING_RE.search(body[:200])
    if match:
        return match.group(1).decode("ascii").lower()
    for part in content_type.split(";"):
        key, _, value = part.strip().partition("=")
        if key.lower() == "charset" and value:
            return value.strip().strip('"').lower()
    return "utf-8"
