"""HTTP client for feed fetches with timeouts and conditional-GET support."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; FeedPulseBot/1.0; +https://github.com/feed-pulse)"
FEED_ACCEPT_HEADER = (
    "application/rss+xml, application/atom+xml, application/xml;q=0.9, text/xml;q=0.8, */*;q=0.5"
)


@dataclass(slots=True)
class FetchResponse:
    """Raw HTTP response of a feed request."""

    url: str
    status_code: int
    body: bytes
    headers: dict[str, str] = field(default_factory=dict)
    elapsed_ms: int = 0

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "")

    @property
    def etag(self) -> str | None:
        return _normalize_header(self.headers.get("etag"))

    @property
    def last_modified(self) -> str | None:
        return _normalize_header(self.headers.get("last-modified"))

    @property
    def text(self) -> str:
        try:
            return self.body.decode(_charset(self.content_type), errors="replace")
        except LookupError:
            return self.body.decode("utf-8", errors="replace")


class FeedHttpClient:
    """``httpx.Client`` wrapper that returns structured responses.

    Transport errors and timeouts propagate as ``httpx`` exceptions so that the
    caller decides how to classify and retry them.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds, connect=min(10.0, timeout_seconds)),
            headers={"User-Agent": user_agent, "Accept": FEED_ACCEPT_HEADER},
            transport=transport,
            follow_redirects=True,
        )

    def get(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        timeout_seconds: float | None = None,
    ) -> FetchResponse:
        started = time.monotonic()
        kwargs: dict[str, object] = {"headers": headers or {}}
        if timeout_seconds is not None:
            kwargs["timeout"] = httpx.Timeout(timeout_seconds, connect=min(10.0, timeout_seconds))
        response = self._client.get(url, **kwargs)  # type: ignore[arg-type]
        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.debug("GET %s -> %s in %sms", url, response.status_code, elapsed_ms)
        return FetchResponse(
            url=str(response.url),
            status_code=response.status_code,
            body=response.content,
            headers={key.lower(): value for key, value in response.headers.items()},
            elapsed_ms=elapsed_ms,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> FeedHttpClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def build_conditional_headers(*, etag: str | None, last_modified: str | None) -> dict[str, str]:
    """Validators for a conditional GET."""

    headers: dict[str, str] = {}
    if etag:
        headers["If-None-Match"] = etag
    if last_modified:
        headers["If-Modified-Since"] = last_modified
    return headers


def _charset(content_type: str) -> str:
    for part in content_type.split(";"):
        key, _, value = part.strip().partition("=")
        if key.lower() == "charset" and value:
            return value.strip().strip('"') or "utf-8"
    return "utf-8"


def _normalize_header(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None
