"""Turn raw feed items into article drafts."""

from __future__ import annotations

import hashlib
import json
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime

from feed_pulse.models import ArticleDraft
from feed_pulse.sync.cleaning import (
    clean_whitespace,
    embedded_image_urls,
    html_to_text,
    is_image_url,
    is_valid_url,
    make_excerpt,
)
from feed_pulse.sync.models import FeedItem

MIN_TITLE_CHARS = 3
MIN_CONTENT_CHARS = 10


def extract_article(item: FeedItem) -> ArticleDraft | None:
    """Build a draft from one item, or ``None`` when the item is unusable.

    Items without a title of at least three characters or without a valid
    http(s) URL are skipped.
    """

    title = clean_whitespace(html_to_text(item.title or ""))
    if len(title) < MIN_TITLE_CHARS:
        return None

    url = (item.link or "").strip() or (item.guid or "").strip()
    if not is_valid_url(url):
        return None

    raw_content = item.content_encoded or item.content or item.description or item.summary
    content_text = html_to_text(raw_content or "")
    content = content_text if len(content_text) >= MIN_CONTENT_CHARS else None

    return ArticleDraft(
        guid=build_guid(item, title=title),
        title=title,
        url=url,
        content=content,
        excerpt=make_excerpt(content) if content else None,
        author=clean_whitespace(item.author) or None,
        published_at=first_parsed_date(item.dates),
        image_url=select_image_url(item, raw_content),
    )


def build_guid(item: FeedItem, *, title: str) -> str:
    """Stable item id: ``guid``, then ``id``, then ``link``, then a content hash."""

    for candidate in (item.guid, item.entry_id, item.link):
        if candidate and candidate.strip():
            return candidate.strip()
    raw = json.dumps(
        {
            "title": title,
            "dates": [value or "" for value in item.dates],
            "description": item.description or item.summary or "",
        },
        sort_keys=True,
        ensure_ascii=True,
    )
    digest = hashlib.sha1(raw.encode("utf-8"), usedforsecurity=False).hexdigest()  # noqa: S324
    return f"generated:{digest}"


def first_parsed_date(values: tuple[str | None, ...]) -> datetime | None:
    """First date field that parses as RFC 822 or ISO 8601."""

    for value in values:
        parsed = parse_datetime(value)
        if parsed is not None:
            return parsed
    return None


def parse_datetime(raw_value: str | None) -> datetime | None:
    if not raw_value or not raw_value.strip():
        return None
    value = raw_value.strip()

    try:
        parsed = parsedate_to_datetime(value)
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=UTC)
        return parsed.astimezone(UTC)
    except (TypeError, ValueError, IndexError):
        pass

    try:
        iso = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if iso.tzinfo is None:
        return iso.replace(tzinfo=UTC)
    return iso.astimezone(UTC)


def select_image_url(item: FeedItem, raw_content: str | None) -> str | None:
    """First valid image-looking URL among enclosures, media elements and inline images."""

    for url, media_type in item.enclosures:
        kind = (media_type or "").strip().lower()
        if kind and not kind.startswith("image/"):
            continue
        if (kind and is_valid_url(url)) or is_image_url(url):
            return url
    for url in item.media_urls:
        if is_image_url(url):
            return url
    for raw in (raw_content, item.description, item.summary):
        for url in embedded_image_urls(raw):
            if is_image_url(url):
                return url
    return None
