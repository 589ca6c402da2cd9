"""HTML to text cleaning, excerpts and URL checks for feed content."""

from __future__ import annotations

import html
import re
from urllib.parse import urlparse

_DANGEROUS_BLOCK_RE = re.compile(
    r"<(script|style|iframe|object|embed|form|button|select|textarea|noscript)\b[^>]*>.*?</\1\s*>",
    re.IGNORECASE | re.DOTALL,
)
_DANGEROUS_VOID_RE = re.compile(
    r"<(script|style|iframe|object|embed|form|input|button|select|textarea)\b[^>]*/?>",
    re.IGNORECASE,
)
_TAG_RE = re.compile(r"<[^>]+>")
_WHITESPACE_RE = re.compile(r"\s+")
_IMG_SRC_RE = re.compile(r"<img\b[^>]*?\bsrc\s*=\s*([\"'])(.*?)\1", re.IGNORECASE | re.DOTALL)

EXCERPT_LENGTH = 300
EXCERPT_MIN_BREAK = 200
IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg")
IMAGE_HINTS = ("image", "photo", "picture")


def html_to_text(raw_html: str) -> str:
    """Convert HTML markup into normalized plain text, dropping script and interactive elements."""

    if not raw_html:
        return ""
    no_blocks = _DANGEROUS_BLOCK_RE.sub(" ", raw_html)
    no_controls = _DANGEROUS_VOID_RE.sub(" ", no_blocks)
    stripped = _TAG_RE.sub(" ", no_controls)
    unescaped = html.unescape(stripped)
    # entities may decode into markup
    unescaped = _TAG_RE.sub(" ", unescaped)
    return clean_whitespace(unescaped)


def clean_whitespace(value: str | None) -> str:
    if not value:
        return ""
    return _WHITESPACE_RE.sub(" ", value).strip()


def make_excerpt(text: str, *, length: int = EXCERPT_LENGTH) -> str:
    """Plain-text excerpt broken at a word boundary."""

    if len(text) <= length:
        return text
    truncated = text[:length]
    last_space = truncated.rfind(" ")
    if last_space > EXCERPT_MIN_BREAK:
        truncated = truncated[:last_space]
    return truncated.rstrip() + "..."


def truncate(value: str, length: int) -> str:
    if len(value) <= length:
        return value
    return value[: max(0, length - 3)].rstrip() + "..."


def is_valid_url(value: str | None) -> bool:
    """Absolute http(s) URL with a host."""

    if not value:
        return False
    candidate = value.strip()
    if any(char.isspace() for char in candidate):
        return False
    parsed = urlparse(candidate)
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def is_image_url(value: str | None) -> bool:
    """Valid URL that looks like it points to an image."""

    if not is_valid_url(value):
        return False
    lowered = (value or "").lower()
    path = urlparse(lowered).path
    return path.endswith(IMAGE_EXTENSIONS) or any(hint in lowered for hint in IMAGE_HINTS)


def embedded_image_urls(raw_html: str | None) -> list[str]:
    """``src`` values of ``<img>`` tags in document order."""

    if not raw_html:
        return []
    return [html.unescape(match.group(2)).strip() for match in _IMG_SRC_RE.finditer(raw_html)]


def extract_domain(url: str) -> str:
    """Get normalized host from URL."""

    return urlparse(url).netloc.lower() or "unknown"
