"""RSS 2.0, RSS 1.0 (RDF) and Atom parsing into raw feed items."""

from __future__ import annotations

from xml.etree.ElementTree import Element

from defusedxml import DefusedXmlException, ElementTree

from feed_pulse.errors import PermanentSyncError
from feed_pulse.sync.models import FeedItem, ParsedFeed

MEDIA_NAMESPACE = "http://search.yahoo.com/mrss/"


def parse_feed(raw: bytes | str, feed_url: str) -> ParsedFeed:
    """Parse a feed document.

    Raises ``PermanentSyncError`` for malformed XML or documents that are neither
    RSS nor Atom.
    """

    try:
        root = ElementTree.fromstring(raw)
    except (ElementTree.ParseError, DefusedXmlException) as error:
        raise PermanentSyncError(
            message=f"Invalid RSS/Atom XML from {feed_url}: {error}",
            code="invalid_feed_xml",
        ) from error

    root_name = local_name(root.tag)
    if root_name == "rss":
        return _parse_rss(root, feed_type="rss")
    if root_name == "feed":
        return _parse_atom(root)
    if root_name == "rdf":
        return _parse_rss(root, feed_type="rdf")

    # Best effort: some feeds omit top-level conventions.
    if any(local_name(element.tag) == "item" for element in root.iter()):
        return _parse_rss(root, feed_type="rss")
    if any(local_name(element.tag) == "entry" for element in root.iter()):
        return _parse_atom(root)

    raise PermanentSyncError(
        message=f"Unsupported feed format from {feed_url}",
        code="unsupported_feed_format",
    )


def _parse_rss(root: Element, *, feed_type: str) -> ParsedFeed:
    channel = _first_child(root, "channel")
    container = channel if channel is not None else root
    items = [
        _rss_item(element)
        for element in (container if feed_type == "rss" else root.iter())
        if local_name(element.tag) == "item"
    ]
    if feed_type == "rss" and not items:
        items = [_rss_item(element) for element in root.iter() if local_name(element.tag) == "item"]
    return ParsedFeed(
        feed_type=feed_type,
        title=child_text(container, "title"),
        description=child_text(container, "description"),
        link=child_text(container, "link"),
        items=items,
    )


def _rss_item(item: Element) -> FeedItem:
    enclosures: list[tuple[str, str | None]] = []
    media_urls: list[str] = []
    content_encoded: str | None = None
    for child in item:
        name = local_name(child.tag)
        if name == "enclosure":
            url = child.attrib.get("url", "").strip()
            if url:
                enclosures.append((url, child.attrib.get("type")))
        elif namespace(child.tag) == MEDIA_NAMESPACE:
            media_urls.extend(_media_urls(child))
        elif name == "encoded" and content_encoded is None:
            content_encoded = _element_text(child)

    return FeedItem(
        guid=child_text(item, "guid"),
        entry_id=_attribute(item, "about"),
        link=child_text(item, "link"),
        title=child_text(item, "title"),
        content_encoded=content_encoded,
        content=None,
        description=child_text(item, "description"),
        summary=child_text(item, "summary"),
        author=child_text(item, "author") or child_text(item, "creator"),
        dates=(
            child_text(item, "pubDate"),
            child_text(item, "published"),
            child_text(item, "updated"),
            child_text(item, "date"),
        ),
        enclosures=tuple(enclosures),
        media_urls=tuple(media_urls),
    )


def _parse_atom(root: Element) -> ParsedFeed:
    items = [_atom_entry(entry) for entry in root.iter() if local_name(entry.tag) == "entry"]
    return ParsedFeed(
        feed_type="atom",
        title=child_text(root, "title"),
        description=child_text(root, "subtitle"),
        link=atom_link(root),
        items=items,
    )


def _atom_entry(entry: Element) -> FeedItem:
    enclosures: list[tuple[str, str | None]] = []
    media_urls: list[str] = []
    content: str | None = None
    for child in entry:
        name = local_name(child.tag)
        if namespace(child.tag) == MEDIA_NAMESPACE:
            media_urls.extend(_media_urls(child))
        elif name == "link" and child.attrib.get("rel", "").strip().lower() == "enclosure":
            href = child.attrib.get("href", "").strip()
            if href:
                enclosures.append((href, child.attrib.get("type")))
        elif name == "content" and content is None:
            content = _element_text(child)

    author = _first_child(entry, "author")
    return FeedItem(
        entry_id=child_text(entry, "id"),
        link=atom_link(entry),
        title=child_text(entry, "title"),
        content=content,
        summary=child_text(entry, "summary"),
        author=child_text(author, "name") if author is not None else None,
        dates=(
            None,
            child_text(entry, "published"),
            child_text(entry, "updated"),
            child_text(entry, "date"),
        ),
        enclosures=tuple(enclosures),
        media_urls=tuple(media_urls),
    )


def atom_link(element: Element) -> str | None:
    """Preferred alternate link of an Atom feed or entry."""

    for child in element:
        if local_name(child.tag) != "link":
            continue
        rel = child.attrib.get("rel", "").strip().lower()
        href = child.attrib.get("href", "").strip()
        if not href:
            continue
        if not rel or rel == "alternate":
            return href
    for child in element:
        if local_name(child.tag) == "link" and child.attrib.get("rel", "") != "enclosure":
            href = child.attrib.get("href", "").strip()
            if href:
                return href
    return None


def child_text(element: Element, name: str) -> str | None:
    """Text of the first direct child with the given local name."""

    target = name.lower()
    for child in element:
        if local_name(child.tag) != target:
            continue
        text = _element_text(child)
        if text:
            return text
    return None


def local_name(tag: str) -> str:
    if "}" in tag:
        return tag.rsplit("}", 1)[1].lower()
    return tag.lower()


def namespace(tag: str) -> str | None:
    if tag.startswith("{") and "}" in tag:
        return tag[1:].split("}", 1)[0]
    return None


def _media_urls(element: Element) -> list[str]:
    # media:group wraps media:content / media:thumbnail elements
    urls: list[str] = []
    url = element.attrib.get("url", "").strip()
    if url and local_name(element.tag) in {"content", "thumbnail"}:
        medium = element.attrib.get("medium", "").strip().lower()
        media_type = element.attrib.get("type", "").strip().lower()
        if medium in {"", "image"} or media_type.startswith("image/"):
            urls.append(url)
    for child in element:
        if namespace(child.tag) == MEDIA_NAMESPACE:
            urls.extend(_media_urls(child))
    return urls


def _first_child(element: Element, name: str) -> Element | None:
    for child in element:
        if local_name(child.tag) == name:
            return child
    return None


def _attribute(element: Element, name: str) -> str | None:
    for key, value in element.attrib.items():
        if local_name(key) == name and value.strip():
            return value.strip()
    return None


def _element_text(element: Element) -> str | None:
    if element.text and element.text.strip() and len(element) == 0:
        return element.text.strip()
    full_text = "".join(element.itertext()).strip()
    if full_text:
        return full_text
    href = element.attrib.get("href", "").strip()
    return href or None
