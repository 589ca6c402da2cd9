from __future__ import annotations

import allure
import httpx

from feed_pulse.http.fetcher import FeedHttpClient
from feed_pulse.sync.validation import FeedValidator, validate_content

pytestmark = [
    allure.epic("Feed Sync"),
    allure.feature("Pre-flight Validation"),
]


def test_valid_feed_passes_with_warnings_only(rss_document, rss_item) -> None:
    body = rss_document([rss_item(1), {"title": "No link here at all"}], description="", link="")

    report = validate_content(body)

    assert report.is_valid
    assert report.errors == []
    assert report.feed_type == "rss"
    assert report.item_count == 2
    assert report.has_valid_items
    assert "Feed is missing a description" in report.warnings
    assert "Feed is missing a link" in report.warnings
    assert "Item 2 is missing a link" in report.warnings


def test_tiny_html_and_untitled_documents_fail() -> None:
    assert validate_content(b"<rss/>").errors == ["Feed content is too small (6 bytes)"]

    html_page = b"<html><head></head><body>" + b"lorem ipsum " * 20 + b"</body></html>"
    assert validate_content(html_page).errors == ["Response is an HTML page, not a feed"]

    untitled = (
        b'<?xml version="1.0"?><rss version="2.0"><channel>'
        b"<description>Plenty of description text to pass the size floor</description>"
        b"<link>https://example.com/</link></channel></rss>"
    )
    report = validate_content(untitled)
    assert not report.is_valid
    assert report.errors == ["Feed is missing a title"]
    assert "Feed contains no items" in report.warnings


def test_encoding_is_read_from_declaration_or_content_type(rss_document) -> None:
    latin = b'<?xml version="1.0" encoding="ISO-8859-1"?>' + rss_document([])[38:]

    declared = validate_content(latin)
    from_header = validate_content(b"{}" * 60, content_type="text/xml; charset=Windows-1252")

    assert declared.encoding == "iso-8859-1"
    assert from_header.encoding == "windows-1252"


def test_validator_reports_unhealthy_and_unreachable_feeds(rss_document, rss_item) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "gone.example.com":
            return httpx.Response(404)
        if request.url.host == "slow.example.com":
            raise httpx.ReadTimeout("slow", request=request)
        return httpx.Response(
            200,
            content=rss_document([rss_item(1)]),
            headers={"Content-Type": "application/rss+xml", "ETag": "abc"},
        )

    sleeps: list[float] = []
    validator = FeedValidator(
        FeedHttpClient(transport=httpx.MockTransport(handler)),
        sleep=sleeps.append,
    )

    reports = validator.validate_feeds(
        [
            "https://ok.example.com/rss",
            "https://gone.example.com/rss",
            "https://slow.example.com/rss",
        ],
        batch_size=2,
        delay_seconds=1.5,
    )

    ok = reports["https://ok.example.com/rss"]
    assert ok.is_valid
    assert ok.health.status_code == 200
    assert ok.health.etag == "abc"
    assert ok.health.item_count == 1

    gone = reports["https://gone.example.com/rss"]
    assert not gone.is_valid
    assert gone.errors == ["HTTP 404"]

    slow = reports["https://slow.example.com/rss"]
    assert not slow.is_valid
    assert slow.errors == ["Health check timed out"]
    assert sleeps == [1.5]
