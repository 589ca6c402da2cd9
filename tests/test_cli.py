from __future__ import annotations

from pathlib import Path

import allure
import pytest
from click.testing import CliRunner

from feed_pulse.main import feed_pulse

pytestmark = [
    allure.epic("Command Line"),
    allure.feature("Feeds, Queues & Clusters"),
]


@pytest.fixture()
def db_args(tmp_path: Path, no_provider_credentials: None) -> list[str]:
    return ["--db-path", str(tmp_path / "cli.db")]


def _invoke(*args: str):
    return CliRunner().invoke(feed_pulse, list(args))


def test_feeds_add_derives_priority_and_makes_feed_due(db_args: list[str]) -> None:
    added = _invoke("feeds", "add", *db_args, "https://feeds.reuters.com/world")
    assert added.exit_code == 0, added.output
    assert "Feed added: feed_id=" in added.output
    assert "name=feeds.reuters.com priority=high" in added.output

    again = _invoke("feeds", "add", *db_args, "https://feeds.reuters.com/world")
    assert again.exit_code == 0
    assert "Feed already exists" in again.output

    due = _invoke("feeds", "due", *db_args)
    assert due.exit_code == 0
    assert "Feeds due: 1" in due.output
    assert "priority=high" in due.output


def test_catalog_default_wins_for_new_subscriptions(db_args: list[str]) -> None:
    url = "https://www.bbc.co.uk/news/rss.xml"
    catalog = _invoke(
        "feeds",
        "catalog-add",
        *db_args,
        url,
        "--name",
        "BBC Digest",
        "--priority",
        "low",
    )
    assert catalog.exit_code == 0, catalog.output
    assert "default_priority=low" in catalog.output

    added = _invoke("feeds", "add", *db_args, url)
    assert added.exit_code == 0, added.output
    assert "name=BBC Digest priority=low" in added.output


def test_due_listing_is_empty_without_feeds(db_args: list[str]) -> None:
    result = _invoke("feeds", "due", *db_args)

    assert result.exit_code == 0
    assert "No feeds due for sync." in result.output


def test_unknown_feed_priority_change_is_reported(db_args: list[str]) -> None:
    unknown = _invoke("feeds", "priority", *db_args, "missing-feed", "high")
    assert unknown.exit_code == 1
    assert "Feed not found: missing-feed" in unknown.output

    invalid = _invoke("feeds", "priority", *db_args, "missing-feed", "urgent")
    assert invalid.exit_code == 2


def test_sync_requires_targets(db_args: list[str]) -> None:
    result = _invoke("feeds", "sync", *db_args)

    assert result.exit_code == 2
    assert "--all-due" in result.output


def test_empty_queues_and_clusters_are_reported(db_args: list[str]) -> None:
    dlq = _invoke("dlq", "list", *db_args)
    assert dlq.exit_code == 0
    assert "Dead-letter queue is empty." in dlq.output

    removed = _invoke("dlq", "remove", *db_args, "42")
    assert "Dead-letter item not found: 42" in removed.output

    clusters = _invoke("clusters", "list", *db_args)
    assert clusters.exit_code == 0
    assert "No active clusters." in clusters.output

    generated = _invoke("clusters", "generate", *db_args)
    assert generated.exit_code == 0
    assert "Clustering skipped" in generated.output


def test_usage_show_lists_limits(db_args: list[str], monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FEED_PULSE_LIMIT_EMBEDDINGS", "3")

    result = _invoke("usage", "show", *db_args)

    assert result.exit_code == 0, result.output
    assert "Usage for tenant default_tenant" in result.output
    assert "embedding: used=0 limit=3 remaining=3" in result.output


def test_history_lists_nothing_before_any_sync(db_args: list[str]) -> None:
    empty = _invoke("feeds", "history", *db_args)
    assert empty.exit_code == 0, empty.output
    assert "No syncs recorded." in empty.output

    unknown = _invoke("feeds", "history", *db_args, "--feed-id", "missing-feed")
    assert unknown.exit_code == 1
    assert "Feed not found: missing-feed" in unknown.output
