from pathlib import Path

import allure

from feed_pulse.storage.repository import SQLiteRepository

pytestmark = [
    allure.epic("Storage"),
    allure.feature("Schema & Repository"),
]


def test_alembic_schema_is_initialized_to_head(tmp_path: Path) -> None:
    repository = SQLiteRepository(tmp_path / "migrations.db")
    repository.init_schema()

    row = repository._connection.execute(
        "SELECT version_num FROM alembic_version LIMIT 1"
    ).fetchone()
    assert row is not None
    assert str(row["version_num"]) == "20261018_0002"

    tables = repository._connection.execute(
        """
        SELECT name
        FROM sqlite_master
        WHERE type = 'table' AND name != 'alembic_version'
        ORDER BY name
        """
    ).fetchall()
    assert [str(row["name"]) for row in tables] == [
        "ai_usage_daily",
        "ai_usage_logs",
        "articles",
        "clusters",
        "dead_letter_items",
        "embedding_queue",
        "feed_sync_logs",
        "feeds",
        "recommended_feeds",
    ]
    repository.close()


def test_init_schema_is_idempotent(tmp_path: Path) -> None:
    repository = SQLiteRepository(tmp_path / "twice.db")
    repository.init_schema()
    repository.add_feed(url="https://example.com/feed.xml", name="Example")

    repository.init_schema()

    assert [feed.url for feed in repository.list_feeds()] == ["https://example.com/feed.xml"]
    repository.close()
