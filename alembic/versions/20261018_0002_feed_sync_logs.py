"""Per-sync records of subscribed feeds."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261018_0002"
down_revision = "20261018_0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "feed_sync_logs",
        sa.Column("log_id", sa.Integer(), nullable=False),
        sa.Column("feed_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_ms", sa.Integer(), server_default="0", nullable=False),
        sa.Column("retry_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("http_status_code", sa.Integer(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("error_code", sa.String(), nullable=True),
        sa.Column("articles_found", sa.Integer(), server_default="0", nullable=False),
        sa.Column("articles_new", sa.Integer(), server_default="0", nullable=False),
        sa.Column("articles_updated", sa.Integer(), server_default="0", nullable=False),
        sa.Column("articles_skipped", sa.Integer(), server_default="0", nullable=False),
        sa.Column("feed_size_bytes", sa.Integer(), nullable=True),
        sa.Column("etag_received", sa.String(), nullable=True),
        sa.Column("last_modified_received", sa.String(), nullable=True),
        sa.ForeignKeyConstraint(["feed_id"], ["feeds.feed_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("log_id"),
    )
    op.create_index(
        "ix_feed_sync_logs_feed_started",
        "feed_sync_logs",
        ["feed_id", "started_at"],
    )
    op.create_index("ix_feed_sync_logs_status", "feed_sync_logs", ["status"])


def downgrade() -> None:
    op.drop_index("ix_feed_sync_logs_status", table_name="feed_sync_logs")
    op.drop_index("ix_feed_sync_logs_feed_started", table_name="feed_sync_logs")
    op.drop_table("feed_sync_logs")
