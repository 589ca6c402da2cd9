"""Initial feed, article, enrichment and cluster schema."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "feeds",
        sa.Column("feed_id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), server_default="default_tenant", nullable=False),
        sa.Column("url", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("status", sa.String(), server_default="active", nullable=False),
        sa.Column("sync_priority", sa.String(), server_default="medium", nullable=False),
        sa.Column("sync_interval_hours", sa.Integer(), server_default="24", nullable=False),
        sa.Column("next_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_fetched_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("etag", sa.String(), nullable=True),
        sa.Column("last_modified", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("feed_id"),
        sa.UniqueConstraint("tenant_id", "url", name="uq_feeds_tenant_url"),
    )
    op.create_index("ix_feeds_tenant_id", "feeds", ["tenant_id"])
    op.create_index("ix_feeds_url", "feeds", ["url"])
    op.create_index("ix_feeds_status", "feeds", ["status"])
    op.create_index("ix_feeds_sync_priority", "feeds", ["sync_priority"])
    op.create_index("ix_feeds_next_sync_at", "feeds", ["next_sync_at"])

    op.create_table(
        "recommended_feeds",
        sa.Column("url", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("default_priority", sa.String(), server_default="medium", nullable=False),
        sa.Column("category", sa.String(), nullable=True),
        sa.PrimaryKeyConstraint("url"),
    )

    op.create_table(
        "articles",
        sa.Column("article_id", sa.String(), nullable=False),
        sa.Column("feed_id", sa.String(), nullable=False),
        sa.Column("guid", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("url", sa.String(), nullable=False),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("excerpt", sa.Text(), nullable=True),
        sa.Column("author", sa.String(), nullable=True),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("image_url", sa.String(), nullable=True),
        sa.Column("embedding_status", sa.String(), server_default="pending", nullable=False),
        sa.Column("embedding_dim", sa.Integer(), nullable=True),
        sa.Column("embedding_blob", sa.LargeBinary(), nullable=True),
        sa.Column("content_hash", sa.String(), nullable=True),
        sa.Column("cluster_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["feed_id"], ["feeds.feed_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("article_id"),
        sa.UniqueConstraint("feed_id", "guid", name="uq_articles_feed_guid"),
    )
    op.create_index("ix_articles_feed_created", "articles", ["feed_id", "created_at"])
    op.create_index("ix_articles_embedding_status", "articles", ["embedding_status"])
    op.create_index("ix_articles_cluster_id", "articles", ["cluster_id"])

    op.create_table(
        "embedding_queue",
        sa.Column("entry_id", sa.Integer(), nullable=False),
        sa.Column("article_id", sa.String(), nullable=False),
        sa.Column("priority", sa.Integer(), server_default="0", nullable=False),
        sa.Column("attempts", sa.Integer(), server_default="0", nullable=False),
        sa.Column("max_attempts", sa.Integer(), server_default="3", nullable=False),
        sa.Column("status", sa.String(), server_default="pending", nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["article_id"], ["articles.article_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("entry_id"),
        sa.UniqueConstraint("article_id"),
    )
    op.create_index(
        "ix_embedding_queue_status_priority",
        "embedding_queue",
        ["status", "priority"],
    )

    op.create_table(
        "ai_usage_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("operation", sa.String(), nullable=False),
        sa.Column("provider", sa.String(), nullable=False),
        sa.Column("model", sa.String(), nullable=False),
        sa.Column("input_tokens", sa.Integer(), server_default="0", nullable=False),
        sa.Column("output_tokens", sa.Integer(), server_default="0", nullable=False),
        sa.Column("cost_usd", sa.Float(), server_default="0", nullable=False),
        sa.Column("success", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("metadata_json", sa.Text(), server_default="{}", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_ai_usage_logs_tenant_id", "ai_usage_logs", ["tenant_id"])
    op.create_index("ix_ai_usage_logs_operation", "ai_usage_logs", ["operation"])

    op.create_table(
        "ai_usage_daily",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("usage_date", sa.Date(), nullable=False),
        sa.Column("embeddings_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("clusterings_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("searches_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("summaries_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("tokens_by_provider_json", sa.Text(), server_default="{}", nullable=False),
        sa.Column("total_cost_usd", sa.Float(), server_default="0", nullable=False),
        sa.Column("limits_json", sa.Text(), server_default="{}", nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "usage_date", name="uq_ai_usage_daily_tenant_date"),
    )
    op.create_index("ix_ai_usage_daily_tenant_id", "ai_usage_daily", ["tenant_id"])

    op.create_table(
        "dead_letter_items",
        sa.Column("item_id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=True),
        sa.Column("operation", sa.String(), nullable=False),
        sa.Column("provider", sa.String(), nullable=False),
        sa.Column("payload_json", sa.Text(), nullable=False),
        sa.Column("error", sa.Text(), nullable=False),
        sa.Column("attempts", sa.Integer(), server_default="0", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("item_id"),
    )
    op.create_index("ix_dead_letter_items_tenant_id", "dead_letter_items", ["tenant_id"])
    op.create_index("ix_dead_letter_items_operation", "dead_letter_items", ["operation"])

    op.create_table(
        "clusters",
        sa.Column("cluster_id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("topic", sa.String(), nullable=False),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("article_ids_json", sa.Text(), nullable=False),
        sa.Column("source_feed_ids_json", sa.Text(), nullable=False),
        sa.Column("article_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("source_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("avg_similarity", sa.Float(), server_default="0", nullable=False),
        sa.Column("relevance_score", sa.Float(), server_default="0", nullable=False),
        sa.Column("timeframe_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("timeframe_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("cluster_id"),
    )
    op.create_index("ix_clusters_tenant_id", "clusters", ["tenant_id"])
    op.create_index("ix_clusters_expires_at", "clusters", ["expires_at"])


def downgrade() -> None:
    op.drop_index("ix_clusters_expires_at", table_name="clusters")
    op.drop_index("ix_clusters_tenant_id", table_name="clusters")
    op.drop_table("clusters")
    op.drop_index("ix_dead_letter_items_operation", table_name="dead_letter_items")
    op.drop_index("ix_dead_letter_items_tenant_id", table_name="dead_letter_items")
    op.drop_table("dead_letter_items")
    op.drop_index("ix_ai_usage_daily_tenant_id", table_name="ai_usage_daily")
    op.drop_table("ai_usage_daily")
    op.drop_index("ix_ai_usage_logs_operation", table_name="ai_usage_logs")
    op.drop_index("ix_ai_usage_logs_tenant_id", table_name="ai_usage_logs")
    op.drop_table("ai_usage_logs")
    op.drop_index("ix_embedding_queue_status_priority", table_name="embedding_queue")
    op.drop_table("embedding_queue")
    op.drop_index("ix_articles_cluster_id", table_name="articles")
    op.drop_index("ix_articles_embedding_status", table_name="articles")
    op.drop_index("ix_articles_feed_created", table_name="articles")
    op.drop_table("articles")
    op.drop_table("recommended_feeds")
    op.drop_index("ix_feeds_next_sync_at", table_name="feeds")
    op.drop_index("ix_feeds_sync_priority", table_name="feeds")
    op.drop_index("ix_feeds_status", table_name="feeds")
    op.drop_index("ix_feeds_url", table_name="feeds")
    op.drop_index("ix_feeds_tenant_id", table_name="feeds")
    op.drop_table("feeds")
