"""SQLModel-backed storage facade for feeds, articles, enrichment and clusters."""

from __future__ import annotations

import json
import logging
import sqlite3
import struct
import threading
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy import update as sa_update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlmodel import Session, col, select

from feed_pulse.config import DEFAULT_TENANT_ID
from feed_pulse.models import (
    AIOperation,
    Article,
    ArticleDraft,
    Cluster,
    DailyUsage,
    DeadLetterItem,
    EmbeddingQueueEntry,
    EmbeddingStatus,
    Feed,
    FeedScheduleUpdate,
    FeedStatus,
    FeedSyncLog,
    QueueStatus,
    RecommendedFeed,
    SyncLogStatus,
    SyncPriority,
    UsageLogEntry,
    Vector,
)
from feed_pulse.storage.alembic_runner import upgrade_head
from feed_pulse.storage.common import build_sqlite_engine, ensure_utc, utc_now
from feed_pulse.storage.sqlmodel_models import (
    ArticleRow,
    ClusterRow,
    DailyUsageRow,
    DeadLetterRow,
    EmbeddingQueueRow,
    FeedRow,
    FeedSyncLogRow,
    RecommendedFeedRow,
    UsageLogRow,
)

logger = logging.getLogger(__name__)

_SCHEDULE_FIELDS = (
    "sync_priority",
    "sync_interval_hours",
    "next_sync_at",
    "last_fetched_at",
    "etag",
    "last_modified",
    "status",
)


class SQLiteRepository:
    """Facade that persists pipeline entities using SQLModel and Alembic.

    Feed, article and cluster reads are scoped to ``tenant_id``. Daily usage
    increments run inside one SQLite write transaction per call, so counters stay
    exact when several workers record usage at once.
    """

    def __init__(self, db_path: Path, *, tenant_id: str = DEFAULT_TENANT_ID) -> None:
        self.db_path = db_path
        self.tenant_id = tenant_id
        self.engine = build_sqlite_engine(db_path=db_path)
        self._usage_lock = threading.Lock()

        # Keep low-level connection for tests and ad-hoc debugging queries.
        self._connection = sqlite3.connect(db_path, check_same_thread=False)
        self._connection.row_factory = sqlite3.Row

    def close(self) -> None:
        self._connection.close()
        self.engine.dispose()

    def init_schema(self) -> None:
        upgrade_head(self.db_path)

    # Feeds

    def add_feed(
        self,
        *,
        url: str,
        name: str,
        priority: SyncPriority = SyncPriority.MEDIUM,
        next_sync_at: datetime | None = None,
    ) -> Feed:
        now = utc_now()
        row = FeedRow(
            feed_id=str(uuid4()),
            tenant_id=self.tenant_id,
            url=url,
            name=name,
            status=FeedStatus.ACTIVE.value,
            sync_priority=priority.value,
            sync_interval_hours=priority.interval_hours,
            next_sync_at=_to_db_datetime(next_sync_at),
            created_at=_to_db_datetime(now),
        )
        with Session(self.engine) as session:
            session.add(row)
            session.commit()
            session.refresh(row)
            return _feed_from_row(row)

    def get_feed_by_id(self, feed_id: str) -> Feed | None:
        with Session(self.engine) as session:
            row = self._feed_row(session, feed_id)
            return _feed_from_row(row) if row is not None else None

    def get_feed_by_url(self, url: str) -> Feed | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(FeedRow).where(FeedRow.tenant_id == self.tenant_id, FeedRow.url == url),
            ).one_or_none()
            return _feed_from_row(row) if row is not None else None

    def list_feeds(self) -> list[Feed]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(FeedRow)
                .where(FeedRow.tenant_id == self.tenant_id)
                .order_by(col(FeedRow.created_at), col(FeedRow.feed_id)),
            ).all()
            return [_feed_from_row(row) for row in rows]

    def get_feeds_due_for_sync(self, *, limit: int, now: datetime) -> list[Feed]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(FeedRow)
                .where(
                    FeedRow.tenant_id == self.tenant_id,
                    FeedRow.status == FeedStatus.ACTIVE.value,
                    (col(FeedRow.next_sync_at).is_(None))
                    | (col(FeedRow.next_sync_at) <= _to_db_datetime(now)),
                )
                .order_by(col(FeedRow.next_sync_at), col(FeedRow.created_at))
                .limit(limit),
            ).all()
            return [_feed_from_row(row) for row in rows]

    def update_feed_schedule(self, feed_id: str, update: FeedScheduleUpdate) -> None:
        with Session(self.engine) as session:
            row = self._feed_row(session, feed_id)
            if row is None:
                logger.warning("Schedule update for unknown feed %s ignored", feed_id)
                return
            for name in _SCHEDULE_FIELDS:
                value = getattr(update, name)
                if value is None:
                    continue
                if isinstance(value, datetime):
                    value = _to_db_datetime(value)
                elif isinstance(value, (SyncPriority, FeedStatus)):
                    value = value.value
                setattr(row, name, value)
            session.add(row)
            session.commit()

    def add_recommended_feed(self, entry: RecommendedFeed) -> None:
        with Session(self.engine) as session:
            session.merge(
                RecommendedFeedRow(
                    url=entry.url,
                    name=entry.name,
                    default_priority=entry.default_priority.value,
                    category=entry.category,
                ),
            )
            session.commit()

    def get_recommended_feed_by_url(self, url: str) -> RecommendedFeed | None:
        with Session(self.engine) as session:
            row = session.get(RecommendedFeedRow, url)
            if row is None:
                return None
            return RecommendedFeed(
                url=row.url,
                name=row.name,
                default_priority=SyncPriority(row.default_priority),
                category=row.category,
            )

    def list_recommended_feeds(self) -> list[RecommendedFeed]:
        with Session(self.engine) as session:
            rows = session.exec(select(RecommendedFeedRow).order_by(col(RecommendedFeedRow.url)))
            return [
                RecommendedFeed(
                    url=row.url,
                    name=row.name,
                    default_priority=SyncPriority(row.default_priority),
                    category=row.category,
                )
                for row in rows
            ]

    def record_feed_sync(self, entry: FeedSyncLog) -> int:
        row = FeedSyncLogRow(
            feed_id=entry.feed_id,
            status=entry.status.value,
            started_at=_to_db_datetime(entry.started_at),
            completed_at=_to_db_datetime(entry.completed_at),
            duration_ms=entry.duration_ms,
            retry_count=entry.retry_count,
            http_status_code=entry.http_status_code,
            error=entry.error,
            error_code=entry.error_code,
            articles_found=entry.articles_found,
            articles_new=entry.articles_new,
            articles_updated=entry.articles_updated,
            articles_skipped=entry.articles_skipped,
            feed_size_bytes=entry.feed_size_bytes,
            etag_received=entry.etag_received,
            last_modified_received=entry.last_modified_received,
        )
        with Session(self.engine) as session:
            session.add(row)
            session.commit()
            session.refresh(row)
            return int(row.log_id or 0)

    def list_feed_sync_logs(
        self,
        *,
        feed_id: str | None = None,
        limit: int = 20,
    ) -> list[FeedSyncLog]:
        statement = (
            select(FeedSyncLogRow)
            .join(FeedRow, col(FeedRow.feed_id) == col(FeedSyncLogRow.feed_id))
            .where(FeedRow.tenant_id == self.tenant_id)
        )
        if feed_id is not None:
            statement = statement.where(FeedSyncLogRow.feed_id == feed_id)
        with Session(self.engine) as session:
            rows = session.exec(
                statement.order_by(
                    col(FeedSyncLogRow.started_at).desc(),
                    col(FeedSyncLogRow.log_id).desc(),
                ).limit(limit),
            ).all()
            return [_sync_log_from_row(row) for row in rows]

    # Articles

    def get_article_by_guid(self, *, feed_id: str, guid: str) -> Article | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(ArticleRow).where(ArticleRow.feed_id == feed_id, ArticleRow.guid == guid),
            ).one_or_none()
            return _article_from_row(row) if row is not None else None

    def create_article(self, *, feed_id: str, draft: ArticleDraft) -> str:
        now = _to_db_datetime(utc_now())
        article_id = str(uuid4())
        row = ArticleRow(
            article_id=article_id,
            feed_id=feed_id,
            guid=draft.guid,
            title=draft.title,
            url=draft.url,
            content=draft.content,
            excerpt=draft.excerpt,
            author=draft.author,
            published_at=_to_db_datetime(draft.published_at),
            image_url=draft.image_url,
            embedding_status=EmbeddingStatus.PENDING.value,
            created_at=now,
            updated_at=now,
        )
        with Session(self.engine) as session:
            session.add(row)
            session.commit()
        return article_id

    def update_article(self, article_id: str, draft: ArticleDraft) -> None:
        with Session(self.engine) as session:
            row = session.get(ArticleRow, article_id)
            if row is None:
                raise LookupError(f"Article not found: {article_id}")
            row.title = draft.title
            row.url = draft.url
            row.content = draft.content
            row.excerpt = draft.excerpt
            row.author = draft.author
            row.published_at = _to_db_datetime(draft.published_at)
            row.image_url = draft.image_url
            row.updated_at = _to_db_datetime(utc_now())
            session.add(row)
            session.commit()

    def get_new_article_ids(self, *, feed_id: str, since: datetime) -> list[str]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(ArticleRow.article_id)
                .where(
                    ArticleRow.feed_id == feed_id,
                    col(ArticleRow.created_at) >= _to_db_datetime(since),
                )
                .order_by(col(ArticleRow.created_at)),
            ).all()
            return list(rows)

    def get_articles(self, article_ids: list[str]) -> list[Article]:
        if not article_ids:
            return []
        with Session(self.engine) as session:
            rows = session.exec(
                select(ArticleRow).where(col(ArticleRow.article_id).in_(article_ids)),
            ).all()
            by_id = {row.article_id: _article_from_row(row) for row in rows}
        return [by_id[article_id] for article_id in article_ids if article_id in by_id]

    def update_article_embedding(
        self,
        *,
        article_id: str,
        embedding: Vector | None,
        status: EmbeddingStatus,
        content_hash: str | None = None,
    ) -> None:
        with Session(self.engine) as session:
            row = session.get(ArticleRow, article_id)
            if row is None:
                logger.warning("Embedding update for unknown article %s ignored", article_id)
                return
            row.embedding_status = status.value
            if embedding is not None:
                row.embedding_dim = len(embedding)
                row.embedding_blob = _pack_vector(embedding)
            elif status != EmbeddingStatus.COMPLETED:
                row.embedding_dim = None
                row.embedding_blob = None
            if content_hash is not None:
                row.content_hash = content_hash
            session.add(row)
            session.commit()

    def list_embedded_articles(self, *, since: datetime) -> list[Article]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(ArticleRow)
                .join(FeedRow, col(FeedRow.feed_id) == col(ArticleRow.feed_id))
                .where(
                    FeedRow.tenant_id == self.tenant_id,
                    ArticleRow.embedding_status == EmbeddingStatus.COMPLETED.value,
                    col(ArticleRow.embedding_blob).is_not(None),
                    col(ArticleRow.created_at) >= _to_db_datetime(since),
                )
                .order_by(col(ArticleRow.created_at).desc()),
            ).all()
            return [_article_from_row(row) for row in rows]

    # Embedding queue

    def add_to_embedding_queue(
        self,
        article_ids: list[str],
        *,
        priority: int,
        max_attempts: int = 3,
    ) -> int:
        if not article_ids:
            return 0
        now = _to_db_datetime(utc_now())
        with Session(self.engine) as session:
            queued = set(
                session.exec(
                    select(EmbeddingQueueRow.article_id).where(
                        col(EmbeddingQueueRow.article_id).in_(article_ids),
                    ),
                ).all(),
            )
            added = 0
            for article_id in dict.fromkeys(article_ids):
                if article_id in queued:
                    continue
                session.add(
                    EmbeddingQueueRow(
                        article_id=article_id,
                        priority=priority,
                        max_attempts=max_attempts,
                        status=QueueStatus.PENDING.value,
                        created_at=now,
                        updated_at=now,
                    ),
                )
                added += 1
            session.commit()
        return added

    def list_pending_queue_entries(self, *, limit: int) -> list[EmbeddingQueueEntry]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(EmbeddingQueueRow)
                .where(EmbeddingQueueRow.status == QueueStatus.PENDING.value)
                .order_by(
                    col(EmbeddingQueueRow.priority),
                    col(EmbeddingQueueRow.created_at),
                    col(EmbeddingQueueRow.entry_id),
                )
                .limit(limit),
            ).all()
            return [_queue_entry_from_row(row) for row in rows]

    def update_queue_entry(
        self,
        entry_id: int,
        *,
        status: QueueStatus,
        attempts: int,
        error: str | None = None,
    ) -> None:
        with Session(self.engine) as session:
            row = session.get(EmbeddingQueueRow, entry_id)
            if row is None:
                return
            row.status = status.value
            row.attempts = attempts
            row.error = error
            row.updated_at = _to_db_datetime(utc_now())
            session.add(row)
            session.commit()

    def remove_queue_entry(self, entry_id: int) -> None:
        with Session(self.engine) as session:
            row = session.get(EmbeddingQueueRow, entry_id)
            if row is not None:
                session.delete(row)
                session.commit()

    def get_queue_stats(self) -> dict[str, int]:
        stats = {status.value: 0 for status in QueueStatus}
        with Session(self.engine) as session:
            rows = session.exec(
                select(EmbeddingQueueRow.status, func.count()).group_by(
                    col(EmbeddingQueueRow.status),
                ),
            ).all()
        for status, count in rows:
            stats[status] = int(count)
        return stats

    # Clusters

    def supersede_active_clusters(self, *, now: datetime) -> int:
        db_now = _to_db_datetime(now)
        with Session(self.engine) as session:
            cluster_ids = list(
                session.exec(
                    select(ClusterRow.cluster_id).where(
                        ClusterRow.tenant_id == self.tenant_id,
                        col(ClusterRow.expires_at) > db_now,
                    ),
                ).all(),
            )
            if not cluster_ids:
                return 0
            session.exec(
                sa_update(ClusterRow)
                .where(col(ClusterRow.cluster_id).in_(cluster_ids))
                .values(expires_at=db_now),
            )
            session.exec(
                sa_update(ArticleRow)
                .where(col(ArticleRow.cluster_id).in_(cluster_ids))
                .values(cluster_id=None),
            )
            session.commit()
        return len(cluster_ids)

    def create_cluster(self, cluster: Cluster) -> str:
        with Session(self.engine) as session:
            session.add(
                ClusterRow(
                    cluster_id=cluster.cluster_id,
                    tenant_id=cluster.tenant_id,
                    topic=cluster.topic,
                    summary=cluster.summary,
                    article_ids_json=json.dumps(cluster.article_ids),
                    source_feed_ids_json=json.dumps(cluster.source_feed_ids),
                    article_count=cluster.article_count,
                    source_count=cluster.source_count,
                    avg_similarity=cluster.avg_similarity,
                    relevance_score=cluster.relevance_score,
                    timeframe_start=_to_db_datetime(cluster.timeframe_start),
                    timeframe_end=_to_db_datetime(cluster.timeframe_end),
                    created_at=_to_db_datetime(cluster.created_at),
                    expires_at=_to_db_datetime(cluster.expires_at),
                ),
            )
            session.commit()
        return cluster.cluster_id

    def assign_articles_to_cluster(self, *, cluster_id: str, article_ids: list[str]) -> None:
        if not article_ids:
            return
        with Session(self.engine) as session:
            session.exec(
                sa_update(ArticleRow)
                .where(col(ArticleRow.article_id).in_(article_ids))
                .values(cluster_id=cluster_id),
            )
            session.commit()

    def list_active_clusters(self, *, now: datetime, limit: int) -> list[Cluster]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(ClusterRow)
                .where(
                    ClusterRow.tenant_id == self.tenant_id,
                    col(ClusterRow.expires_at) > _to_db_datetime(now),
                )
                .order_by(col(ClusterRow.relevance_score).desc(), col(ClusterRow.created_at).desc())
                .limit(limit),
            ).all()
            return [_cluster_from_row(row) for row in rows]

    def expire_clusters(self, *, now: datetime) -> int:
        with Session(self.engine) as session:
            expired_ids = list(
                session.exec(
                    select(ClusterRow.cluster_id).where(
                        ClusterRow.tenant_id == self.tenant_id,
                        col(ClusterRow.expires_at) <= _to_db_datetime(now),
                    ),
                ).all(),
            )
            if not expired_ids:
                return 0
            assigned = set(
                session.exec(
                    select(ArticleRow.cluster_id)
                    .where(col(ArticleRow.cluster_id).in_(expired_ids))
                    .distinct(),
                ).all(),
            )
            if not assigned:
                return 0
            session.exec(
                sa_update(ArticleRow)
                .where(col(ArticleRow.cluster_id).in_(assigned))
                .values(cluster_id=None),
            )
            session.commit()
        return len(assigned)

    # Usage and dead letters

    def get_daily_usage(self, *, tenant_id: str, usage_date: date) -> DailyUsage | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(DailyUsageRow).where(
                    DailyUsageRow.tenant_id == tenant_id,
                    DailyUsageRow.usage_date == usage_date,
                ),
            ).one_or_none()
            return _daily_usage_from_row(row) if row is not None else None

    def increment_daily_usage(  # noqa: PLR0913
        self,
        *,
        tenant_id: str,
        usage_date: date,
        operation: AIOperation,
        provider: str,
        tokens: int,
        cost_usd: float,
        limits: dict[str, int],
    ) -> DailyUsage:
        with self._usage_lock, Session(self.engine) as session:
            session.exec(
                sqlite_insert(DailyUsageRow)
                .values(tenant_id=tenant_id, usage_date=usage_date)
                .on_conflict_do_nothing(index_elements=["tenant_id", "usage_date"]),
            )
            row = session.exec(
                select(DailyUsageRow).where(
                    DailyUsageRow.tenant_id == tenant_id,
                    DailyUsageRow.usage_date == usage_date,
                ),
            ).one()
            usage = _daily_usage_from_row(row)
            usage.increment(operation)
            if tokens:
                usage.tokens_by_provider[provider] = (
                    usage.tokens_by_provider.get(provider, 0) + tokens
                )
            usage.total_cost_usd += cost_usd
            usage.limits = dict(limits)

            row.embeddings_count = usage.embeddings_count
            row.clusterings_count = usage.clusterings_count
            row.searches_count = usage.searches_count
            row.summaries_count = usage.summaries_count
            row.tokens_by_provider_json = json.dumps(usage.tokens_by_provider, sort_keys=True)
            row.total_cost_usd = usage.total_cost_usd
            row.limits_json = json.dumps(usage.limits, sort_keys=True)
            session.add(row)
            session.commit()
            return usage

    def list_daily_usage(self, *, tenant_id: str, since: date) -> list[DailyUsage]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(DailyUsageRow)
                .where(
                    DailyUsageRow.tenant_id == tenant_id,
                    col(DailyUsageRow.usage_date) >= since,
                )
                .order_by(col(DailyUsageRow.usage_date)),
            ).all()
            return [_daily_usage_from_row(row) for row in rows]

    def append_usage_log(self, entry: UsageLogEntry) -> None:
        with Session(self.engine) as session:
            session.add(
                UsageLogRow(
                    tenant_id=entry.tenant_id,
                    operation=entry.operation.value,
                    provider=entry.provider,
                    model=entry.model,
                    input_tokens=entry.input_tokens,
                    output_tokens=entry.output_tokens,
                    cost_usd=entry.cost_usd,
                    success=entry.success,
                    error=entry.error,
                    metadata_json=json.dumps(entry.metadata, ensure_ascii=False, sort_keys=True),
                    created_at=_to_db_datetime(entry.created_at),
                ),
            )
            session.commit()

    def list_usage_log(self, *, tenant_id: str, limit: int = 100) -> list[UsageLogEntry]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(UsageLogRow)
                .where(UsageLogRow.tenant_id == tenant_id)
                .order_by(col(UsageLogRow.id))
                .limit(limit),
            ).all()
            return [
                UsageLogEntry(
                    tenant_id=row.tenant_id,
                    operation=AIOperation(row.operation),
                    provider=row.provider,
                    model=row.model,
                    input_tokens=row.input_tokens,
                    output_tokens=row.output_tokens,
                    cost_usd=row.cost_usd,
                    success=row.success,
                    created_at=_to_utc_aware_datetime(row.created_at),
                    error=row.error,
                    metadata=json.loads(row.metadata_json or "{}"),
                )
                for row in rows
            ]

    def add_dead_letter(  # noqa: PLR0913
        self,
        *,
        operation: str,
        provider: str,
        payload: dict[str, Any],
        error: str,
        attempts: int,
        tenant_id: str | None = None,
    ) -> DeadLetterItem:
        row = DeadLetterRow(
            tenant_id=tenant_id,
            operation=operation,
            provider=provider,
            payload_json=json.dumps(payload, ensure_ascii=False, sort_keys=True, default=str),
            error=error,
            attempts=attempts,
            created_at=_to_db_datetime(utc_now()),
        )
        with Session(self.engine) as session:
            session.add(row)
            session.commit()
            session.refresh(row)
            return _dead_letter_from_row(row)

    def list_dead_letters(self, *, limit: int) -> list[DeadLetterItem]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(DeadLetterRow).order_by(col(DeadLetterRow.item_id)).limit(limit),
            ).all()
            return [_dead_letter_from_row(row) for row in rows]

    def remove_dead_letter(self, item_id: int) -> bool:
        with Session(self.engine) as session:
            row = session.get(DeadLetterRow, item_id)
            if row is None:
                return False
            session.delete(row)
            session.commit()
            return True

    def count_dead_letters(self) -> int:
        with Session(self.engine) as session:
            return int(session.exec(select(func.count()).select_from(DeadLetterRow)).one())

    def _feed_row(self, session: Session, feed_id: str) -> FeedRow | None:
        return session.exec(
            select(FeedRow).where(FeedRow.feed_id == feed_id, FeedRow.tenant_id == self.tenant_id),
        ).one_or_none()


def _feed_from_row(row: FeedRow) -> Feed:
    return Feed(
        feed_id=row.feed_id,
        url=row.url,
        name=row.name,
        status=FeedStatus(row.status),
        sync_priority=SyncPriority(row.sync_priority),
        sync_interval_hours=row.sync_interval_hours,
        next_sync_at=ensure_utc(row.next_sync_at),
        last_fetched_at=ensure_utc(row.last_fetched_at),
        etag=row.etag,
        last_modified=row.last_modified,
        tenant_id=row.tenant_id,
    )


def _sync_log_from_row(row: FeedSyncLogRow) -> FeedSyncLog:
    return FeedSyncLog(
        log_id=row.log_id,
        feed_id=row.feed_id,
        status=SyncLogStatus(row.status),
        started_at=_to_utc_aware_datetime(row.started_at),
        completed_at=_to_utc_aware_datetime(row.completed_at),
        duration_ms=row.duration_ms,
        retry_count=row.retry_count,
        http_status_code=row.http_status_code,
        error=row.error,
        error_code=row.error_code,
        articles_found=row.articles_found,
        articles_new=row.articles_new,
        articles_updated=row.articles_updated,
        articles_skipped=row.articles_skipped,
        feed_size_bytes=row.feed_size_bytes,
        etag_received=row.etag_received,
        last_modified_received=row.last_modified_received,
    )


def _article_from_row(row: ArticleRow) -> Article:
    embedding = None
    if row.embedding_blob is not None and row.embedding_dim:
        embedding = _unpack_vector(row.embedding_blob, row.embedding_dim)
    return Article(
        article_id=row.article_id,
        feed_id=row.feed_id,
        guid=row.guid,
        title=row.title,
        url=row.url,
        content=row.content,
        excerpt=row.excerpt,
        author=row.author,
        published_at=ensure_utc(row.published_at),
        image_url=row.image_url,
        created_at=ensure_utc(row.created_at),
        embedding=embedding,
        embedding_status=EmbeddingStatus(row.embedding_status),
        content_hash=row.content_hash,
        cluster_id=row.cluster_id,
    )


def _queue_entry_from_row(row: EmbeddingQueueRow) -> EmbeddingQueueEntry:
    return EmbeddingQueueEntry(
        entry_id=int(row.entry_id or 0),
        article_id=row.article_id,
        priority=row.priority,
        attempts=row.attempts,
        max_attempts=row.max_attempts,
        status=QueueStatus(row.status),
        error=row.error,
        created_at=ensure_utc(row.created_at),
    )


def _cluster_from_row(row: ClusterRow) -> Cluster:
    return Cluster(
        cluster_id=row.cluster_id,
        tenant_id=row.tenant_id,
        topic=row.topic,
        summary=row.summary,
        article_ids=list(json.loads(row.article_ids_json)),
        source_feed_ids=list(json.loads(row.source_feed_ids_json)),
        avg_similarity=row.avg_similarity,
        relevance_score=row.relevance_score,
        timeframe_start=ensure_utc(row.timeframe_start),
        timeframe_end=ensure_utc(row.timeframe_end),
        created_at=_to_utc_aware_datetime(row.created_at),
        expires_at=_to_utc_aware_datetime(row.expires_at),
    )


def _daily_usage_from_row(row: DailyUsageRow) -> DailyUsage:
    return DailyUsage(
        tenant_id=row.tenant_id,
        usage_date=row.usage_date,
        embeddings_count=row.embeddings_count or 0,
        clusterings_count=row.clusterings_count or 0,
        searches_count=row.searches_count or 0,
        summaries_count=row.summaries_count or 0,
        tokens_by_provider={
            str(key): int(value)
            for key, value in json.loads(row.tokens_by_provider_json or "{}").items()
        },
        total_cost_usd=row.total_cost_usd or 0.0,
        limits={str(key): int(value) for key, value in json.loads(row.limits_json or "{}").items()},
    )


def _dead_letter_from_row(row: DeadLetterRow) -> DeadLetterItem:
    return DeadLetterItem(
        item_id=int(row.item_id or 0),
        operation=row.operation,
        provider=row.provider,
        payload=json.loads(row.payload_json),
        error=row.error,
        attempts=row.attempts,
        created_at=_to_utc_aware_datetime(row.created_at),
        tenant_id=row.tenant_id,
    )


def _pack_vector(vector: Vector) -> bytes:
    return struct.pack(f"{len(vector)}f", *vector)


def _unpack_vector(blob: bytes, dim: int) -> Vector:
    return list(struct.unpack(f"{dim}f", blob))


def _to_db_datetime(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def _to_utc_aware_datetime(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
