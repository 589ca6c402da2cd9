"""Greedy topic clustering of embedded articles."""

from __future__ import annotations

import hashlib
import logging
from collections import Counter
from dataclasses import dataclass
from datetime import UTC, datetime
from itertools import combinations

from feed_pulse.clustering.keywords import keyword_overlap
from feed_pulse.clustering.similarity import cosine_similarity
from feed_pulse.models import Article

DEFAULT_CLUSTER_THRESHOLD = 0.75
MIN_CLUSTER_ARTICLES = 2
MIN_CLUSTER_SOURCES = 2
CLUSTER_EXPIRATION_HOURS = 48

logger = logging.getLogger(__name__)

_OLDEST = datetime.min.replace(tzinfo=UTC)


@dataclass(slots=True)
class ArticleGroup:
    """Accepted group of articles before persistence."""

    articles: list[Article]
    avg_similarity: float
    source_feed_ids: list[str]

    @property
    def article_ids(self) -> list[str]:
        return [article.article_id for article in self.articles]

    @property
    def relevance_score(self) -> int:
        return calculate_relevance_score(len(self.articles), len(self.source_feed_ids))


def calculate_relevance_score(article_count: int, source_count: int) -> int:
    if article_count <= 0 or source_count <= 0:
        return 0
    return article_count * source_count


def form_clusters(
    articles: list[Article],
    threshold: float = DEFAULT_CLUSTER_THRESHOLD,
    *,
    min_articles: int = MIN_CLUSTER_ARTICLES,
    min_sources: int = MIN_CLUSTER_SOURCES,
    keyword_overlap_min: int = 0,
) -> list[ArticleGroup]:
    """Greedy single pass, newest articles seed first.

    A seed collects unassigned articles at or above ``threshold``; candidates are
    admitted most-similar first and only when they clear the threshold against
    every member already admitted. With ``keyword_overlap_min`` above zero a
    candidate must also share that many weighted title/excerpt keywords with the
    seed and with every member. Groups below ``min_articles`` members or
    ``min_sources`` distinct feeds are discarded and their articles stay free.
    Each article lands in at most one group.

    Only articles whose embedding has the most common length take part.
    """

    embedded = sorted(
        _dominant_dimension([article for article in articles if article.embedding]),
        key=lambda article: (_recency(article), article.article_id),
        reverse=True,
    )
    similarity = _SimilarityCache()
    assigned: set[str] = set()
    groups: list[ArticleGroup] = []

    def related(left: Article, right: Article) -> bool:
        if similarity(left, right) < threshold:
            return False
        return keyword_overlap_min <= 0 or keyword_overlap(left, right) >= keyword_overlap_min

    for seed in embedded:
        if seed.article_id in assigned:
            continue
        candidates = [
            (similarity(seed, other), other)
            for other in embedded
            if other.article_id != seed.article_id
            and other.article_id not in assigned
            and related(seed, other)
        ]
        candidates.sort(key=lambda pair: (-pair[0], pair[1].article_id))

        members = [seed]
        for _, candidate in candidates:
            if all(related(candidate, member) for member in members):
                members.append(candidate)

        source_feed_ids = sorted({member.feed_id for member in members})
        if len(members) < min_articles or len(source_feed_ids) < min_sources:
            continue

        pair_scores = [similarity(left, right) for left, right in combinations(members, 2)]
        groups.append(
            ArticleGroup(
                articles=members,
                avg_similarity=sum(pair_scores) / len(pair_scores),
                source_feed_ids=source_feed_ids,
            ),
        )
        assigned.update(member.article_id for member in members)

    return groups


def build_cluster_id(article_ids: list[str], created_at: datetime) -> str:
    joined = "|".join([created_at.isoformat(), *sorted(article_ids)])
    digest = hashlib.sha1(joined.encode("utf-8"), usedforsecurity=False).hexdigest()  # noqa: S324
    return f"cluster:{digest}"


def _dominant_dimension(articles: list[Article]) -> list[Article]:
    """Keep articles whose embedding length is the most common one (ties: larger)."""

    lengths = Counter(len(article.embedding or []) for article in articles)
    if len(lengths) <= 1:
        return articles
    dimension = max(lengths, key=lambda length: (lengths[length], length))
    kept = [article for article in articles if len(article.embedding or []) == dimension]
    logger.warning(
        "Skipping %d articles with embedding dimensions other than %d",
        len(articles) - len(kept),
        dimension,
    )
    return kept


def _recency(article: Article) -> datetime:
    return article.published_at or article.created_at or _OLDEST


class _SimilarityCache:
    def __init__(self) -> None:
        self._scores: dict[tuple[str, str], float] = {}

    def __call__(self, left: Article, right: Article) -> float:
        key = (
            (left.article_id, right.article_id)
            if left.article_id <= right.article_id
            else (right.article_id, left.article_id)
        )
        score = self._scores.get(key)
        if score is None:
            score = cosine_similarity(left.embedding or [], right.embedding or [])
            self._scores[key] = score
        return score
