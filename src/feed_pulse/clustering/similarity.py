"""Vector similarity and nearest-neighbour lookup over article embeddings."""

from __future__ import annotations

import math
from dataclasses import dataclass

from feed_pulse.errors import DimensionMismatch
from feed_pulse.models import Article, Vector

DEFAULT_SIMILAR_THRESHOLD = 0.7
DEFAULT_MAX_RESULTS = 5


@dataclass(slots=True)
class SimilarArticle:
    """Candidate article ranked by similarity to a source article."""

    article: Article
    similarity: float


def cosine_similarity(left: Vector, right: Vector) -> float:
    """Cosine similarity of equal-length vectors; zero-norm vectors score 0."""

    if len(left) != len(right):
        raise DimensionMismatch(len(left), len(right))
    if not left:
        return 0.0

    dot = sum(l_value * r_value for l_value, r_value in zip(left, right, strict=True))
    left_norm = math.sqrt(sum(value * value for value in left))
    right_norm = math.sqrt(sum(value * value for value in right))
    if left_norm == 0 or right_norm == 0:
        return 0.0
    return max(-1.0, min(1.0, dot / (left_norm * right_norm)))


def find_similar_articles(
    source: Article,
    candidates: list[Article],
    *,
    threshold: float = DEFAULT_SIMILAR_THRESHOLD,
    max_results: int = DEFAULT_MAX_RESULTS,
    exclude_ids: set[str] | frozenset[str] = frozenset(),
    feed_ids: set[str] | frozenset[str] | None = None,
) -> list[SimilarArticle]:
    """Candidates at or above ``threshold``, most similar first."""

    if source.embedding is None:
        return []

    matches: list[SimilarArticle] = []
    for candidate in candidates:
        if candidate.article_id == source.article_id or candidate.article_id in exclude_ids:
            continue
        if feed_ids is not None and candidate.feed_id not in feed_ids:
            continue
        if candidate.embedding is None:
            continue
        similarity = cosine_similarity(source.embedding, candidate.embedding)
        if similarity >= threshold:
            matches.append(SimilarArticle(article=candidate, similarity=similarity))

    matches.sort(key=lambda match: (-match.similarity, match.article.article_id))
    return matches[:max_results]
