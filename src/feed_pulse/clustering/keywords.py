"""Keyword overlap between article headlines and excerpts."""

from __future__ import annotations

import re

from feed_pulse.models import Article

MIN_KEYWORD_LENGTH = 4
PHRASE_WEIGHT = 2

_TOKEN_RE = re.compile(r"[^\W_]+")

STOP_WORDS = frozenset(
    {
        "about",
        "above",
        "after",
        "again",
        "also",
        "before",
        "been",
        "being",
        "below",
        "between",
        "both",
        "could",
        "does",
        "during",
        "each",
        "from",
        "further",
        "have",
        "here",
        "into",
        "might",
        "more",
        "most",
        "must",
        "once",
        "only",
        "other",
        "same",
        "said",
        "says",
        "should",
        "some",
        "such",
        "than",
        "that",
        "their",
        "them",
        "then",
        "there",
        "these",
        "they",
        "this",
        "those",
        "through",
        "under",
        "very",
        "were",
        "what",
        "when",
        "where",
        "which",
        "whom",
        "whose",
        "will",
        "with",
        "would",
        "your",
    },
)


def extract_keywords(text: str) -> set[str]:
    """Significant words plus adjacent two-word phrases (joined with ``_``)."""

    tokens = _TOKEN_RE.findall(text.lower())
    significant = [len(token) >= MIN_KEYWORD_LENGTH and token not in STOP_WORDS for token in tokens]
    keywords = {token for token, keep in zip(tokens, significant, strict=True) if keep}
    keywords.update(
        f"{tokens[index]}_{tokens[index + 1]}"
        for index in range(len(tokens) - 1)
        if significant[index] and significant[index + 1]
    )
    return keywords


def keyword_overlap(left: Article, right: Article) -> int:
    """Weighted count of shared keywords; phrases count double."""

    shared = extract_keywords(_article_text(left)) & extract_keywords(_article_text(right))
    return sum(PHRASE_WEIGHT if "_" in term else 1 for term in shared)


def _article_text(article: Article) -> str:
    return f"{article.title} {article.excerpt or ''}"
