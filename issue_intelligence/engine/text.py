"""Tokenization and overlap helpers for the heuristic fallback paths."""

from __future__ import annotations

import re

_STOPWORDS = {
    "a", "an", "and", "are", "as", "at", "be", "been", "being", "but", "by",
    "can", "could", "did", "do", "does", "each", "every", "few", "for", "from",
    "had", "has", "have", "he", "here", "how", "i", "if", "in", "into", "is",
    "it", "its", "just", "may", "might", "more", "most", "must", "my", "no",
    "nor", "not", "now", "of", "on", "only", "or", "other", "own", "same",
    "should", "so", "some", "such", "than", "that", "the", "then", "there",
    "these", "they", "this", "those", "to", "too", "very", "was", "we", "were",
    "what", "when", "where", "which", "while", "who", "why", "will", "with",
    "would", "you", "your",
}

_TOKEN_SPLIT = re.compile(r"[^a-z0-9]+")
_MIN_TOKEN_LENGTH = 3


def build_issue_text(title: str, body: str | None) -> str:
    """Combine title and body into the text that gets embedded."""
    return f"{title}\n\n{body or ''}"


def extract_keywords(text: str) -> set[str]:
    """Significant lowercase words: no stopwords, no pure numbers, at least 3 chars."""
    return {
        word
        for word in _TOKEN_SPLIT.split(text.lower())
        if len(word) >= _MIN_TOKEN_LENGTH and word not in _STOPWORDS and not word.isdigit()
    }


def jaccard(a: set[str], b: set[str]) -> float:
    """|a & b| / |a | b|, or 0.0 when either side is empty."""
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def keyword_overlap(text_a: str, text_b: str) -> float:
    """Jaccard overlap of the significant words of two texts."""
    return jaccard(extract_keywords(text_a), extract_keywords(text_b))


def shared_keywords(text_a: str, text_b: str, limit: int = 5) -> list[str]:
    """Alphabetically sorted significant words present in both texts."""
    return sorted(extract_keywords(text_a) & extract_keywords(text_b))[:limit]


def label_overlap(labels_a: list[str], labels_b: list[str]) -> float:
    """Case-insensitive Jaccard overlap of two label lists."""
    return jaccard({lb.lower() for lb in labels_a}, {lb.lower() for lb in labels_b})


def _common_prefix_length(a: str, b: str) -> int:
    length = 0
    for ch_a, ch_b in zip(a, b):
        if ch_a != ch_b:
            break
        length += 1
    return length


def fuzzy_word_match(word: str, candidates: set[str], min_prefix: int = 4) -> bool:
    """True if ``word`` is a prefix of (or prefixed by) a candidate, or shares a long prefix with one."""
    for candidate in candidates:
        if candidate.startswith(word) or word.startswith(candidate):
            return True
        if len(candidate) >= min_prefix and len(word) >= min_prefix:
            if _common_prefix_length(candidate, word) >= min_prefix:
                return True
    return False
