"""Embedding-based similarity search over a candidate pool of issues."""

from __future__ import annotations

import asyncio
import logging

from issue_intelligence.engine.content_hash import compute_content_hash
from issue_intelligence.engine.embedding_cache import EmbeddingCache
from issue_intelligence.engine.models import (
    Issue,
    IssueQuery,
    SimilarityCandidate,
    SimilarityThresholds,
    SimilarityTiers,
)
from issue_intelligence.engine.providers import Embedder, EmbeddingUnavailableError
from issue_intelligence.engine.text import build_issue_text, shared_keywords

logger = logging.getLogger(__name__)


def _similarity_reasoning(similarity: float, thresholds: SimilarityThresholds, shared: list[str]) -> str:
    percent = f"{similarity * 100:.0f}%"
    if similarity >= thresholds.high:
        text = f"{percent} semantic similarity - very likely the same issue"
    elif similarity >= thresholds.medium:
        text = f"{percent} semantic similarity - closely related, worth reviewing"
    else:
        text = f"{percent} semantic similarity - some overlap in topic"
    if shared:
        text += f" (shared terms: {', '.join(shared)})"
    return text


class SimilarityEngine:
    """Embeds a query and a candidate pool, then tiers candidates by cosine similarity.

    Candidate embeddings are reused from the cache when the issue's content
    hash still matches; misses are embedded in a single batched call issued
    concurrently with the query embedding.
    """

    def __init__(self, embedder: Embedder, cache: EmbeddingCache | None = None):
        self.embedder = embedder
        self.cache = cache if cache is not None else EmbeddingCache()

    async def _embed(
        self,
        query_text: str,
        candidates: list[Issue],
    ) -> tuple[list[float], dict[str, list[float]]]:
        """Return the query embedding and a map of candidate id to embedding.

        Raises:
            EmbeddingUnavailableError: if any provider call fails or returns
                the wrong number of vectors.
        """
        embeddings: dict[str, list[float]] = {}
        misses: list[tuple[Issue, str]] = []

        for issue in candidates:
            content_hash = compute_content_hash(issue.title, issue.body)
            cached = self.cache.get(issue.id, content_hash)
            if cached is not None:
                embeddings[issue.id] = cached
            else:
                misses.append((issue, content_hash))

        miss_texts = [build_issue_text(issue.title, issue.body) for issue, _ in misses]

        try:
            if miss_texts:
                query_embedding, miss_embeddings = await asyncio.gather(
                    self.embedder.embed(query_text),
                    self.embedder.embed_many(miss_texts),
                )
            else:
                query_embedding = await self.embedder.embed(query_text)
                miss_embeddings = []
        except Exception as e:
            raise EmbeddingUnavailableError(f"Embedding provider failed: {e}") from e

        if len(miss_embeddings) != len(misses):
            raise EmbeddingUnavailableError(
                f"Embedding provider returned {len(miss_embeddings)} vectors for {len(misses)} texts"
            )

        # Re-associate by position in the request, never by arrival order
        for (issue, content_hash), embedding in zip(misses, miss_embeddings):
            vector = list(embedding)
            self.cache.set(issue.id, content_hash, vector)
            embeddings[issue.id] = vector

        return list(query_embedding), embeddings

    async def find_similar(
        self,
        query: IssueQuery,
        candidates: list[Issue],
        thresholds: SimilarityThresholds | None = None,
    ) -> SimilarityTiers:
        """Tier candidates by similarity to the query.

        Args:
            query: Subject issue text.
            candidates: Issues to compare against. Duplicated ids are compared once.
            thresholds: Tier boundaries; candidates below ``min`` are dropped.

        Returns:
            SimilarityTiers with each tier sorted by descending similarity and
            the query embedding as ``new_embedding``.

        Raises:
            EmbeddingUnavailableError: when the embedding provider fails.
        """
        thresholds = thresholds or SimilarityThresholds()
        query_text = build_issue_text(query.title, query.body)

        unique: dict[str, Issue] = {}
        for issue in candidates:
            unique.setdefault(issue.id, issue)
        pool = list(unique.values())

        query_embedding, embeddings = await self._embed(query_text, pool)

        tiers = SimilarityTiers(new_embedding=query_embedding, total=len(pool))

        for issue in pool:
            embedding = embeddings.get(issue.id)
            if embedding is None:
                continue
            tiers.scanned += 1

            similarity = self.embedder.cosine_similarity(query_embedding, embedding)
            if similarity < thresholds.min:
                continue

            shared = shared_keywords(query_text, build_issue_text(issue.title, issue.body))
            candidate = SimilarityCandidate(
                issue_id=issue.id,
                issue_number=issue.number,
                title=issue.title,
                similarity=similarity,
                reasoning=_similarity_reasoning(similarity, thresholds, shared),
            )

            if similarity >= thresholds.high:
                tiers.high.append(candidate)
            elif similarity >= thresholds.medium:
                tiers.medium.append(candidate)
            else:
                tiers.low.append(candidate)

        for tier in (tiers.high, tiers.medium, tiers.low):
            tier.sort(key=lambda c: c.similarity, reverse=True)

        logger.debug(
            "Similarity search: %d high, %d medium, %d low of %d candidates",
            len(tiers.high), len(tiers.medium), len(tiers.low), len(pool),
        )
        return tiers
