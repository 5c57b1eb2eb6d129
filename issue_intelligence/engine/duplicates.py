"""Duplicate issue detection: embedding similarity with a keyword-overlap fallback."""

from __future__ import annotations

import logging

from issue_intelligence.engine.config import ConfigurationError
from issue_intelligence.engine.confidence import ConfidenceScorer, full_confidence
from issue_intelligence.engine.models import (
    DetectionPath,
    DuplicateDetectionConfig,
    DuplicateDetectionResult,
    Issue,
    IssueQuery,
    SimilarityCandidate,
    SimilarityThresholds,
)
from issue_intelligence.engine.providers import EmbeddingUnavailableError
from issue_intelligence.engine.similarity import SimilarityEngine
from issue_intelligence.engine.text import build_issue_text, extract_keywords, jaccard

logger = logging.getLogger(__name__)

SECTION_ID = "duplicate-detection"

# Weights for the overall confidence block
_WEIGHTS = {
    "patternMatch": 0.4,
    "inputQuality": 0.2,
    "signalStrength": 0.4,
}

# How much the similarity signal itself is trusted on each path
_EMBEDDING_SIGNAL = 0.85
_KEYWORD_SIGNAL = 0.4

# Description length at which input quality saturates
_FULL_DESCRIPTION_CHARS = 300


def _input_quality(body: str) -> float:
    return min(1.0, len(body.strip()) / _FULL_DESCRIPTION_CHARS)


def _tier_and_cap(
    candidates: list[SimilarityCandidate],
    thresholds: SimilarityThresholds,
    max_results: int,
) -> tuple[list[SimilarityCandidate], list[SimilarityCandidate], list[SimilarityCandidate]]:
    """Sort all candidates together, keep the top ``max_results``, then split into tiers."""
    ranked = sorted(candidates, key=lambda c: c.similarity, reverse=True)[:max_results]
    high = [c for c in ranked if c.similarity >= thresholds.high]
    medium = [c for c in ranked if thresholds.medium <= c.similarity < thresholds.high]
    low = [c for c in ranked if c.similarity < thresholds.medium]
    return high, medium, low


class DuplicateDetector:
    """Finds existing issues that duplicate a new one.

    The primary path delegates to the SimilarityEngine. When embeddings are
    unavailable the detector falls back to keyword overlap with lower
    thresholds, reports ``path=fallback`` and caps its overall confidence.
    """

    def __init__(
        self,
        engine: SimilarityEngine,
        scorer: ConfidenceScorer | None = None,
        config: DuplicateDetectionConfig | None = None,
    ):
        self.engine = engine
        self.scorer = scorer or ConfidenceScorer()
        self.config = config or DuplicateDetectionConfig()

    async def detect(
        self,
        query: IssueQuery,
        existing_issues: list[Issue],
        max_results: int | None = None,
    ) -> DuplicateDetectionResult:
        """Detect potential duplicates of ``query`` among ``existing_issues``.

        Args:
            query: The new issue.
            existing_issues: Candidate pool. The query's own id is skipped.
            max_results: Cap on the combined number of candidates across
                tiers (None = config default).

        Raises:
            ConfigurationError: if ``max_results`` is less than 1.
        """
        if max_results is None:
            max_results = self.config.max_results
        if max_results < 1:
            raise ConfigurationError(f"max_results must be >= 1, got {max_results}")

        pool = [issue for issue in existing_issues if not query.issue_id or issue.id != query.issue_id]
        if not pool:
            return self._empty_result()

        try:
            return await self._detect_with_embeddings(query, pool, max_results)
        except EmbeddingUnavailableError as e:
            logger.warning("Duplicate detection falling back to keyword overlap: %s", e)
            return self._detect_with_keywords(query, pool, max_results)

    async def _detect_with_embeddings(
        self,
        query: IssueQuery,
        pool: list[Issue],
        max_results: int,
    ) -> DuplicateDetectionResult:
        thresholds = self.config.thresholds
        tiers = await self.engine.find_similar(query, pool, thresholds)
        high, medium, low = _tier_and_cap(tiers.ranked(), thresholds, max_results)

        confidence = self.scorer.score(
            factors={
                "patternMatch": tiers.scanned / tiers.total if tiers.total else 1.0,
                "inputQuality": _input_quality(query.body),
                "signalStrength": _EMBEDDING_SIGNAL,
            },
            weights=_WEIGHTS,
            section_id=SECTION_ID,
            reasoning=f"Semantic duplicate detection using embeddings. Scanned {tiers.scanned} of {tiers.total} issues.",
        )

        return DuplicateDetectionResult(
            high=high,
            medium=medium,
            low=low,
            new_embedding=tiers.new_embedding,
            confidence=confidence,
            path=DetectionPath.PRIMARY,
        )

    def _detect_with_keywords(
        self,
        query: IssueQuery,
        pool: list[Issue],
        max_results: int,
    ) -> DuplicateDetectionResult:
        thresholds = self.config.fallback_thresholds
        query_keywords = extract_keywords(build_issue_text(query.title, query.body))

        candidates: list[SimilarityCandidate] = []
        for issue in pool:
            similarity = jaccard(query_keywords, extract_keywords(build_issue_text(issue.title, issue.body)))
            if similarity < thresholds.min:
                continue
            candidates.append(SimilarityCandidate(
                issue_id=issue.id,
                issue_number=issue.number,
                title=issue.title,
                similarity=similarity,
                reasoning=f"Keyword-based similarity: {similarity * 100:.0f}% overlap in terms",
            ))

        high, medium, low = _tier_and_cap(candidates, thresholds, max_results)

        confidence = self.scorer.score(
            factors={
                "patternMatch": 1.0,
                "inputQuality": _input_quality(query.body),
                "signalStrength": _KEYWORD_SIGNAL,
            },
            weights=_WEIGHTS,
            section_id=SECTION_ID,
            cap=self.config.fallback_confidence_cap,
            reasoning=f"Keyword-based fallback detection (embeddings unavailable). Scanned {len(pool)} issues.",
        )

        return DuplicateDetectionResult(
            high=high,
            medium=medium,
            low=low,
            confidence=confidence,
            path=DetectionPath.FALLBACK,
        )

    def _empty_result(self) -> DuplicateDetectionResult:
        return DuplicateDetectionResult(confidence=full_confidence(
            self.scorer, SECTION_ID, "No existing issues to compare against.",
        ))
