"""Related issue linking: semantic, dependency and component strategies merged into one ranked list."""

from __future__ import annotations

import logging
import re

from issue_intelligence.engine.config import ConfigurationError
from issue_intelligence.engine.confidence import ConfidenceScorer, full_confidence
from issue_intelligence.engine.models import (
    ConfidenceScore,
    DependencyGenerationResponse,
    DependencySubType,
    DetectionPath,
    Issue,
    IssueQuery,
    RelatedIssueConfig,
    RelatedIssueResult,
    Relationship,
    RelationshipType,
    SimilarityThresholds,
    StrategyOutcome,
    StrategyReport,
)
from issue_intelligence.engine.prompts import DEPENDENCY_SYSTEM_PROMPT, build_dependency_prompt
from issue_intelligence.engine.providers import EmbeddingUnavailableError, StructuredGenerator
from issue_intelligence.engine.similarity import SimilarityEngine
from issue_intelligence.engine.text import build_issue_text, keyword_overlap, label_overlap

logger = logging.getLogger(__name__)

SECTION_ID = "related-issues"

# Phrases saying the issue containing them must land first
BLOCKS_KEYWORDS = [
    "enables", "unblocks", "required for", "blocks", "prerequisite for",
    "must be done before", "needed for", "enables work on",
]

# Phrases saying the issue containing them waits on another
BLOCKED_BY_KEYWORDS = [
    "prerequisite", "requires", "depends on", "needs", "blocked by",
    "waiting for", "depends upon", "cannot start until", "after #",
]

_EXPLICIT_REFERENCE_CONFIDENCE = 0.9

# Implicit dependencies need dependency phrasing plus this much keyword overlap
_IMPLICIT_OVERLAP_MIN = 0.4
_IMPLICIT_BASE_CONFIDENCE = 0.5
_IMPLICIT_OVERLAP_WEIGHT = 0.2

_WEIGHTS = {
    "inputCompleteness": 0.3,
    "aiSelfAssessment": 0.4,
    "patternMatch": 0.3,
}

# Candidate pool size at which input completeness saturates
_FULL_POOL_SIZE = 50

_DEGRADED = (StrategyOutcome.FALLBACK, StrategyOutcome.UNAVAILABLE)


def _reference_pattern(number: int) -> re.Pattern:
    return re.compile(rf"#{number}\b|issue\s*{number}\b", re.IGNORECASE)


def _reference_direction(text: str, number: int) -> DependencySubType | None:
    """Classify how ``text`` refers to issue ``number``.

    Returns None when there is no reference. Only dependency phrases that
    start before the reference decide the direction; a phrase may run into
    the reference itself, as in ``after #12``.
    """
    match = _reference_pattern(number).search(text)
    if match is None:
        return None

    blocks = any(0 <= text.find(kw) < match.start() for kw in BLOCKS_KEYWORDS)
    blocked_by = any(0 <= text.find(kw) < match.start() for kw in BLOCKED_BY_KEYWORDS)

    if blocks and not blocked_by:
        return DependencySubType.BLOCKS
    if blocked_by and not blocks:
        return DependencySubType.BLOCKED_BY
    return DependencySubType.RELATED_TO


def _invert(sub_type: DependencySubType) -> DependencySubType:
    if sub_type == DependencySubType.BLOCKS:
        return DependencySubType.BLOCKED_BY
    if sub_type == DependencySubType.BLOCKED_BY:
        return DependencySubType.BLOCKS
    return sub_type


def _has_dependency_phrasing(text: str) -> bool:
    return any(kw in text for kw in BLOCKS_KEYWORDS) or any(kw in text for kw in BLOCKED_BY_KEYWORDS)


def merge_relationships(groups: list[list[Relationship]], source_issue_id: str = "") -> list[Relationship]:
    """Union relationship lists, one entry per target, sorted by descending confidence.

    For a target produced more than once the highest-confidence relationship
    wins; on a tie the earlier group wins. Relationships pointing back at
    ``source_issue_id`` are dropped.
    """
    best: dict[str, Relationship] = {}
    for group in groups:
        for rel in group:
            if source_issue_id and rel.target_issue_id == source_issue_id:
                continue
            current = best.get(rel.target_issue_id)
            if current is None or rel.confidence > current.confidence:
                best[rel.target_issue_id] = rel
    return sorted(best.values(), key=lambda r: r.confidence, reverse=True)


class RelatedIssueLinker:
    """Finds issues related to a subject issue.

    Strategies:
      - semantic: embedding similarity at or above ``semantic_threshold``
      - dependency: explicit ``#N`` references plus structured generation for
        the rest; keyword heuristics replace generation when it is unavailable
      - component: label overlap at or above ``component_min_overlap``
    """

    def __init__(
        self,
        engine: SimilarityEngine | None = None,
        generator: StructuredGenerator | None = None,
        scorer: ConfidenceScorer | None = None,
        config: RelatedIssueConfig | None = None,
    ):
        self.engine = engine
        self.generator = generator
        self.scorer = scorer or ConfidenceScorer()
        self.config = config or RelatedIssueConfig()

    async def find(
        self,
        query: IssueQuery,
        candidates: list[Issue],
        max_results: int | None = None,
    ) -> RelatedIssueResult:
        """Find relationships between ``query`` and ``candidates``.

        Raises:
            ConfigurationError: if ``max_results`` is less than 1.
        """
        if max_results is None:
            max_results = self.config.max_results
        if max_results < 1:
            raise ConfigurationError(f"max_results must be >= 1, got {max_results}")

        pool = [issue for issue in candidates if not query.issue_id or issue.id != query.issue_id]
        if not pool:
            return RelatedIssueResult(confidence=full_confidence(
                self.scorer, SECTION_ID, "No candidate issues to compare against.",
            ))

        groups: list[list[Relationship]] = []
        reports: list[StrategyReport] = []

        for strategy, enabled, run in (
            (RelationshipType.SEMANTIC, self.config.include_semantic, self._semantic),
            (RelationshipType.DEPENDENCY, self.config.include_dependencies, self._dependencies),
            (RelationshipType.COMPONENT, self.config.include_component, self._component),
        ):
            if not enabled:
                reports.append(StrategyReport(strategy=strategy, outcome=StrategyOutcome.DISABLED))
                continue
            found, report = await run(query, pool)
            groups.append(found)
            reports.append(report)

        relationships = merge_relationships(groups, query.issue_id)[:max_results]

        degraded = any(r.outcome in _DEGRADED for r in reports)
        confidence = self._confidence(pool, relationships, reports, degraded)

        return RelatedIssueResult(
            relationships=relationships,
            confidence=confidence,
            path=DetectionPath.FALLBACK if degraded else DetectionPath.PRIMARY,
            strategies=reports,
        )

    # --- Semantic ---

    async def _semantic(self, query: IssueQuery, pool: list[Issue]) -> tuple[list[Relationship], StrategyReport]:
        if self.engine is None:
            return [], StrategyReport(strategy=RelationshipType.SEMANTIC, outcome=StrategyOutcome.UNAVAILABLE)

        floor = self.config.semantic_threshold
        thresholds = SimilarityThresholds(high=1.0, medium=floor, min=floor)
        try:
            tiers = await self.engine.find_similar(query, pool, thresholds)
        except EmbeddingUnavailableError as e:
            logger.warning("Semantic relationship strategy unavailable: %s", e)
            return [], StrategyReport(strategy=RelationshipType.SEMANTIC, outcome=StrategyOutcome.UNAVAILABLE)

        relationships = [
            Relationship(
                source_issue_id=query.issue_id,
                target_issue_id=c.issue_id,
                target_issue_number=c.issue_number,
                target_issue_title=c.title,
                relationship_type=RelationshipType.SEMANTIC,
                confidence=min(1.0, max(0.0, c.similarity)),
                reasoning=c.reasoning,
            )
            for c in tiers.ranked()
        ]
        return relationships, StrategyReport(
            strategy=RelationshipType.SEMANTIC,
            outcome=StrategyOutcome.PRIMARY,
            evaluated=tiers.scanned,
            found=len(relationships),
        )

    # --- Dependency ---

    async def _dependencies(self, query: IssueQuery, pool: list[Issue]) -> tuple[list[Relationship], StrategyReport]:
        explicit = self._explicit_references(query, pool)
        referenced = {rel.target_issue_id for rel in explicit}
        remaining = [issue for issue in pool if issue.id not in referenced]

        generated = await self._generate_dependencies(query, remaining)
        if generated is None:
            outcome = StrategyOutcome.FALLBACK
            inferred = self._implicit_dependencies(query, remaining)
        else:
            outcome = StrategyOutcome.PRIMARY
            inferred = generated

        relationships = explicit + inferred
        return relationships, StrategyReport(
            strategy=RelationshipType.DEPENDENCY,
            outcome=outcome,
            evaluated=len(pool),
            found=len(relationships),
        )

    def _explicit_references(self, query: IssueQuery, pool: list[Issue]) -> list[Relationship]:
        """Dependencies stated through ``#N`` / ``issue N`` references in either issue."""
        source_text = build_issue_text(query.title, query.body).lower()
        relationships: list[Relationship] = []

        for issue in pool:
            sub_type = _reference_direction(source_text, issue.number)
            reasoning = f"Source issue explicitly references #{issue.number}"

            if sub_type is None and query.number is not None:
                candidate_text = build_issue_text(issue.title, issue.body).lower()
                reverse = _reference_direction(candidate_text, query.number)
                if reverse is not None:
                    sub_type = _invert(reverse)
                    reasoning = f"#{issue.number} explicitly references the source issue #{query.number}"

            if sub_type is None:
                continue

            relationships.append(Relationship(
                source_issue_id=query.issue_id,
                target_issue_id=issue.id,
                target_issue_number=issue.number,
                target_issue_title=issue.title,
                relationship_type=RelationshipType.DEPENDENCY,
                sub_type=sub_type,
                confidence=_EXPLICIT_REFERENCE_CONFIDENCE,
                reasoning=reasoning,
            ))

        return relationships

    async def _generate_dependencies(self, query: IssueQuery, pool: list[Issue]) -> list[Relationship] | None:
        """Classify dependencies with the structured generator.

        Returns None when generation is unavailable or its response is invalid.
        """
        if self.generator is None:
            return None
        if not pool:
            return []

        limited = pool[:self.config.max_generation_candidates]
        by_id = {issue.id: issue for issue in limited}

        try:
            raw = await self.generator.generate_structured(
                build_dependency_prompt(query, limited),
                DependencyGenerationResponse,
                system_prompt=DEPENDENCY_SYSTEM_PROMPT,
            )
            response = DependencyGenerationResponse.model_validate(raw)
        except Exception as e:
            # Provider failures and schema violations both degrade to the keyword path
            logger.warning("Dependency generation failed, using keyword heuristics: %s", e)
            return None

        relationships: list[Relationship] = []
        for dep in response.relationships:
            if dep.confidence < self.config.dependency_min_confidence:
                continue
            issue = by_id.get(dep.target_issue_id)
            if issue is None:
                logger.debug("Dropping dependency for unknown issue id %s", dep.target_issue_id)
                continue
            relationships.append(Relationship(
                source_issue_id=query.issue_id,
                target_issue_id=issue.id,
                target_issue_number=issue.number,
                target_issue_title=issue.title,
                relationship_type=RelationshipType.DEPENDENCY,
                sub_type=dep.sub_type,
                confidence=dep.confidence,
                reasoning=dep.reasoning,
            ))
        return relationships

    def _implicit_dependencies(self, query: IssueQuery, pool: list[Issue]) -> list[Relationship]:
        """Possible dependencies from dependency phrasing plus strong keyword overlap."""
        source_text = build_issue_text(query.title, query.body).lower()
        if not _has_dependency_phrasing(source_text):
            return []

        relationships: list[Relationship] = []
        for issue in pool:
            overlap = keyword_overlap(source_text, build_issue_text(issue.title, issue.body))
            if overlap <= _IMPLICIT_OVERLAP_MIN:
                continue
            relationships.append(Relationship(
                source_issue_id=query.issue_id,
                target_issue_id=issue.id,
                target_issue_number=issue.number,
                target_issue_title=issue.title,
                relationship_type=RelationshipType.DEPENDENCY,
                sub_type=DependencySubType.RELATED_TO,
                confidence=_IMPLICIT_BASE_CONFIDENCE + overlap * _IMPLICIT_OVERLAP_WEIGHT,
                reasoning=f"Potential dependency based on keyword overlap ({overlap * 100:.0f}% overlap)",
            ))
        return relationships

    # --- Component ---

    async def _component(self, query: IssueQuery, pool: list[Issue]) -> tuple[list[Relationship], StrategyReport]:
        relationships: list[Relationship] = []

        if query.labels:
            source_labels = {label.lower() for label in query.labels}
            for issue in pool:
                if not issue.labels:
                    continue
                overlap = label_overlap(query.labels, issue.labels)
                if overlap < self.config.component_min_overlap:
                    continue
                shared = sorted(source_labels & {label.lower() for label in issue.labels})
                relationships.append(Relationship(
                    source_issue_id=query.issue_id,
                    target_issue_id=issue.id,
                    target_issue_number=issue.number,
                    target_issue_title=issue.title,
                    relationship_type=RelationshipType.COMPONENT,
                    confidence=overlap,
                    reasoning=f"Shares labels: {', '.join(shared)} ({overlap * 100:.0f}% overlap)",
                ))

        return relationships, StrategyReport(
            strategy=RelationshipType.COMPONENT,
            outcome=StrategyOutcome.PRIMARY,
            evaluated=len(pool),
            found=len(relationships),
        )

    # --- Confidence ---

    def _confidence(
        self,
        pool: list[Issue],
        relationships: list[Relationship],
        reports: list[StrategyReport],
        degraded: bool,
    ) -> ConfidenceScore:
        ran = [r for r in reports if r.outcome in (StrategyOutcome.PRIMARY, StrategyOutcome.FALLBACK)]
        enabled = [r for r in reports if r.outcome != StrategyOutcome.DISABLED]
        ratio = len(relationships) / len(pool)

        # Share of the pool each enabled strategy managed to evaluate
        coverage = (
            sum(min(1.0, r.evaluated / len(pool)) for r in enabled) / len(enabled) if enabled else 0.0
        )

        factors = {
            "inputCompleteness": (min(1.0, len(pool) / _FULL_POOL_SIZE) * 0.8 + 0.2) * coverage,
            "aiSelfAssessment": 0.8 if len(ran) >= 2 else 0.6,
            # A small related fraction is the expected shape of a healthy result
            "patternMatch": 0.8 if 0 < ratio < 0.5 else 0.5,
        }

        summary = ", ".join(f"{r.strategy.value}={r.outcome.value}" for r in reports)
        return self.scorer.score(
            factors=factors,
            weights=_WEIGHTS,
            section_id=SECTION_ID,
            cap=self.config.fallback_confidence_cap if degraded else None,
            reasoning=(
                f"Found {len(relationships)} related issues among {len(pool)} candidates "
                f"using {len(ran)} strategies ({summary})"
            ),
        )
