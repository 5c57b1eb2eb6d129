"""Label suggestion: structured generation over the label catalog, keyword matching as fallback."""

from __future__ import annotations

import logging

from issue_intelligence.engine.confidence import ConfidenceScorer, full_confidence
from issue_intelligence.engine.models import (
    DetectionPath,
    IssueQuery,
    LabelGenerationResponse,
    LabelHistoryEntry,
    LabelSuggestion,
    LabelSuggestionConfig,
    LabelSuggestionResult,
    RepositoryLabel,
)
from issue_intelligence.engine.prompts import LABEL_SUGGESTION_SYSTEM_PROMPT, build_label_prompt
from issue_intelligence.engine.providers import StructuredGenerator
from issue_intelligence.engine.text import build_issue_text, extract_keywords, fuzzy_word_match

logger = logging.getLogger(__name__)

SECTION_ID = "label-suggestion"

_WEIGHTS = {
    "inputCompleteness": 0.3,
    "aiSelfAssessment": 0.4,
    "patternMatch": 0.3,
}

# Keyword matching never claims high confidence for a single label
_KEYWORD_MATCH_CEILING = 0.8

# Fixed factors for the keyword path
_FALLBACK_SELF_ASSESSMENT = 0.4
_FALLBACK_PATTERN_MATCH = 0.3

_FULL_DESCRIPTION_CHARS = 300


def _input_completeness(body: str) -> float:
    return min(1.0, len(body or "") / _FULL_DESCRIPTION_CHARS)


class LabelSuggester:
    """Suggests repository labels for an issue, grouped into confidence tiers."""

    def __init__(
        self,
        generator: StructuredGenerator | None = None,
        scorer: ConfidenceScorer | None = None,
        config: LabelSuggestionConfig | None = None,
    ):
        self.generator = generator
        self.scorer = scorer or ConfidenceScorer()
        self.config = config or LabelSuggestionConfig()

    async def suggest(
        self,
        query: IssueQuery,
        labels: list[RepositoryLabel],
        issue_history: list[LabelHistoryEntry] | None = None,
    ) -> LabelSuggestionResult:
        """Suggest labels for ``query`` from the repository's ``labels``.

        Uses the structured generator when one is configured. A missing
        generator, a provider error or a response that fails validation
        switches to keyword matching against label names and descriptions.
        """
        if not labels:
            return LabelSuggestionResult(confidence=full_confidence(
                self.scorer, SECTION_ID, "No repository labels to choose from.",
            ))

        if self.generator is None:
            logger.info("No structured generator configured, using keyword label matching")
            return self._suggest_with_keywords(query, labels)

        prompt = build_label_prompt(query, labels, issue_history, self.config.history_limit)
        try:
            raw = await self.generator.generate_structured(
                prompt, LabelGenerationResponse, system_prompt=LABEL_SUGGESTION_SYSTEM_PROMPT,
            )
            response = LabelGenerationResponse.model_validate(raw)
        except Exception as e:
            # Provider failures and schema violations both degrade to the keyword path
            logger.warning("Label suggestion falling back to keyword matching: %s", e)
            return self._suggest_with_keywords(query, labels)

        return self._from_generation(response, query, labels)

    def _from_generation(
        self,
        response: LabelGenerationResponse,
        query: IssueQuery,
        labels: list[RepositoryLabel],
    ) -> LabelSuggestionResult:
        catalog = {label.name.lower(): label.name for label in labels}

        suggestions: list[LabelSuggestion] = []
        seen: set[str] = set()
        for generated in response.suggestions:
            key = generated.label.lower()
            if key in seen:
                continue
            seen.add(key)
            # The provider's own isExisting flag is not trusted
            existing_name = catalog.get(key)
            suggestions.append(LabelSuggestion(
                label=existing_name or generated.label,
                is_existing=existing_name is not None,
                confidence=generated.confidence,
                rationale=generated.rationale,
                matched_patterns=generated.matched_patterns,
            ))

        high, medium, low = self._tier(suggestions)

        proposals = None
        if self.config.include_new_proposals and response.new_label_proposals:
            proposals = [p for p in response.new_label_proposals if p.name.lower() not in catalog] or None

        pattern_match = (
            sum(s.confidence for s in suggestions) / len(suggestions) if suggestions else 0.5
        )
        confidence = self.scorer.score(
            factors={
                "inputCompleteness": _input_completeness(query.body),
                "aiSelfAssessment": response.overall_confidence,
                "patternMatch": pattern_match,
            },
            weights=_WEIGHTS,
            section_id=SECTION_ID,
            reasoning=f"Generated {len(suggestions)} label suggestions from {len(labels)} available labels",
        )

        return LabelSuggestionResult(
            high=high,
            medium=medium,
            low=low,
            new_label_proposals=proposals,
            confidence=confidence,
            path=DetectionPath.PRIMARY,
        )

    def _suggest_with_keywords(
        self,
        query: IssueQuery,
        labels: list[RepositoryLabel],
    ) -> LabelSuggestionResult:
        issue_words = extract_keywords(build_issue_text(query.title, query.body))

        suggestions: list[LabelSuggestion] = []
        for label in labels:
            label_words = extract_keywords(f"{label.name} {label.description}")
            if not label_words:
                continue

            matched = sorted(
                word for word in label_words
                if word in issue_words or fuzzy_word_match(word, issue_words)
            )
            if not matched:
                continue

            confidence = min(_KEYWORD_MATCH_CEILING, len(matched) / len(label_words))
            if confidence < self.config.fallback_min_confidence:
                continue

            suggestions.append(LabelSuggestion(
                label=label.name,
                is_existing=True,
                confidence=confidence,
                rationale=f"Keyword match: {', '.join(matched[:3])}",
                matched_patterns=matched,
            ))

        high, medium, low = self._tier(suggestions)

        confidence = self.scorer.score(
            factors={
                "inputCompleteness": _input_completeness(query.body),
                "aiSelfAssessment": _FALLBACK_SELF_ASSESSMENT,
                "patternMatch": _FALLBACK_PATTERN_MATCH,
            },
            weights=_WEIGHTS,
            section_id=SECTION_ID,
            cap=self.config.fallback_confidence_cap,
            reasoning="Structured generation unavailable, using keyword matching",
        )

        return LabelSuggestionResult(
            high=high,
            medium=medium,
            low=low,
            confidence=confidence,
            path=DetectionPath.FALLBACK,
        )

    def _tier(
        self,
        suggestions: list[LabelSuggestion],
    ) -> tuple[list[LabelSuggestion], list[LabelSuggestion], list[LabelSuggestion]]:
        """Rank, cut to ``max_suggestions`` and split into high/medium/low."""
        thresholds = self.config.confidence_thresholds

        if self.config.prefer_existing:
            ranked = sorted(suggestions, key=lambda s: (-s.confidence, not s.is_existing))
        else:
            ranked = sorted(suggestions, key=lambda s: -s.confidence)
        ranked = ranked[:self.config.max_suggestions]

        high = [s for s in ranked if s.confidence >= thresholds.high]
        medium = [s for s in ranked if thresholds.medium <= s.confidence < thresholds.high]
        low = [s for s in ranked if s.confidence < thresholds.medium]
        return high, medium, low
