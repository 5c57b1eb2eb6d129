"""Weighted confidence scoring shared by the duplicate, label and relationship detectors."""

from __future__ import annotations

from issue_intelligence.engine.config import ConfigurationError
from issue_intelligence.engine.models import ConfidenceScore, ConfidenceTier

# Fixed tier bands on the 0-100 scale
HIGH_TIER_MIN = 70
MEDIUM_TIER_MIN = 50


def tier_for_score(score: float) -> ConfidenceTier:
    """Classify a 0-100 score into a confidence tier."""
    if score >= HIGH_TIER_MIN:
        return ConfidenceTier.HIGH
    if score >= MEDIUM_TIER_MIN:
        return ConfidenceTier.MEDIUM
    return ConfidenceTier.LOW


class ConfidenceScorer:
    """Combines 0-1 factors into a 0-100 score, a tier and a review flag.

    The weighted sum is normalized by the weights of the factors actually
    supplied, so leaving a factor out does not drag the score down.
    """

    def score(
        self,
        factors: dict[str, float],
        weights: dict[str, float],
        section_id: str = "",
        cap: int | None = None,
        reasoning: str = "",
    ) -> ConfidenceScore:
        """Score a set of factors.

        Args:
            factors: Factor name to value in [0, 1].
            weights: Factor name to non-negative weight. Weights for factors
                not present in ``factors`` are ignored.
            section_id: Identifier recorded on the result.
            cap: Optional ceiling for the final score. A capped score always
                needs review, whatever its tier.
            reasoning: Free-text explanation recorded on the result.

        Raises:
            ConfigurationError: on out-of-range factors, negative weights, or
                when no supplied factor carries a positive weight.
        """
        for name, value in factors.items():
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"factor '{name}' must be in [0, 1], got {value}")
        for name, weight in weights.items():
            if weight < 0:
                raise ConfigurationError(f"weight '{name}' must be >= 0, got {weight}")
        if cap is not None and not 0 <= cap <= 100:
            raise ConfigurationError(f"cap must be in [0, 100], got {cap}")

        used = {name: weights.get(name, 0.0) for name in factors}
        total_weight = sum(used.values())
        if total_weight <= 0:
            raise ConfigurationError("no supplied factor has a positive weight")

        weighted = sum(factors[name] * weight for name, weight in used.items())
        score = int(weighted / total_weight * 100 + 0.5)

        capped = cap is not None
        if capped:
            score = min(score, cap)

        tier = tier_for_score(score)
        return ConfidenceScore(
            section_id=section_id,
            score=score,
            tier=tier,
            factors=dict(factors),
            needs_review=capped or tier != ConfidenceTier.HIGH,
            reasoning=reasoning,
        )


def full_confidence(scorer: ConfidenceScorer, section_id: str, reasoning: str) -> ConfidenceScore:
    """Score 100 / high / no review, for requests with nothing to compare against."""
    return scorer.score(
        factors={"patternMatch": 1.0},
        weights={"patternMatch": 1.0},
        section_id=section_id,
        reasoning=reasoning,
    )
