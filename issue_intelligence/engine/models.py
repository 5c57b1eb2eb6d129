"""Pydantic models for the issue intelligence engine."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from issue_intelligence.engine.config import intel_settings


# --- Enums ---

class ConfidenceTier(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class DetectionPath(str, Enum):
    PRIMARY = "primary"
    FALLBACK = "fallback"


class RelationshipType(str, Enum):
    SEMANTIC = "semantic"
    DEPENDENCY = "dependency"
    COMPONENT = "component"


class DependencySubType(str, Enum):
    BLOCKS = "blocks"
    BLOCKED_BY = "blocked_by"
    RELATED_TO = "related_to"


class StrategyOutcome(str, Enum):
    PRIMARY = "primary"
    FALLBACK = "fallback"
    UNAVAILABLE = "unavailable"
    DISABLED = "disabled"


# --- Issue inputs ---

class Issue(BaseModel):
    id: str
    number: int
    title: str
    body: str = ""
    labels: list[str] = []
    state: str = "open"  # open, closed
    created_at: datetime | None = None


class IssueQuery(BaseModel):
    """The subject issue of a detector call."""
    issue_id: str = ""
    number: int | None = None
    title: str
    body: str = ""
    labels: list[str] = []


class RepositoryLabel(BaseModel):
    name: str
    description: str = ""
    color: str = ""


class LabelHistoryEntry(BaseModel):
    title: str
    labels: list[str] = []


# --- Embedding cache ---

class CacheEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    issue_id: str
    content_hash: str
    embedding: tuple[float, ...]
    cached_at: float


class CacheStats(BaseModel):
    size: int
    max_size: int
    ttl_seconds: float
    oldest_entry_age: float | None = None
    newest_entry_age: float | None = None


# --- Confidence ---

class ConfidenceScore(BaseModel):
    section_id: str = ""
    score: int = Field(ge=0, le=100)
    tier: ConfidenceTier
    factors: dict[str, float] = {}
    needs_review: bool
    reasoning: str = ""


# --- Similarity ---

class SimilarityThresholds(BaseModel):
    high: float = Field(default=0.92, ge=0.0, le=1.0)
    medium: float = Field(default=0.75, ge=0.0, le=1.0)
    min: float = Field(default=0.5, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _check_order(self) -> SimilarityThresholds:
        if not self.min <= self.medium <= self.high:
            raise ValueError(
                f"thresholds must satisfy min <= medium <= high "
                f"(got min={self.min}, medium={self.medium}, high={self.high})"
            )
        return self


class SimilarityCandidate(BaseModel):
    issue_id: str
    issue_number: int
    title: str
    similarity: float
    reasoning: str = ""


def _ranked(*tiers: list) -> list:
    combined = [c for tier in tiers for c in tier]
    return sorted(combined, key=lambda c: c.similarity, reverse=True)


class SimilarityTiers(BaseModel):
    high: list[SimilarityCandidate] = []
    medium: list[SimilarityCandidate] = []
    low: list[SimilarityCandidate] = []
    new_embedding: list[float] | None = None
    scanned: int = 0  # candidates that received an embedding
    total: int = 0

    def ranked(self) -> list[SimilarityCandidate]:
        """All tiers combined, highest similarity first."""
        return _ranked(self.high, self.medium, self.low)


# --- Duplicate detection ---

class DuplicateDetectionConfig(BaseModel):
    thresholds: SimilarityThresholds = Field(default_factory=lambda: SimilarityThresholds(
        high=intel_settings.duplicate_high_threshold,
        medium=intel_settings.duplicate_medium_threshold,
        min=intel_settings.duplicate_min_similarity,
    ))
    fallback_thresholds: SimilarityThresholds = Field(default_factory=lambda: SimilarityThresholds(
        high=intel_settings.fallback_duplicate_high_threshold,
        medium=intel_settings.fallback_duplicate_medium_threshold,
        min=intel_settings.fallback_duplicate_medium_threshold / 1.5,
    ))
    max_results: int = Field(default_factory=lambda: intel_settings.duplicate_max_results, gt=0)
    fallback_confidence_cap: int = Field(
        default_factory=lambda: intel_settings.fallback_confidence_cap, ge=0, le=100,
    )


class DuplicateDetectionResult(BaseModel):
    high: list[SimilarityCandidate] = []
    medium: list[SimilarityCandidate] = []
    low: list[SimilarityCandidate] = []
    new_embedding: list[float] | None = None
    confidence: ConfidenceScore
    path: DetectionPath = DetectionPath.PRIMARY

    def ranked(self) -> list[SimilarityCandidate]:
        return _ranked(self.high, self.medium, self.low)


# --- Label suggestion ---

class LabelThresholds(BaseModel):
    high: float = Field(default=0.8, ge=0.0, le=1.0)
    medium: float = Field(default=0.5, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _check_order(self) -> LabelThresholds:
        if self.medium > self.high:
            raise ValueError(f"medium threshold {self.medium} exceeds high threshold {self.high}")
        return self


class LabelSuggestionConfig(BaseModel):
    max_suggestions: int = Field(default_factory=lambda: intel_settings.label_max_suggestions, gt=0)
    confidence_thresholds: LabelThresholds = Field(default_factory=lambda: LabelThresholds(
        high=intel_settings.label_high_threshold,
        medium=intel_settings.label_medium_threshold,
    ))
    include_new_proposals: bool = Field(default_factory=lambda: intel_settings.label_include_new_proposals)
    prefer_existing: bool = Field(default_factory=lambda: intel_settings.label_prefer_existing)
    fallback_min_confidence: float = Field(
        default_factory=lambda: intel_settings.label_fallback_min_confidence, ge=0.0, le=1.0,
    )
    history_limit: int = Field(default_factory=lambda: intel_settings.label_history_limit, ge=0)
    fallback_confidence_cap: int = Field(
        default_factory=lambda: intel_settings.fallback_confidence_cap, ge=0, le=100,
    )


class LabelSuggestion(BaseModel):
    label: str
    is_existing: bool = True
    confidence: float = Field(ge=0.0, le=1.0)
    rationale: str = ""
    matched_patterns: list[str] = []


class NewLabelProposal(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    description: str = ""
    color: str = ""
    rationale: str = ""


class LabelSuggestionResult(BaseModel):
    high: list[LabelSuggestion] = []
    medium: list[LabelSuggestion] = []
    low: list[LabelSuggestion] = []
    new_label_proposals: list[NewLabelProposal] | None = None
    confidence: ConfidenceScore
    path: DetectionPath = DetectionPath.PRIMARY

    def ranked(self) -> list[LabelSuggestion]:
        return self.high + self.medium + self.low


# --- Structured generation responses ---

class GeneratedLabelSuggestion(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    label: str
    is_existing: bool = Field(alias="isExisting")
    confidence: float = Field(ge=0.0, le=1.0)
    rationale: str = ""
    matched_patterns: list[str] = Field(default=[], alias="matchedPatterns")


class LabelGenerationResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    suggestions: list[GeneratedLabelSuggestion]
    new_label_proposals: list[NewLabelProposal] | None = Field(default=None, alias="newLabelProposals")
    overall_confidence: float = Field(alias="overallConfidence", ge=0.0, le=1.0)
    reasoning: str | None = None


class GeneratedDependency(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    target_issue_id: str = Field(alias="targetIssueId")
    sub_type: DependencySubType = Field(alias="subType")
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""


class DependencyGenerationResponse(BaseModel):
    relationships: list[GeneratedDependency] = []


# --- Related issue linking ---

class RelatedIssueConfig(BaseModel):
    include_semantic: bool = True
    include_dependencies: bool = True
    include_component: bool = True
    semantic_threshold: float = Field(
        default_factory=lambda: intel_settings.related_semantic_threshold, ge=0.0, le=1.0,
    )
    component_min_overlap: float = Field(
        default_factory=lambda: intel_settings.related_component_min_overlap, ge=0.0, le=1.0,
    )
    dependency_min_confidence: float = Field(
        default_factory=lambda: intel_settings.related_dependency_min_confidence, ge=0.0, le=1.0,
    )
    max_results: int = Field(default_factory=lambda: intel_settings.related_max_results, gt=0)
    max_generation_candidates: int = Field(
        default_factory=lambda: intel_settings.related_max_generation_candidates, gt=0,
    )
    fallback_confidence_cap: int = Field(
        default_factory=lambda: intel_settings.fallback_confidence_cap, ge=0, le=100,
    )

    @model_validator(mode="after")
    def _check_strategies(self) -> RelatedIssueConfig:
        if not (self.include_semantic or self.include_dependencies or self.include_component):
            raise ValueError("at least one relationship strategy must be enabled")
        return self


class Relationship(BaseModel):
    source_issue_id: str
    target_issue_id: str
    target_issue_number: int
    target_issue_title: str = ""
    relationship_type: RelationshipType
    sub_type: DependencySubType | None = None
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""


class StrategyReport(BaseModel):
    strategy: RelationshipType
    outcome: StrategyOutcome
    evaluated: int = 0
    found: int = 0


class RelatedIssueResult(BaseModel):
    relationships: list[Relationship] = []
    confidence: ConfidenceScore
    path: DetectionPath = DetectionPath.PRIMARY
    strategies: list[StrategyReport] = []
