"""Configuration for the issue intelligence engine."""

from pydantic_settings import BaseSettings


class ConfigurationError(ValueError):
    """Raised when a detector is given invalid configuration or arguments."""


class IntelligenceSettings(BaseSettings):
    """Engine settings with ISSUE_INTEL_ environment variable prefix."""

    # Embedding cache
    cache_ttl_hours: float = 24
    cache_max_size: int = 10000
    cache_eviction_fraction: float = 0.1

    # Embeddings
    embedding_model: str = "all-MiniLM-L6-v2"

    # Duplicate detection
    duplicate_high_threshold: float = 0.92
    duplicate_medium_threshold: float = 0.75
    duplicate_min_similarity: float = 0.5
    duplicate_max_results: int = 10
    fallback_duplicate_high_threshold: float = 0.8
    fallback_duplicate_medium_threshold: float = 0.6

    # Ceiling applied to every overall score produced by a fallback path
    fallback_confidence_cap: int = 70

    # Label suggestion
    label_high_threshold: float = 0.8
    label_medium_threshold: float = 0.5
    label_max_suggestions: int = 10
    label_include_new_proposals: bool = True
    label_prefer_existing: bool = True
    label_fallback_min_confidence: float = 0.3
    label_history_limit: int = 10

    # Related issue linking
    related_semantic_threshold: float = 0.75
    related_component_min_overlap: float = 0.3
    related_dependency_min_confidence: float = 0.5
    related_max_results: int = 20
    related_max_generation_candidates: int = 20

    # Structured generation provider
    llm_provider: str = "auto"  # auto, openai, openrouter, anthropic, generic
    llm_api_key: str = ""
    llm_timeout_seconds: int = 60

    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_base_url: str = "https://api.openai.com/v1"

    openrouter_api_key: str = ""
    openrouter_model: str = "openai/gpt-oss-120b:free"
    openrouter_base_url: str = "https://openrouter.ai/api/v1"

    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-20250514"
    anthropic_base_url: str = "https://api.anthropic.com"

    generic_api_key: str = ""
    generic_model: str = ""
    generic_base_url: str = ""

    model_config = {"env_prefix": "ISSUE_INTEL_"}


intel_settings = IntelligenceSettings()
