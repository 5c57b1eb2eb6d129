"""Tests for label suggestion."""

import pytest

from issue_intelligence.engine.labeling import LabelSuggester
from issue_intelligence.engine.models import (
    ConfidenceTier,
    DetectionPath,
    LabelGenerationResponse,
    LabelHistoryEntry,
    LabelSuggestionConfig,
    LabelThresholds,
    RepositoryLabel,
)
from issue_intelligence.engine.providers import ProviderError

from fakes import FakeGenerator, make_query

CATALOG = [
    RepositoryLabel(name="bug", description="Something is not working"),
    RepositoryLabel(name="documentation", description="Improvements or additions to docs"),
    RepositoryLabel(name="performance", description="Slow responses and memory usage"),
    RepositoryLabel(name="authentication", description="Login and session handling"),
]


def _suggestion(label: str, confidence: float, is_existing: bool = True) -> dict:
    return {
        "label": label,
        "isExisting": is_existing,
        "confidence": confidence,
        "rationale": f"fits {label}",
        "matchedPatterns": [label],
    }


def _response(suggestions: list[dict], overall: float = 0.9, proposals: list[dict] | None = None) -> dict:
    body = {"suggestions": suggestions, "overallConfidence": overall, "reasoning": "ok"}
    if proposals is not None:
        body["newLabelProposals"] = proposals
    return body


class TestPrimaryPath:
    @pytest.mark.asyncio
    async def test_tiers_by_confidence(self):
        generator = FakeGenerator(_response([
            _suggestion("documentation", 0.55),
            _suggestion("bug", 0.92),
            _suggestion("performance", 0.3),
        ]))
        result = await LabelSuggester(generator=generator).suggest(make_query(title="Crash"), CATALOG)

        assert result.path == DetectionPath.PRIMARY
        assert [s.label for s in result.high] == ["bug"]
        assert [s.label for s in result.medium] == ["documentation"]
        assert [s.label for s in result.low] == ["performance"]

    @pytest.mark.asyncio
    async def test_each_tier_sorted(self):
        generator = FakeGenerator(_response([
            _suggestion("bug", 0.85),
            _suggestion("authentication", 0.95),
        ]))
        result = await LabelSuggester(generator=generator).suggest(make_query(), CATALOG)
        assert [s.label for s in result.high] == ["authentication", "bug"]

    @pytest.mark.asyncio
    async def test_max_suggestions_applies_to_combined_tiers(self):
        generator = FakeGenerator(_response([
            _suggestion("bug", 0.9),
            _suggestion("authentication", 0.85),
            _suggestion("documentation", 0.6),
            _suggestion("performance", 0.2),
        ]))
        config = LabelSuggestionConfig(max_suggestions=3)
        result = await LabelSuggester(generator=generator, config=config).suggest(make_query(), CATALOG)
        assert [s.label for s in result.ranked()] == ["bug", "authentication", "documentation"]
        assert result.low == []

    @pytest.mark.asyncio
    async def test_is_existing_corrected_against_catalog(self):
        generator = FakeGenerator(_response([
            _suggestion("BUG", 0.9, is_existing=False),
            _suggestion("security", 0.7, is_existing=True),
        ]))
        result = await LabelSuggester(generator=generator).suggest(make_query(), CATALOG)
        by_label = {s.label: s for s in result.ranked()}
        assert by_label["bug"].is_existing is True
        assert by_label["security"].is_existing is False

    @pytest.mark.asyncio
    async def test_prefer_existing_breaks_ties(self):
        generator = FakeGenerator(_response([
            _suggestion("security", 0.9, is_existing=False),
            _suggestion("bug", 0.9),
        ]))
        result = await LabelSuggester(generator=generator).suggest(make_query(), CATALOG)
        assert [s.label for s in result.high] == ["bug", "security"]

    @pytest.mark.asyncio
    async def test_new_proposals_passed_through(self):
        proposals = [{"name": "security", "description": "Security issues", "color": "d73a4a", "rationale": "none fit"}]
        generator = FakeGenerator(_response([_suggestion("bug", 0.9)], proposals=proposals))
        result = await LabelSuggester(generator=generator).suggest(make_query(), CATALOG)
        assert [p.name for p in result.new_label_proposals] == ["security"]

    @pytest.mark.asyncio
    async def test_new_proposals_dropped_when_disabled(self):
        proposals = [{"name": "security"}]
        generator = FakeGenerator(_response([_suggestion("bug", 0.9)], proposals=proposals))
        config = LabelSuggestionConfig(include_new_proposals=False)
        result = await LabelSuggester(generator=generator, config=config).suggest(make_query(), CATALOG)
        assert result.new_label_proposals is None

    @pytest.mark.asyncio
    async def test_no_proposals_returned(self):
        generator = FakeGenerator(_response([_suggestion("bug", 0.9)]))
        result = await LabelSuggester(generator=generator).suggest(make_query(), CATALOG)
        assert result.new_label_proposals is None

    @pytest.mark.asyncio
    async def test_confidence_factors(self):
        generator = FakeGenerator(_response([_suggestion("bug", 0.9), _suggestion("documentation", 0.7)], overall=0.8))
        query = make_query(body="x" * 150)
        result = await LabelSuggester(generator=generator).suggest(query, CATALOG)
        assert result.confidence.factors["inputCompleteness"] == pytest.approx(0.5)
        assert result.confidence.factors["aiSelfAssessment"] == pytest.approx(0.8)
        assert result.confidence.factors["patternMatch"] == pytest.approx(0.8)
        # 0.3 * 0.5 + 0.4 * 0.8 + 0.3 * 0.8 = 0.71
        assert result.confidence.score == 71

    @pytest.mark.asyncio
    async def test_prompt_includes_catalog_and_history(self):
        generator = FakeGenerator(_response([]))
        history = [LabelHistoryEntry(title="Login broken", labels=["bug", "authentication"])]
        await LabelSuggester(generator=generator).suggest(make_query(title="Session expires"), CATALOG, history)

        prompt = generator.prompts[0]
        assert "Session expires" in prompt
        assert "- documentation: Improvements or additions to docs" in prompt
        assert '"Login broken" -> [bug, authentication]' in prompt
        assert generator.schemas == [LabelGenerationResponse]

    @pytest.mark.asyncio
    async def test_history_limit(self):
        generator = FakeGenerator(_response([]))
        history = [LabelHistoryEntry(title=f"Past issue {i}", labels=["bug"]) for i in range(5)]
        config = LabelSuggestionConfig(history_limit=2)
        await LabelSuggester(generator=generator, config=config).suggest(make_query(), CATALOG, history)
        assert "Past issue 1" in generator.prompts[0]
        assert "Past issue 2" not in generator.prompts[0]


class TestFallbackPath:
    @pytest.mark.asyncio
    async def test_no_generator_uses_keywords(self):
        query = make_query(title="Login fails after session timeout", body="Authentication breaks on mobile.")
        result = await LabelSuggester().suggest(query, CATALOG)

        assert result.path == DetectionPath.FALLBACK
        labels = [s.label for s in result.ranked()]
        assert "authentication" in labels
        assert result.new_label_proposals is None
        assert result.confidence.score <= 70
        assert result.confidence.needs_review is True

    @pytest.mark.asyncio
    async def test_provider_error_falls_back(self):
        generator = FakeGenerator(error=ProviderError("API returned 500"))
        query = make_query(title="Docs are missing for the improvements")
        result = await LabelSuggester(generator=generator).suggest(query, CATALOG)
        assert result.path == DetectionPath.FALLBACK
        assert "documentation" in [s.label for s in result.ranked()]

    @pytest.mark.asyncio
    async def test_malformed_response_falls_back(self):
        generator = FakeGenerator({"suggestions": [{"label": "bug"}]})
        result = await LabelSuggester(generator=generator).suggest(make_query(), CATALOG)
        assert result.path == DetectionPath.FALLBACK

    @pytest.mark.asyncio
    async def test_out_of_range_confidence_falls_back(self):
        generator = FakeGenerator(_response([_suggestion("bug", 1.7)]))
        result = await LabelSuggester(generator=generator).suggest(make_query(), CATALOG)
        assert result.path == DetectionPath.FALLBACK

    @pytest.mark.asyncio
    async def test_keyword_confidence_capped_at_point_eight(self):
        catalog = [RepositoryLabel(name="crash")]
        result = await LabelSuggester().suggest(make_query(title="App crash on start"), catalog)
        assert result.ranked()[0].confidence == pytest.approx(0.8)
        assert result.ranked()[0].matched_patterns == ["crash"]

    @pytest.mark.asyncio
    async def test_fuzzy_prefix_match(self):
        catalog = [RepositoryLabel(name="perf")]
        result = await LabelSuggester().suggest(make_query(title="Performance regression"), catalog)
        assert [s.label for s in result.ranked()] == ["perf"]

    @pytest.mark.asyncio
    async def test_weak_matches_dropped(self):
        catalog = [RepositoryLabel(name="ui", description="Visual layout colors fonts spacing icons")]
        result = await LabelSuggester().suggest(make_query(title="Wrong colors"), catalog)
        assert result.ranked() == []

    @pytest.mark.asyncio
    async def test_empty_catalog(self):
        result = await LabelSuggester().suggest(make_query(title="Anything"), [])
        assert result.ranked() == []
        assert result.path == DetectionPath.PRIMARY
        assert result.confidence.score == 100
        assert result.confidence.tier == ConfidenceTier.HIGH
        assert result.confidence.needs_review is False

    @pytest.mark.asyncio
    async def test_empty_catalog_skips_generator(self):
        generator = FakeGenerator(_response([_suggestion("bug", 0.9, is_existing=False)]))
        result = await LabelSuggester(generator=generator).suggest(make_query(title="Anything"), [])
        assert result.ranked() == []
        assert result.new_label_proposals is None
        assert generator.prompts == []

    def test_thresholds_out_of_order_rejected(self):
        with pytest.raises(ValueError):
            LabelThresholds(high=0.4, medium=0.6)

    def test_zero_max_suggestions_rejected(self):
        with pytest.raises(ValueError):
            LabelSuggestionConfig(max_suggestions=0)
