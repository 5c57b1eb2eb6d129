"""Tests for the embedding similarity engine."""

import pytest

from issue_intelligence.engine.content_hash import compute_content_hash
from issue_intelligence.engine.embedding_cache import EmbeddingCache
from issue_intelligence.engine.models import SimilarityThresholds
from issue_intelligence.engine.providers import EmbeddingUnavailableError, cosine_similarity
from issue_intelligence.engine.similarity import SimilarityEngine

from fakes import FakeEmbedder, make_issue, make_query, unit


def _tiering_pool():
    return [
        make_issue("1", title="Very close"),
        make_issue("2", title="Related"),
        make_issue("3", title="Loose"),
        make_issue("4", title="Unrelated"),
    ]


def _tiering_embedder():
    return FakeEmbedder({
        "Very close": unit(0.95),
        "Related": unit(0.80),
        "Loose": unit(0.60),
        "Unrelated": unit(0.30),
    })


class TestCosineSimilarity:
    def test_identical(self):
        assert cosine_similarity([1.0, 2.0], [1.0, 2.0]) == pytest.approx(1.0)

    def test_orthogonal(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_opposite(self):
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)

    def test_zero_vector(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0


class TestFindSimilar:
    @pytest.mark.asyncio
    async def test_default_tiering(self):
        engine = SimilarityEngine(_tiering_embedder(), cache=EmbeddingCache())
        tiers = await engine.find_similar(make_query(), _tiering_pool())

        assert [c.issue_id for c in tiers.high] == ["1"]
        assert [c.issue_id for c in tiers.medium] == ["2"]
        assert [c.issue_id for c in tiers.low] == ["3"]
        assert "4" not in [c.issue_id for c in tiers.ranked()]
        assert tiers.scanned == 4
        assert tiers.total == 4

    @pytest.mark.asyncio
    async def test_new_embedding_is_query_vector(self):
        engine = SimilarityEngine(_tiering_embedder(), cache=EmbeddingCache())
        tiers = await engine.find_similar(make_query(), _tiering_pool())
        assert tiers.new_embedding == [1.0, 0.0]

    @pytest.mark.asyncio
    async def test_custom_thresholds(self):
        engine = SimilarityEngine(_tiering_embedder(), cache=EmbeddingCache())
        thresholds = SimilarityThresholds(high=0.9, medium=0.9, min=0.9)
        tiers = await engine.find_similar(make_query(), _tiering_pool(), thresholds)
        assert [c.issue_id for c in tiers.ranked()] == ["1"]

    @pytest.mark.asyncio
    async def test_tiers_sorted_descending(self):
        embedder = FakeEmbedder({"a": unit(0.55), "b": unit(0.70), "c": unit(0.62)})
        engine = SimilarityEngine(embedder, cache=EmbeddingCache())
        pool = [make_issue("1", title="a"), make_issue("2", title="b"), make_issue("3", title="c")]
        tiers = await engine.find_similar(make_query(), pool)
        assert [c.issue_id for c in tiers.low] == ["2", "3", "1"]

    @pytest.mark.asyncio
    async def test_reasoning_mentions_percent_and_shared_terms(self):
        embedder = FakeEmbedder({"Login crash on save": unit(0.95)})
        engine = SimilarityEngine(embedder, cache=EmbeddingCache())
        pool = [make_issue("1", title="Login crash on save")]
        tiers = await engine.find_similar(make_query(title="Query login crash"), pool)
        reasoning = tiers.high[0].reasoning
        assert "95%" in reasoning
        assert "crash" in reasoning
        assert "login" in reasoning

    @pytest.mark.asyncio
    async def test_duplicate_candidate_ids_compared_once(self):
        embedder = _tiering_embedder()
        engine = SimilarityEngine(embedder, cache=EmbeddingCache())
        pool = [make_issue("1", title="Very close"), make_issue("1", title="Very close")]
        tiers = await engine.find_similar(make_query(), pool)
        assert len(tiers.ranked()) == 1
        assert tiers.total == 1

    @pytest.mark.asyncio
    async def test_empty_pool(self):
        engine = SimilarityEngine(FakeEmbedder(), cache=EmbeddingCache())
        tiers = await engine.find_similar(make_query(), [])
        assert tiers.ranked() == []
        assert tiers.total == 0


class TestEmbeddingReuse:
    @pytest.mark.asyncio
    async def test_misses_embedded_in_one_batch(self):
        embedder = _tiering_embedder()
        engine = SimilarityEngine(embedder, cache=EmbeddingCache())
        await engine.find_similar(make_query(), _tiering_pool())
        assert len(embedder.batch_calls) == 1
        assert len(embedder.batch_calls[0]) == 4
        assert len(embedder.embed_calls) == 1

    @pytest.mark.asyncio
    async def test_cache_hits_skip_batch(self):
        embedder = _tiering_embedder()
        engine = SimilarityEngine(embedder, cache=EmbeddingCache())
        pool = _tiering_pool()
        await engine.find_similar(make_query(), pool)
        await engine.find_similar(make_query(), pool)
        assert len(embedder.batch_calls) == 1
        assert len(embedder.embed_calls) == 2

    @pytest.mark.asyncio
    async def test_edited_issue_is_reembedded(self, cache):
        embedder = _tiering_embedder()
        engine = SimilarityEngine(embedder, cache=cache)
        await engine.find_similar(make_query(), [make_issue("1", title="Very close")])

        edited = make_issue("1", title="Very close", body="now with a body")
        await engine.find_similar(make_query(), [edited])
        assert len(embedder.batch_calls) == 2
        assert cache.get("1", compute_content_hash(edited.title, edited.body)) is not None

    @pytest.mark.asyncio
    async def test_uses_cached_vector(self, cache):
        issue = make_issue("1", title="Anything")
        cache.set("1", compute_content_hash(issue.title, issue.body), unit(0.95))
        engine = SimilarityEngine(FakeEmbedder(), cache=cache)
        tiers = await engine.find_similar(make_query(), [issue])
        assert [c.issue_id for c in tiers.high] == ["1"]


class TestEmbeddingFailure:
    @pytest.mark.asyncio
    async def test_provider_error_raises_unavailable(self):
        engine = SimilarityEngine(FakeEmbedder(fail=True), cache=EmbeddingCache())
        with pytest.raises(EmbeddingUnavailableError, match="provider down"):
            await engine.find_similar(make_query(), _tiering_pool())

    @pytest.mark.asyncio
    async def test_vector_count_mismatch_raises_unavailable(self):
        class ShortEmbedder(FakeEmbedder):
            async def embed_many(self, texts):
                return [[1.0, 0.0]]

        engine = SimilarityEngine(ShortEmbedder(), cache=EmbeddingCache())
        with pytest.raises(EmbeddingUnavailableError, match="1 vectors for 4 texts"):
            await engine.find_similar(make_query(), _tiering_pool())
