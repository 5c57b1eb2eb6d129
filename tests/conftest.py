"""Shared test configuration and fixtures."""

import pytest

from issue_intelligence.engine.embedding_cache import EmbeddingCache


@pytest.fixture
def cache():
    return EmbeddingCache()
