"""Tests for issue content hashing."""

from issue_intelligence.engine.content_hash import compute_content_hash


class TestComputeContentHash:
    def test_deterministic(self):
        assert compute_content_hash("Login fails", "Stack trace") == compute_content_hash("Login fails", "Stack trace")

    def test_normalizes_whitespace_and_case(self):
        assert compute_content_hash("  Title  ", "  Body  ") == compute_content_hash("title", "body")

    def test_title_change_changes_hash(self):
        assert compute_content_hash("Login fails", "x") != compute_content_hash("Logout fails", "x")

    def test_body_change_changes_hash(self):
        assert compute_content_hash("Login fails", "on Chrome") != compute_content_hash("Login fails", "on Firefox")

    def test_none_body_same_as_empty(self):
        assert compute_content_hash("Title", None) == compute_content_hash("Title", "")

    def test_title_body_boundary_matters(self):
        assert compute_content_hash("ab", "c") != compute_content_hash("a", "bc")

    def test_is_sha256_hex(self):
        digest = compute_content_hash("t", "b")
        assert len(digest) == 64
        int(digest, 16)
