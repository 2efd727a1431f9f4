"""Unit tests for the SQLite vector index."""

from datetime import UTC, datetime, timedelta

import numpy as np
import pytest

from src.services.vector_index import cosine_similarity


class TestCosineSimilarity:
    """Tests for cosine_similarity helper."""

    def test_scores(self):
        """Test scores for parallel, orthogonal and opposite vectors."""
        matrix = np.array([[2.0, 0.0], [0.0, 3.0], [-1.0, 0.0]])
        scores = cosine_similarity(np.array([1.0, 0.0]), matrix)

        assert scores.tolist() == pytest.approx([1.0, 0.0, -1.0])

    def test_zero_vectors_score_zero(self):
        """Test zero-norm query or rows score 0."""
        matrix = np.array([[0.0, 0.0], [1.0, 0.0]])

        assert cosine_similarity(np.array([1.0, 0.0]), matrix).tolist() == pytest.approx([0.0, 1.0])
        assert cosine_similarity(np.array([0.0, 0.0]), matrix).tolist() == [0.0, 0.0]


class TestVectorIndexWrites:
    """Tests for VectorIndex write operations."""

    def test_upsert_and_read(self, vector_index, make_entry):
        """Test entries can be written and read back."""
        written = vector_index.upsert([make_entry("h1", [1.0, 0.0]), make_entry("h2", [0.0, 1.0])])

        assert written == 2
        found = vector_index.get_entries(["h1", "h2", "missing"])
        assert set(found) == {"h1", "h2"}
        assert found["h1"].embedding_vector == pytest.approx([1.0, 0.0])
        assert found["h1"].metadata["title"] == "Title p1"

    def test_upsert_is_idempotent(self, vector_index, make_entry):
        """Test repeating an identical upsert changes nothing."""
        entries = [make_entry("h1", [1.0, 0.0]), make_entry("h2", [0.0, 1.0])]
        vector_index.upsert(entries)

        later = [e.model_copy(update={"updated_at": datetime.now(UTC) + timedelta(minutes=5)}) for e in entries]

        assert vector_index.upsert(later) == 0
        assert vector_index.get_stats()["total_chunks"] == 2

    def test_upsert_empty(self, vector_index):
        """Test upserting nothing."""
        assert vector_index.upsert([]) == 0

    def test_replace_content_deletes_superseded(self, vector_index, make_entry):
        """Test replacing an item's chunk set removes stale chunks."""
        vector_index.upsert(
            [
                make_entry("old-0", [1.0, 0.0], content_id="p1", chunk_index=0, total_chunks=2),
                make_entry("old-1", [0.0, 1.0], content_id="p1", chunk_index=1, total_chunks=2),
                make_entry("other", [1.0, 1.0], content_id="p2"),
            ]
        )

        result = vector_index.replace_content("page", "p1", [make_entry("new-0", [1.0, 0.5], content_id="p1")])

        assert result == {"written": 1, "superseded": 2}
        assert [e.chunk_hash for e in vector_index.get_content_entries("page", "p1")] == ["new-0"]
        assert vector_index.get_content_entries("page", "p2")[0].chunk_hash == "other"

    def test_deactivate(self, vector_index, make_entry):
        """Test soft delete hides an item but keeps its rows."""
        vector_index.upsert([make_entry("h1", [1.0, 0.0], content_id="p1")])

        assert vector_index.deactivate("page", "p1") == 1
        assert vector_index.deactivate("page", "p1") == 0
        assert vector_index.list_active_content_ids("page") == set()
        assert vector_index.get_entries(["h1"])["h1"].is_active is False

    def test_purge_inactive(self, vector_index, make_entry):
        """Test only inactive rows older than the cutoff are purged."""
        vector_index.upsert([make_entry("h1", [1.0, 0.0], content_id="p1"), make_entry("h2", [0.0, 1.0], content_id="p2")])
        vector_index.deactivate("page", "p1")

        assert vector_index.purge_inactive(datetime.now(UTC) - timedelta(days=1)) == 0
        assert vector_index.purge_inactive(datetime.now(UTC) + timedelta(seconds=1)) == 1
        assert set(vector_index.get_entries(["h1", "h2"])) == {"h2"}

    def test_clear(self, vector_index, make_entry):
        """Test clearing removes everything."""
        vector_index.upsert([make_entry("h1", [1.0, 0.0]), make_entry("h2", [0.0, 1.0], content_id="p2")])

        assert vector_index.clear() == 2
        assert vector_index.get_stats()["total_chunks"] == 0


class TestVectorIndexSearch:
    """Tests for VectorIndex.search."""

    def test_results_ordered_by_score(self, vector_index, make_entry):
        """Test results come back most similar first."""
        vector_index.upsert(
            [
                make_entry("far", [0.0, 1.0], content_id="p1"),
                make_entry("near", [1.0, 0.1], content_id="p2"),
                make_entry("mid", [1.0, 1.0], content_id="p3"),
            ]
        )

        results = vector_index.search([1.0, 0.0], limit=3, min_similarity=-1.0)

        assert [r.chunk_hash for r in results] == ["near", "mid", "far"]
        assert results[0].similarity_score > results[1].similarity_score > results[2].similarity_score

    def test_threshold_filters_results(self, vector_index, make_entry):
        """Test every result clears the threshold."""
        vector_index.upsert(
            [
                make_entry("h1", [1.0, 0.0], content_id="p1"),
                make_entry("h2", [0.8, 0.6], content_id="p2"),
                make_entry("h3", [0.0, 1.0], content_id="p3"),
            ]
        )

        results = vector_index.search([1.0, 0.0], limit=10, min_similarity=0.75)

        assert [r.chunk_hash for r in results] == ["h1", "h2"]
        assert all(r.similarity_score >= 0.75 for r in results)

    def test_nothing_above_threshold(self, vector_index, make_entry):
        """Test an empty list when nothing qualifies."""
        vector_index.upsert([make_entry("h1", [0.0, 1.0])])

        assert vector_index.search([1.0, 0.0], limit=5, min_similarity=0.5) == []

    def test_deactivated_content_is_never_returned(self, vector_index, make_entry):
        """Test h1/h2/h3 indexed, h2's item deactivated: a limit-3 search sees only h1 and h3."""
        vector_index.upsert(
            [
                make_entry("h1", [1.0, 0.0, 0.0], content_id="p1"),
                make_entry("h2", [0.9, 0.1, 0.0], content_id="p2"),
                make_entry("h3", [0.8, 0.2, 0.0], content_id="p3"),
            ]
        )

        vector_index.deactivate("page", "p2")
        results = vector_index.search([1.0, 0.0, 0.0], limit=3, min_similarity=0.0)

        assert len(results) <= 3
        assert {r.chunk_hash for r in results} <= {"h1", "h3"}
        assert {r.chunk_hash for r in results} == {"h1", "h3"}

    def test_limit(self, vector_index, make_entry):
        """Test the result cap."""
        vector_index.upsert([make_entry(f"h{i}", [1.0, i / 10], content_id=f"p{i}") for i in range(5)])

        assert len(vector_index.search([1.0, 0.0], limit=2, min_similarity=0.0)) == 2
        assert vector_index.search([1.0, 0.0], limit=0, min_similarity=0.0) == []

    def test_content_type_filter(self, vector_index, make_entry):
        """Test restricting the search to content types."""
        vector_index.upsert(
            [
                make_entry("page-1", [1.0, 0.0], content_type="page", content_id="p1"),
                make_entry("product-1", [1.0, 0.0], content_type="product", content_id="101"),
            ]
        )

        results = vector_index.search([1.0, 0.0], limit=5, min_similarity=0.0, content_types=["product"])

        assert [r.chunk_hash for r in results] == ["product-1"]

    def test_other_dimensions_are_skipped(self, vector_index, make_entry):
        """Test entries of another dimension are ignored."""
        vector_index.upsert(
            [
                make_entry("two", [1.0, 0.0], content_id="p1"),
                make_entry("three", [1.0, 0.0, 0.0], content_id="p2"),
            ]
        )

        results = vector_index.search([1.0, 0.0], limit=5, min_similarity=0.0)

        assert [r.chunk_hash for r in results] == ["two"]

    def test_ties_prefer_recent_entries(self, vector_index, make_entry):
        """Test equal scores are ordered by most recent write."""
        now = datetime.now(UTC)
        vector_index.upsert(
            [
                make_entry("older", [1.0, 0.0], content_id="p1", updated_at=now - timedelta(hours=1)),
                make_entry("newer", [1.0, 0.0], content_id="p2", updated_at=now),
            ]
        )

        results = vector_index.search([1.0, 0.0], limit=2, min_similarity=0.0)

        assert [r.chunk_hash for r in results] == ["newer", "older"]

    def test_result_carries_metadata(self, vector_index, make_entry):
        """Test results expose item metadata."""
        vector_index.upsert([make_entry("h1", [1.0, 0.0], content_id="p1", text="Free shipping over 50")])

        result = vector_index.search([1.0, 0.0], limit=1, min_similarity=0.0)[0]

        assert result.text == "Free shipping over 50"
        assert result.title == "Title p1"
        assert result.content_type == "page"


class TestVectorIndexInspection:
    """Tests for fingerprints, fragmentation and stats."""

    def test_content_fingerprints(self, vector_index, make_entry):
        """Test fingerprints come from the first chunk of active items."""
        first = make_entry("h1", [1.0, 0.0], content_id="p1")
        first = first.model_copy(update={"metadata": {"content_hash": "abc"}})
        other_model = make_entry("h2", [1.0, 0.0], content_id="p2", model="old-model")
        other_model = other_model.model_copy(update={"metadata": {"content_hash": "def"}})
        vector_index.upsert([first, other_model])

        assert vector_index.get_content_fingerprints("page") == {"p1": "abc", "p2": "def"}
        assert vector_index.get_content_fingerprints("page", "test-model") == {"p1": "abc"}

    def test_find_fragmented_content(self, vector_index, make_entry):
        """Test gaps in chunk indices are detected."""
        vector_index.upsert(
            [
                make_entry("ok-0", [1.0, 0.0], content_id="ok", chunk_index=0, total_chunks=2),
                make_entry("ok-1", [1.0, 0.0], content_id="ok", chunk_index=1, total_chunks=2),
                make_entry("gap-0", [1.0, 0.0], content_id="gap", chunk_index=0, total_chunks=3),
                make_entry("gap-2", [1.0, 0.0], content_id="gap", chunk_index=2, total_chunks=3),
            ]
        )

        assert vector_index.find_fragmented_content() == [("page", "gap")]

    def test_get_stats(self, vector_index, make_entry):
        """Test index counters."""
        vector_index.upsert(
            [
                make_entry("h1", [1.0, 0.0], content_type="page", content_id="p1"),
                make_entry("h2", [1.0, 0.0], content_type="product", content_id="101"),
                make_entry("h3", [1.0, 0.0], content_type="product", content_id="102"),
            ]
        )
        vector_index.deactivate("product", "102")

        stats = vector_index.get_stats()

        assert stats["total_chunks"] == 3
        assert stats["active_chunks"] == 2
        assert stats["inactive_chunks"] == 1
        assert stats["by_content_type"] == {
            "page": {"chunks": 1, "items": 1},
            "product": {"chunks": 1, "items": 1},
        }
        assert stats["embedding_models"] == {"test-model": 3}
        assert stats["last_updated"] is not None

    def test_stats_on_empty_index(self, vector_index):
        """Test counters of an empty index."""
        stats = vector_index.get_stats()

        assert stats["total_chunks"] == 0
        assert stats["active_chunks"] == 0
        assert stats["last_updated"] is None
