"""Integration tests for the sync and query pipeline.

Runs the real scanner, chunker, hash embeddings, SQLite index and
orchestrator against an in-memory content source.
"""

import json
from datetime import UTC, datetime

import pytest

from src.connectors import CatalogExportSource
from src.models import GenerationResponse, SyncStatus
from src.services import KnowledgeBaseResponder, PromptAssembler, RetrievalEngine
from src.services.orchestrator import SyncOrchestrator
from src.services.scanner import Scanner


class RecordingGenerator:
    """Generation provider that echoes the prompt it received."""

    def __init__(self):
        self.requests = []

    def generate(self, request):
        self.requests.append(request)
        return GenerationResponse(text="Here is what I found.", model="recording", input_tokens=10)


@pytest.fixture
def retrieval(embedder, vector_index):
    return RetrievalEngine(embedder, vector_index, max_chunks=50, min_similarity=-1.0)


def indexed_ids(retrieval, query="shipping returns sweater tote shoes"):
    return {(r.content_type, r.content_id) for r in retrieval.retrieve(query)}


class TestSyncPipeline:
    """End-to-end sync scenarios."""

    def test_full_rebuild_makes_content_searchable(self, orchestrator, retrieval):
        """Test every live item is retrievable after a full rebuild."""
        state = orchestrator.full_rebuild()

        assert state.status == SyncStatus.COMPLETED
        assert state.items_indexed == 5
        assert indexed_ids(retrieval) == {
            ("product", "101"),
            ("product", "102"),
            ("product", "103"),
            ("page", "shipping"),
            ("page", "returns"),
        }

    def test_most_similar_chunk_ranks_first(self, orchestrator, embedder, vector_index):
        """Test a query sharing words with one page ranks that page first."""
        orchestrator.full_rebuild()
        engine = RetrievalEngine(embedder, vector_index, max_chunks=3, min_similarity=-1.0)

        results = engine.retrieve("Items can be returned within 30 days for a full refund")

        assert results[0].content_id == "returns"
        assert results[0].metadata["url"] == "https://shop.example.com/returns"

    def test_removed_content_is_never_returned(self, orchestrator, content_source, retrieval):
        """Test deleting an item at the source removes it from every search."""
        orchestrator.full_rebuild()
        content_source.remove("page", "returns")

        state = orchestrator.incremental_update()

        assert state.items_removed == 1
        assert ("page", "returns") not in indexed_ids(retrieval)
        assert ("page", "returns") not in indexed_ids(retrieval, "return policy refund 30 days")

    def test_updated_content_replaces_old_chunks(self, orchestrator, content_source, retrieval, vector_index):
        """Test an edited item is re-indexed and its old text disappears."""
        orchestrator.full_rebuild()
        content_source.update("product", "102", description="Recycled nylon tote bag that folds into its pocket.")

        state = orchestrator.incremental_update()

        assert state.status == SyncStatus.COMPLETED
        texts = [r.text for r in retrieval.retrieve("tote bag") if r.content_id == "102"]
        assert any("Recycled nylon" in text for text in texts)
        assert not any("leather handles" in text for text in texts)
        assert vector_index.get_stats()["active_chunks"] == len(retrieval.retrieve("tote", max_chunks=1000))

    def test_repeated_full_rebuild_is_a_no_op(self, orchestrator, embedder, vector_index):
        """Test rebuilding an unchanged catalog embeds nothing and changes nothing."""
        orchestrator.full_rebuild()
        stats = vector_index.get_stats()
        texts_embedded = embedder.texts_embedded

        state = orchestrator.full_rebuild()

        assert state.status == SyncStatus.COMPLETED
        assert state.embeddings_generated == 0
        assert embedder.texts_embedded == texts_embedded
        assert vector_index.get_stats()["active_chunks"] == stats["active_chunks"]
        assert vector_index.get_stats()["total_chunks"] == stats["total_chunks"]

    def test_new_content_type_item_via_incremental(self, orchestrator, content_source, retrieval):
        """Test an item added after the rebuild is picked up incrementally."""
        orchestrator.full_rebuild()
        content_source.put(
            "page",
            {"id": "warranty", "title": "Warranty", "content": "All shoes carry a two year warranty."},
        )

        orchestrator.incremental_update(content_type="page")

        assert ("page", "warranty") in indexed_ids(retrieval, "warranty")


class TestQueryPipeline:
    """End-to-end answer scenarios."""

    def test_answer_uses_indexed_content(self, orchestrator, embedder, vector_index):
        """Test an answer is grounded in retrieved chunks."""
        orchestrator.full_rebuild()
        generator = RecordingGenerator()
        responder = KnowledgeBaseResponder(
            RetrievalEngine(embedder, vector_index, max_chunks=5, min_similarity=-1.0),
            PromptAssembler(),
            generator,
        )

        response = responder.answer("Do you ship worldwide and how long does delivery take?")

        kb = response.metadata["knowledge_base"]
        assert kb["used_fallback"] is False
        assert kb["query_type"] == "shipping_inquiry"
        assert ("page", "shipping") in {(s["content_type"], s["content_id"]) for s in kb["content_sources"]}
        assert "We ship worldwide" in generator.requests[0].messages[-1].content

    def test_answer_on_empty_index_falls_back(self, embedder, vector_index):
        """Test an empty index produces a fallback prompt."""
        generator = RecordingGenerator()
        responder = KnowledgeBaseResponder(
            RetrievalEngine(embedder, vector_index),
            PromptAssembler(),
            generator,
        )

        response = responder.answer("Where is my order?")

        assert response.metadata["knowledge_base"]["used_fallback"] is True
        assert response.metadata["knowledge_base"]["chunks_used"] == 0


def write_pages(path, *page_ids):
    now = datetime.now(UTC).isoformat()
    pages = [
        {"id": page_id, "title": f"Page {page_id}", "content": f"Help article {page_id}.", "modified_at": now}
        for page_id in page_ids
    ]
    path.write_text(json.dumps({"page": pages}))


class TestCatalogExportRuns:
    """Scheduled runs against a catalog export file that changes between runs."""

    @pytest.fixture
    def export_path(self, tmp_path):
        path = tmp_path / "catalog.json"
        write_pages(path, "a", "b")
        return path

    @pytest.fixture
    def export_orchestrator(self, export_path, indexer, vector_index, state_store, storage, embedder):
        source = CatalogExportSource(str(export_path))
        scanner = Scanner(source, vector_index, embedding_model=embedder.model_name)
        return SyncOrchestrator(scanner, indexer, vector_index, state_store, storage, content_types=["page"])

    def test_incremental_sees_rewritten_export(self, export_orchestrator, export_path, vector_index):
        """Test additions and deletions made after the first run are picked up."""
        export_orchestrator.full_rebuild()
        assert vector_index.list_active_content_ids("page") == {"a", "b"}

        write_pages(export_path, "a", "c")
        state = export_orchestrator.incremental_update()

        assert state.status == SyncStatus.COMPLETED
        assert state.items_removed == 1
        assert vector_index.list_active_content_ids("page") == {"a", "c"}

    def test_full_rebuild_sees_rewritten_export(self, export_orchestrator, export_path, vector_index):
        """Test a later full rebuild reads the export again."""
        export_orchestrator.full_rebuild()

        write_pages(export_path, "c")
        export_orchestrator.full_rebuild()

        assert vector_index.list_active_content_ids("page") == {"c"}
