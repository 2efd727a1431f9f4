"""Tests for component wiring."""

import json

import pytest

from src.config import Settings
from src.connectors import CatalogExportSource, InMemoryContentSource
from src.container import build_components, build_embedder
from src.errors import ConfigurationError
from src.services import (
    AnthropicGenerationProvider,
    CachedEmbeddingProvider,
    HashEmbeddingProvider,
    HttpEmbeddingProvider,
    KnowledgeBaseResponder,
    SyncOrchestrator,
)

ENV_VARS = [
    "INDEX_DB_PATH",
    "CONTENT_SOURCE_PATH",
    "EMBEDDING_PROVIDER",
    "EMBEDDING_API_KEY",
    "EMBEDDING_DIMENSION",
    "ANTHROPIC_API_KEY",
    "SYNC_CONTENT_TYPES",
]


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("EMBEDDING_DIMENSION", "32")


class TestBuildEmbedder:
    """Tests for build_embedder."""

    def test_hash_without_api_key(self):
        """Test the http provider falls back to hash embeddings without a key."""
        embedder = build_embedder(Settings())

        assert isinstance(embedder, HashEmbeddingProvider)
        assert embedder.dimension == 32

    def test_hash_explicit(self, monkeypatch):
        """Test the hash provider by name."""
        monkeypatch.setenv("EMBEDDING_PROVIDER", "HASH")

        assert isinstance(build_embedder(Settings()), HashEmbeddingProvider)

    def test_http_is_cached(self, monkeypatch):
        """Test the http provider is wrapped in the embedding cache."""
        monkeypatch.setenv("EMBEDDING_API_KEY", "sk-test")

        embedder = build_embedder(Settings())

        assert isinstance(embedder, CachedEmbeddingProvider)
        assert isinstance(embedder.provider, HttpEmbeddingProvider)
        assert embedder.model_name == "text-embedding-3-small"
        embedder.provider.close()

    def test_unknown_provider(self, monkeypatch):
        """Test an unknown provider name is a configuration error."""
        monkeypatch.setenv("EMBEDDING_PROVIDER", "word2vec")

        with pytest.raises(ConfigurationError) as exc_info:
            build_embedder(Settings())

        assert exc_info.value.details["supported"] == ["http", "hash"]


class TestBuildComponents:
    """Tests for build_components."""

    def test_without_source_or_key(self):
        """Test the read-only components are usable without a source."""
        components = build_components(Settings())
        try:
            assert components.source is None
            assert components.orchestrator is None
            assert components.responder is None
            assert components.vector_index.get_stats()["active_chunks"] == 0
            with pytest.raises(ConfigurationError):
                components.require_orchestrator()
            with pytest.raises(ConfigurationError):
                components.require_responder()
        finally:
            components.close()

    def test_database_in_data_dir(self, tmp_path):
        """Test the database and state files land in the data directory."""
        components = build_components(Settings())
        components.close()

        assert (tmp_path / "data" / "knowledge_base.db").exists()

    def test_with_explicit_source(self, product_records):
        """Test an injected source enables the orchestrator."""
        source = InMemoryContentSource({"product": product_records})
        components = build_components(Settings(), source=source)
        try:
            orchestrator = components.require_orchestrator()
            assert isinstance(orchestrator, SyncOrchestrator)
            assert components.scanner.embedding_model == components.embedder.model_name

            state = orchestrator.full_rebuild(content_types=["product"])

            assert state.items_indexed == 3
        finally:
            components.close()

    def test_catalog_export_from_env(self, monkeypatch, tmp_path, page_records):
        """Test CONTENT_SOURCE_PATH builds a catalog export source."""
        export = tmp_path / "catalog.json"
        export.write_text(json.dumps({"page": page_records}))
        monkeypatch.setenv("CONTENT_SOURCE_PATH", str(export))

        components = build_components(Settings())
        try:
            assert isinstance(components.source, CatalogExportSource)
            assert components.source.list_all_ids("page") == ["shipping", "returns"]
        finally:
            components.close()

    def test_responder_with_api_key(self, monkeypatch):
        """Test an Anthropic key enables the responder."""
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test")

        components = build_components(Settings())
        try:
            assert isinstance(components.generator, AnthropicGenerationProvider)
            assert isinstance(components.require_responder(), KnowledgeBaseResponder)
        finally:
            components.close()

    def test_isolated_containers(self):
        """Test two builds share no service instances."""
        first = build_components(Settings())
        second = build_components(Settings())
        try:
            assert first.vector_index is not second.vector_index
            assert first.state_store is not second.state_store
        finally:
            first.close()
            second.close()
