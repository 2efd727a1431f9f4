"""Pytest configuration and shared fixtures."""

from datetime import UTC, datetime, timedelta

import pytest

from src.connectors import InMemoryContentSource
from src.database import Database
from src.models import ContentItem, IndexEntry
from src.services import (
    Chunker,
    HashEmbeddingProvider,
    Indexer,
    Scanner,
    SyncOrchestrator,
    SyncStateStore,
    VectorIndex,
)
from src.storage import Storage


def days_ago(days: float) -> str:
    """ISO timestamp ``days`` before now."""
    return (datetime.now(UTC) - timedelta(days=days)).isoformat()


# ==================== Record Fixtures ====================


@pytest.fixture
def product_records():
    """Raw product records as a catalog export would hold them."""
    return [
        {
            "id": 101,
            "name": "Merino Wool Sweater",
            "short_description": "Warm knit sweater",
            "description": "<p>Soft merino wool sweater for <strong>cold</strong> winter days.</p>",
            "sku": "SW-101",
            "price": "79.00",
            "stock_status": "instock",
            "categories": [{"name": "Knitwear"}],
            "permalink": "https://shop.example.com/product/merino-sweater",
            "modified_at": days_ago(3),
        },
        {
            "id": 102,
            "name": "Canvas Tote Bag",
            "description": "Sturdy canvas tote bag with leather handles.",
            "sku": "TB-102",
            "price": "25.00",
            "on_sale": True,
            "regular_price": "30.00",
            "sale_price": "25.00",
            "categories": ["Bags"],
            "modified_at": days_ago(2),
        },
        {
            "id": 103,
            "name": "Trail Running Shoes",
            "description": "Lightweight trail running shoes with grippy soles.",
            "price": "120.00",
            "manage_stock": True,
            "stock_quantity": 4,
            "modified_at": days_ago(1),
        },
    ]


@pytest.fixture
def page_records():
    """Raw page records."""
    return [
        {
            "id": "shipping",
            "title": "Shipping Policy",
            "content": "<h2>Delivery</h2><p>We ship worldwide within 5 business days.</p>"
            "<p>Free shipping on orders over 50 dollars.</p>",
            "url": "https://shop.example.com/shipping",
            "modified_at": days_ago(5),
        },
        {
            "id": "returns",
            "title": "Return Policy",
            "content": "Items can be returned within 30 days for a full refund.",
            "url": "https://shop.example.com/returns",
            "modified_at": days_ago(4),
        },
    ]


@pytest.fixture
def content_source(product_records, page_records):
    """In-memory source with products and pages."""
    return InMemoryContentSource({"product": product_records, "page": page_records})


@pytest.fixture
def sample_item():
    """A normalised product item."""
    return ContentItem(
        id="201",
        content_type="product",
        modified_at=datetime(2024, 5, 1, tzinfo=UTC),
        raw_text="Product: Linen Shirt\nDescription: Breathable linen shirt for summer.",
        title="Linen Shirt",
        url="https://shop.example.com/product/linen-shirt",
        source_metadata={"sku": "LS-201"},
    )


@pytest.fixture
def make_entry():
    """Factory for IndexEntry rows with explicit vectors."""

    def _make(
        chunk_hash,
        vector,
        content_type="page",
        content_id="p1",
        chunk_index=0,
        total_chunks=1,
        text=None,
        model="test-model",
        updated_at=None,
    ):
        return IndexEntry(
            chunk_hash=chunk_hash,
            content_type=content_type,
            content_id=content_id,
            chunk_index=chunk_index,
            total_chunks=total_chunks,
            text=text or f"text of {chunk_hash}",
            embedding_vector=list(vector),
            embedding_model=model,
            metadata={"title": f"Title {content_id}"},
            updated_at=updated_at or datetime.now(UTC),
        )

    return _make


# ==================== Component Fixtures ====================


@pytest.fixture
def database(tmp_path):
    """SQLite database in a temporary directory."""
    db = Database(tmp_path / "kb.db")
    yield db
    db.close()


@pytest.fixture
def vector_index(database):
    return VectorIndex(database)


@pytest.fixture
def state_store(database):
    return SyncStateStore(database, lock_timeout=1800)


@pytest.fixture
def storage(tmp_path):
    return Storage(tmp_path / "state")


@pytest.fixture
def embedder():
    """Deterministic offline embedding provider."""
    return HashEmbeddingProvider(dimension=64)


@pytest.fixture
def chunker():
    return Chunker()


@pytest.fixture
def indexer(chunker, embedder, vector_index):
    return Indexer(chunker, embedder, vector_index, max_workers=1, batch_size=10)


@pytest.fixture
def scanner(content_source, vector_index, embedder):
    return Scanner(content_source, vector_index, embedding_model=embedder.model_name)


@pytest.fixture
def orchestrator(scanner, indexer, vector_index, state_store, storage):
    """Orchestrator over products and pages with small batches."""
    return SyncOrchestrator(
        scanner,
        indexer,
        vector_index,
        state_store,
        storage,
        content_types=["product", "page"],
        batch_size=2,
        incremental_batch_size=2,
        progress_interval=1,
    )
