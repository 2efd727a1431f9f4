"""Tests for the catalog export connector."""

import json
from datetime import UTC, datetime, timedelta

import httpx
import pytest
import yaml

from src.connectors import CatalogExportSource, ContentSource, ReloadableSource
from src.errors import TransientProviderError, ValidationError

EXPORT_URL = "https://shop.example.com/exports/catalog.json"


@pytest.fixture
def export_data(product_records, page_records):
    return {
        "generated_at": "2024-06-01T00:00:00Z",
        "product": product_records,
        "page": page_records + ["not a record"],
    }


@pytest.fixture
def json_export(tmp_path, export_data):
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps(export_data))
    return path


def url_source(handler) -> CatalogExportSource:
    return CatalogExportSource(EXPORT_URL, transport=httpx.MockTransport(handler))


class TestFileExports:
    """Tests for exports read from disk."""

    def test_implements_content_source(self, json_export):
        """Test the connector satisfies the ContentSource protocol."""
        assert isinstance(CatalogExportSource(str(json_export)), ContentSource)
        assert isinstance(CatalogExportSource(str(json_export)), ReloadableSource)

    def test_json_export(self, json_export):
        """Test records are listed per content type."""
        source = CatalogExportSource(str(json_export))

        assert source.content_types() == ["page", "product"]
        assert source.list_all_ids("product") == ["101", "102", "103"]
        assert source.list_all_ids("page") == ["shipping", "returns"]
        assert source.list_all_ids("post") == []

    def test_yaml_export(self, tmp_path, export_data):
        """Test YAML exports are parsed by extension."""
        path = tmp_path / "catalog.yaml"
        path.write_text(yaml.safe_dump(export_data))

        source = CatalogExportSource(str(path))

        assert source.fetch("product", "102")["name"] == "Canvas Tote Bag"

    def test_fetch_missing(self, json_export):
        """Test fetching an unknown id returns None."""
        assert CatalogExportSource(str(json_export)).fetch("product", "999") is None

    def test_modified_since(self, json_export):
        """Test only records newer than the bound are listed."""
        source = CatalogExportSource(str(json_export))
        since = datetime.now(UTC) - timedelta(days=2, hours=12)

        recent = source.list_modified_since("product", since)

        assert [record["id"] for record in recent] == [102, 103]
        assert len(source.list_modified_since("product", None)) == 3

    def test_export_is_cached_until_reload(self, json_export):
        """Test the export is read once until reload() is called."""
        source = CatalogExportSource(str(json_export))
        assert source.list_all_ids("post") == []

        json_export.write_text(json.dumps({"post": [{"id": "p1", "modified_at": "2024-01-01T00:00:00Z"}]}))
        assert source.list_all_ids("post") == []

        source.reload()
        assert source.list_all_ids("post") == ["p1"]

    def test_missing_file(self, tmp_path):
        """Test a missing file is a validation error."""
        source = CatalogExportSource(str(tmp_path / "missing.json"))

        with pytest.raises(ValidationError, match="Cannot read catalog export"):
            source.list_all_ids("product")

    def test_malformed_json(self, tmp_path):
        """Test an unparseable file is a validation error."""
        path = tmp_path / "catalog.json"
        path.write_text("{not json")

        with pytest.raises(ValidationError):
            CatalogExportSource(str(path)).content_types()

    def test_export_must_be_a_mapping(self, tmp_path):
        """Test a top-level list is rejected."""
        path = tmp_path / "catalog.json"
        path.write_text("[1, 2, 3]")

        with pytest.raises(ValidationError) as exc_info:
            CatalogExportSource(str(path)).content_types()

        assert exc_info.value.details["type"] == "list"

    def test_empty_location(self):
        """Test an unset location is a validation error."""
        with pytest.raises(ValidationError, match="No catalog export location"):
            CatalogExportSource("").list_all_ids("product")


class TestUrlExports:
    """Tests for exports fetched over HTTP."""

    def test_json_url(self, export_data):
        """Test a JSON export is fetched once."""
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=export_data)

        source = url_source(handler)

        assert source.list_all_ids("page") == ["shipping", "returns"]
        assert source.list_all_ids("product") == ["101", "102", "103"]
        assert len(requests) == 1
        source.close()

    def test_yaml_content_type(self, page_records):
        """Test a YAML response is parsed by content type."""

        def handler(request):
            return httpx.Response(
                200,
                text=yaml.safe_dump({"page": page_records}),
                headers={"content-type": "application/x-yaml"},
            )

        source = url_source(handler)

        assert source.content_types() == ["page"]
        source.close()

    def test_http_error_is_transient(self):
        """Test a failed fetch surfaces as a transient provider error."""
        source = url_source(lambda request: httpx.Response(404))

        with pytest.raises(TransientProviderError) as exc_info:
            source.list_all_ids("product")

        assert exc_info.value.details["url"] == EXPORT_URL
        source.close()

    def test_close_is_idempotent(self):
        """Test closing twice is harmless."""
        source = url_source(lambda request: httpx.Response(200, json={}))
        source.content_types()

        source.close()
        source.close()
