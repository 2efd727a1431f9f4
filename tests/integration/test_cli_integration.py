"""Integration tests for CLI commands.

Runs the commands against a temporary data directory, a JSON catalog export
and hash embeddings, so no network provider is needed.
"""

import json

import pytest
from typer.testing import CliRunner

from src.cli import ExitCode, app, exit_code_for
from src.errors import (
    ConfigurationError,
    FatalProviderError,
    LockContentionError,
    StorageError,
    TransientProviderError,
    ValidationError,
)


@pytest.fixture
def cli_runner():
    """Create CLI test runner."""
    return CliRunner()


@pytest.fixture
def catalog_export(tmp_path, product_records, page_records):
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps({"product": product_records, "page": page_records}))
    return path


@pytest.fixture
def cli_env(monkeypatch, tmp_path, catalog_export):
    """Environment for an offline knowledge base."""
    for name in ("ANTHROPIC_API_KEY", "EMBEDDING_API_KEY", "INDEX_DB_PATH", "LOG_FILE"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("CONTENT_SOURCE_PATH", str(catalog_export))
    monkeypatch.setenv("EMBEDDING_PROVIDER", "hash")
    monkeypatch.setenv("EMBEDDING_DIMENSION", "64")
    monkeypatch.setenv("SYNC_CONTENT_TYPES", '["product", "page"]')
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    return tmp_path


class TestExitCodes:
    """Tests for the error to exit code mapping."""

    @pytest.mark.parametrize(
        "error,expected",
        [
            (ValidationError("bad input"), ExitCode.INPUT_ERROR),
            (ConfigurationError("no key"), ExitCode.CONFIG_ERROR),
            (TransientProviderError("timeout"), ExitCode.CONNECTION_ERROR),
            (FatalProviderError("unauthorised"), ExitCode.CONNECTION_ERROR),
            (LockContentionError("held"), ExitCode.SYNC_ERROR),
            (StorageError("disk full"), ExitCode.SYNC_ERROR),
        ],
    )
    def test_mapping(self, error, expected):
        """Test each error family maps onto its exit code."""
        assert exit_code_for(error) == expected


class TestCLIHelp:
    """Tests for CLI help commands."""

    @pytest.mark.parametrize("command", [[], ["sync"], ["index"], ["scheduler"], ["search"], ["ask"], ["health"]])
    def test_help(self, cli_runner, command):
        """Test every command group prints help."""
        result = cli_runner.invoke(app, command + ["--help"])

        assert result.exit_code == 0
        assert "Usage" in result.output


class TestSyncCommands:
    """Tests for the sync command group."""

    def test_full_sync(self, cli_runner, cli_env):
        """Test a full sync indexes the export."""
        result = cli_runner.invoke(app, ["sync", "full"])

        assert result.exit_code == ExitCode.SUCCESS, result.output
        assert "completed successfully" in result.output
        assert (cli_env / "data" / "knowledge_base.db").exists()

    def test_full_sync_without_source(self, cli_runner, cli_env, monkeypatch):
        """Test a missing content source is a configuration error."""
        monkeypatch.delenv("CONTENT_SOURCE_PATH")

        result = cli_runner.invoke(app, ["sync", "full"])

        assert result.exit_code == ExitCode.CONFIG_ERROR
        assert "CONTENT_SOURCE_PATH" in result.output

    def test_full_sync_with_unreadable_export(self, cli_runner, cli_env, monkeypatch):
        """Test an export that cannot be read fails the run."""
        monkeypatch.setenv("CONTENT_SOURCE_PATH", str(cli_env / "missing.json"))

        result = cli_runner.invoke(app, ["sync", "full"])

        assert result.exit_code == ExitCode.SYNC_ERROR

    def test_incremental_after_full(self, cli_runner, cli_env):
        """Test an incremental run right after a full run has nothing to do."""
        cli_runner.invoke(app, ["sync", "full"])

        result = cli_runner.invoke(app, ["sync", "incremental", "--type", "page"])

        assert result.exit_code == ExitCode.SUCCESS, result.output

    def test_incremental_invalid_since(self, cli_runner, cli_env):
        """Test a malformed --since is an input error."""
        result = cli_runner.invoke(app, ["sync", "incremental", "--since", "last tuesday"])

        assert result.exit_code == ExitCode.INPUT_ERROR

    def test_status_json(self, cli_runner, cli_env):
        """Test the status command reports the last run."""
        cli_runner.invoke(app, ["sync", "full"])

        result = cli_runner.invoke(app, ["sync", "status", "--json"])

        assert result.exit_code == ExitCode.SUCCESS
        assert '"status": "completed"' in result.output
        assert '"held": false' in result.output

    def test_status_before_any_run(self, cli_runner, cli_env):
        """Test status on a fresh data directory."""
        result = cli_runner.invoke(app, ["sync", "status"])

        assert result.exit_code == ExitCode.SUCCESS
        assert "No sync has run yet" in result.output

    def test_history(self, cli_runner, cli_env):
        """Test the history table lists finished runs."""
        cli_runner.invoke(app, ["sync", "full"])

        result = cli_runner.invoke(app, ["sync", "history"])

        assert result.exit_code == ExitCode.SUCCESS
        assert "Sync History" in result.output
        assert "No sync history" not in result.output

    def test_empty_history(self, cli_runner, cli_env):
        """Test history before any run."""
        result = cli_runner.invoke(app, ["sync", "history"])

        assert "No sync history" in result.output

    def test_cancel_with_nothing_running(self, cli_runner, cli_env):
        """Test cancel when idle."""
        result = cli_runner.invoke(app, ["sync", "cancel"])

        assert result.exit_code == ExitCode.SUCCESS
        assert "No sync is running" in result.output

    def test_maintenance(self, cli_runner, cli_env):
        """Test maintenance prints its report."""
        cli_runner.invoke(app, ["sync", "full"])

        result = cli_runner.invoke(app, ["sync", "maintenance"])

        assert result.exit_code == ExitCode.SUCCESS, result.output
        assert "Purged: 0" in result.output


class TestIndexCommands:
    """Tests for the index command group."""

    def test_stats(self, cli_runner, cli_env):
        """Test index counters after a sync."""
        cli_runner.invoke(app, ["sync", "full"])

        result = cli_runner.invoke(app, ["index", "stats"])

        assert result.exit_code == ExitCode.SUCCESS
        assert "product" in result.output
        assert "hash-embedding-v1" in result.output

    def test_clear(self, cli_runner, cli_env):
        """Test clearing the index with confirmation skipped."""
        cli_runner.invoke(app, ["sync", "full"])

        result = cli_runner.invoke(app, ["index", "clear", "--yes"])
        stats = cli_runner.invoke(app, ["index", "stats"])

        assert result.exit_code == ExitCode.SUCCESS, result.output
        assert "Active: 0" in stats.output

    def test_clear_declined(self, cli_runner, cli_env):
        """Test declining the confirmation leaves the index alone."""
        result = cli_runner.invoke(app, ["index", "clear"], input="n\n")

        assert result.exit_code == ExitCode.SUCCESS
        assert "Cancelled" in result.output


class TestQueryCommands:
    """Tests for search and ask."""

    def test_search(self, cli_runner, cli_env):
        """Test search returns indexed content."""
        cli_runner.invoke(app, ["sync", "full"])

        result = cli_runner.invoke(
            app, ["search", "Shipping Policy worldwide delivery", "--min-similarity=-1.0", "--limit", "2"]
        )

        assert result.exit_code == ExitCode.SUCCESS, result.output
        assert "Found 2 results" in result.output

    def test_search_empty_index(self, cli_runner, cli_env):
        """Test search before any sync."""
        result = cli_runner.invoke(app, ["search", "shipping"])

        assert result.exit_code == ExitCode.SUCCESS
        assert "No results found" in result.output

    def test_search_blank_query(self, cli_runner, cli_env):
        """Test a blank query is an input error."""
        result = cli_runner.invoke(app, ["search", "   "])

        assert result.exit_code == ExitCode.INPUT_ERROR

    def test_ask_without_api_key(self, cli_runner, cli_env):
        """Test ask needs a generation provider."""
        result = cli_runner.invoke(app, ["ask", "Do you ship worldwide?"])

        assert result.exit_code == ExitCode.CONFIG_ERROR
        assert "ANTHROPIC_API_KEY" in result.output


class TestHealthCommand:
    """Tests for the health command."""

    def test_fresh_system_is_critical(self, cli_runner, cli_env):
        """Test an empty index exits with the sync error code."""
        result = cli_runner.invoke(app, ["health", "--no-coverage"])

        assert result.exit_code == ExitCode.SYNC_ERROR
        assert "critical" in result.output

    def test_healthy_after_sync(self, cli_runner, cli_env):
        """Test a synced knowledge base is healthy."""
        cli_runner.invoke(app, ["sync", "full"])

        result = cli_runner.invoke(app, ["health", "--json"])

        assert result.exit_code == ExitCode.SUCCESS, result.output
        assert '"status": "healthy"' in result.output
