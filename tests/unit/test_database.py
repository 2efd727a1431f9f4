"""Tests for the SQLite database wrapper."""

import pytest

from src.database import Database
from src.errors import StorageError


def lock_rows(database):
    return database.fetch_all("SELECT name, owner FROM sync_lock ORDER BY name")


class TestDatabase:
    """Tests for Database."""

    def test_schema_created(self, tmp_path):
        """Test every table exists on a new file."""
        database = Database(tmp_path / "nested" / "kb.db")

        tables = {
            row["name"] for row in database.fetch_all("SELECT name FROM sqlite_master WHERE type = 'table'")
        }

        assert {"index_entries", "sync_lock", "sync_state"} <= tables
        database.close()

    def test_in_memory(self):
        """Test an in-memory database works without a directory."""
        database = Database(Database.MEMORY)

        assert database.fetch_all("SELECT * FROM index_entries") == []

    def test_transaction_commits(self, database):
        """Test statements in a transaction are committed."""
        with database.transaction() as conn:
            conn.execute("INSERT INTO sync_lock (name, owner) VALUES (?, ?)", ("sync", "run-1"))

        assert [tuple(row) for row in lock_rows(database)] == [("sync", "run-1")]

    def test_sqlite_error_rolls_back(self, database):
        """Test a failed statement rolls back the whole transaction."""
        with pytest.raises(StorageError, match="Database write failed"):
            with database.transaction() as conn:
                conn.execute("INSERT INTO sync_lock (name, owner) VALUES (?, ?)", ("sync", "run-1"))
                conn.execute("INSERT INTO missing_table VALUES (1)")

        assert lock_rows(database) == []

    def test_other_errors_roll_back_and_propagate(self, database):
        """Test non-SQLite exceptions roll back and keep their type."""
        with pytest.raises(RuntimeError):
            with database.transaction() as conn:
                conn.execute("INSERT INTO sync_lock (name, owner) VALUES (?, ?)", ("sync", "run-1"))
                raise RuntimeError("boom")

        assert lock_rows(database) == []

    def test_read_error(self, database):
        """Test a failing read is a StorageError."""
        with pytest.raises(StorageError, match="Database read failed"):
            database.fetch_all("SELECT * FROM missing_table")

    def test_fetch_one(self, database):
        """Test fetch_one returns the first row or None."""
        assert database.fetch_one("SELECT * FROM sync_state") is None
        assert database.fetch_one("SELECT 1 AS value")["value"] == 1

    def test_reopens_after_close(self, database):
        """Test the connection is re-established lazily."""
        database.close()

        assert database.fetch_one("SELECT 1 AS value")["value"] == 1

    def test_two_connections_share_the_file(self, tmp_path):
        """Test writes are visible to another connection on the same file."""
        first = Database(tmp_path / "kb.db")
        second = Database(tmp_path / "kb.db")

        with first.transaction() as conn:
            conn.execute("INSERT INTO sync_lock (name, owner) VALUES (?, ?)", ("sync", "run-1"))

        assert lock_rows(second)[0]["owner"] == "run-1"
        first.close()
        second.close()
