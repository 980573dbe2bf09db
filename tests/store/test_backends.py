"""Tests for the durable and legacy backends."""

from pathlib import Path

import pytest

from kindred.store import LegacyJSONStore, SQLiteBackend


@pytest.fixture
def backend(tmp_path: Path) -> SQLiteBackend:
    """Create a SQLiteBackend with a temporary database."""
    sqlite = SQLiteBackend(tmp_path / "kindred.db")
    sqlite.init_db()
    yield sqlite
    sqlite.close()


class TestSQLiteBackend:
    """Tests for the SQLite backend."""

    def test_creates_db_directory(self, tmp_path: Path):
        """Backend creates parent directories if they don't exist."""
        nested_path = tmp_path / "nested" / "dir" / "kindred.db"
        sqlite = SQLiteBackend(nested_path)
        sqlite.init_db()
        assert nested_path.exists()
        sqlite.close()

    def test_creates_records_table(self, backend: SQLiteBackend):
        conn = backend._get_connection()
        cursor = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='records'"
        )
        assert cursor.fetchone() is not None

    def test_init_db_idempotent(self, backend: SQLiteBackend):
        backend.init_db()
        backend.init_db()  # Should not raise

    def test_put_and_load(self, backend: SQLiteBackend):
        assert backend.is_empty() is True

        backend.put("contacts", '[{"id": "c1"}]')
        backend.put("contacts", '[{"id": "c2"}]')

        assert backend.is_empty() is False
        assert backend.load_all() == {"contacts": [{"id": "c2"}]}

    def test_corrupt_rows_skipped(self, backend: SQLiteBackend):
        backend.put("good", "{}")
        backend.put("bad", "{not json")

        assert backend.load_all() == {"good": {}}

    def test_clear(self, backend: SQLiteBackend):
        backend.put("settings", "{}")
        backend.clear()

        assert backend.is_empty() is True


class TestLegacyJSONStore:
    """Tests for the legacy file store."""

    def test_missing_key(self, tmp_path: Path):
        assert LegacyJSONStore(tmp_path / "legacy").read("contacts") is None

    def test_round_trip(self, tmp_path: Path):
        legacy = LegacyJSONStore(tmp_path / "legacy")
        legacy.write("settings", {"prompt": "你好"})

        assert legacy.read("settings") == {"prompt": "你好"}

    def test_corrupt_file(self, tmp_path: Path):
        root = tmp_path / "legacy"
        root.mkdir()
        (root / "contacts.json").write_text("[oops", encoding="utf-8")

        assert LegacyJSONStore(root).read("contacts") is None
