"""Tests for memory data models."""

from kindred.memory import ContactMemories, MemoryEntry


class TestMemoryEntry:
    """Tests for the MemoryEntry dataclass."""

    def test_default_values(self):
        entry = MemoryEntry(content="We went hiking")
        assert entry.keywords == []
        assert entry.timestamp is None
        assert entry.daily_summary is False
        assert len(entry.id) == 12

    def test_round_trip(self):
        entry = MemoryEntry(content="x", keywords=["k"], timestamp=5, daily_summary=True)

        assert MemoryEntry.from_dict(entry.to_dict()) == entry

    def test_legacy_string(self):
        entry = MemoryEntry.from_dict("Sam likes jazz")

        assert entry.content == "Sam likes jazz"
        assert entry.keywords == []

    def test_missing_id_is_stable(self):
        """Entries stored without an id keep the same id across reads."""
        data = {"content": "same text", "timestamp": 42}

        assert MemoryEntry.from_dict(data).id == MemoryEntry.from_dict(data).id
        assert MemoryEntry.from_dict(data).id != MemoryEntry.from_dict({"content": "other"}).id


class TestContactMemories:
    """Tests for the per-contact container."""

    def test_none_is_empty(self):
        memories = ContactMemories.from_dict(None)
        assert memories.important == []
        assert memories.normal == []

    def test_legacy_list_becomes_normal(self):
        memories = ContactMemories.from_dict(["first", "second"])

        assert [m.content for m in memories.normal] == ["first", "second"]
        assert memories.important == []

    def test_to_dict(self):
        memories = ContactMemories(important=[MemoryEntry(content="a", id="i1")])

        data = memories.to_dict()

        assert data["important"][0]["id"] == "i1"
        assert data["normal"] == []
