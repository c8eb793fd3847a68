"""Tests for SQLite storage layer."""

import sqlite3

import pytest

from lexmatch.storage.sqlite import SQLiteStorage
from lexmatch.types import Entry, EntryMode, VocabularyConfig


def _entries():
    return [
        Entry("aspirin", "D001", "aspirin", "aspirin", EntryMode.GRAY, True, frozenset({"drug", "nsaid"})),
        Entry("ibuprofen", "D002", "ibuprofen", "ibuprofen", EntryMode.WHITE, True),
        Entry("placebo", "D000", "placebo", "placebo", EntryMode.BLACK, False),
    ]


@pytest.fixture
def populated(storage):
    storage.create_vocabulary("drugs", VocabularyConfig(threshold=0.9, language="eng"))
    storage.add_entries("drugs", _entries())
    return storage


class TestSQLiteStorage:
    """Tests for SQLiteStorage."""

    def test_create_tables(self, tmp_path):
        """SQLiteStorage creates tables and is idempotent."""
        path = str(tmp_path / "lexmatch.db")
        storage = SQLiteStorage(path)
        storage.create_tables()
        storage.create_tables()

        conn = sqlite3.connect(path)
        tables = [t[0] for t in conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table'"
        ).fetchall()]
        columns = [row[1] for row in conn.execute("PRAGMA table_info(entries)").fetchall()]
        conn.close()

        assert {"vocabularies", "entries", "entry_tags"} <= set(tables)
        assert "score" in columns

    def test_vocabulary_roundtrip(self, populated):
        """Vocabulary configuration is stored and listed."""
        config = populated.get_vocabulary("drugs")
        assert config == VocabularyConfig(threshold=0.9, min_tokens=1, max_tokens=6, language="eng")
        assert populated.get_vocabulary("genes") is None
        assert populated.list_vocabularies() == ["drugs"]

    def test_add_entries_sets_ids_and_tags(self, populated):
        """Entries get ids; tags survive the round trip."""
        entries = populated.get_entries("drugs")
        assert [e.id for e in entries] == sorted(e.id for e in entries)
        assert entries[0].tags == frozenset({"drug", "nsaid"})
        assert entries[1].tags == frozenset()
        assert populated.get_entry("drugs", entries[0].id).label == "aspirin"
        assert populated.get_entry("other", entries[0].id) is None

    def test_get_entries_filters(self, populated):
        """Entries can be filtered by mode and dirty flag."""
        active = populated.get_entries("drugs", [EntryMode.GRAY, EntryMode.WHITE])
        assert [e.label for e in active] == ["aspirin", "ibuprofen"]
        pending = populated.get_entries("drugs", [EntryMode.WHITE], dirty=True)
        assert [e.label for e in pending] == ["ibuprofen"]

    def test_count_entries(self, populated):
        """Every mode is counted, including empty ones."""
        counts = populated.count_entries("drugs")
        assert counts == {
            EntryMode.GRAY: 1, EntryMode.WHITE: 1, EntryMode.BLACK: 1, EntryMode.AUTO_EXPANDED: 0,
        }

    def test_update_and_clear_dirty(self, populated):
        """State updates persist; clear_dirty only touches the given ids."""
        aspirin, ibuprofen, _ = populated.get_entries("drugs")
        populated.update_entry_state("drugs", aspirin.id, EntryMode.WHITE, True)
        assert populated.get_entry("drugs", aspirin.id).mode == EntryMode.WHITE

        assert populated.clear_dirty("drugs", [aspirin.id]) == 1
        assert populated.get_entry("drugs", aspirin.id).dirty is False
        assert populated.get_entry("drugs", ibuprofen.id).dirty is True
        assert populated.has_dirty_entries("drugs")

        populated.clear_dirty("drugs")
        assert not populated.has_dirty_entries("drugs")

    def test_reset_black_entries(self, populated):
        """BLACK entries go back to GRAY and become dirty."""
        assert populated.reset_black_entries("drugs") == 1
        placebo = populated.get_entries("drugs")[2]
        assert placebo.mode == EntryMode.GRAY
        assert placebo.dirty is True

    def test_delete_entries(self, populated):
        """Entries are deleted by id, by mode, or all at once, with their tags."""
        aspirin = populated.get_entries("drugs")[0]
        populated.delete_entry("drugs", aspirin.id)
        assert populated.get_entry("drugs", aspirin.id) is None
        assert populated.delete_entries("drugs", EntryMode.WHITE) == 1
        assert populated.delete_entries("drugs") == 1

        conn = sqlite3.connect(populated.db_path)
        assert conn.execute("SELECT COUNT(*) FROM entry_tags").fetchone()[0] == 0
        conn.close()

    def test_find_labels_by_ids(self, populated):
        """Reverse lookup can be restricted to vocabularies."""
        rows = populated.find_labels_by_ids(["D001", "D002"])
        assert [(r["identifier"], r["label"]) for r in rows] == [("D001", "aspirin"), ("D002", "ibuprofen")]
        assert populated.find_labels_by_ids(["D001"], ["genes"]) == []
        assert populated.find_labels_by_ids([]) == []

    def test_delete_vocabulary(self, populated):
        """Deleting a vocabulary removes its entries."""
        populated.delete_vocabulary("drugs")
        assert populated.list_vocabularies() == []
        assert populated.get_entries("drugs") == []

    def test_auto_expanded_score(self, storage):
        """Provenance scores are persisted."""
        storage.create_vocabulary("drugs", VocabularyConfig())
        storage.add_entries("drugs", [Entry("ASA", "D001", mode=EntryMode.AUTO_EXPANDED, score=0.4)])
        assert storage.get_entries("drugs")[0].score == pytest.approx(0.4)

    def test_large_id_sets(self, storage):
        """Dirty flags and reverse lookups work for more ids than SQLite accepts as parameters."""
        storage.create_vocabulary("drugs", VocabularyConfig())
        stored = storage.add_entries(
            "drugs", (Entry(f"drug {i}", f"D{i:05d}", dirty=True) for i in range(40000))
        )

        assert storage.clear_dirty("drugs", [e.id for e in stored]) == 40000
        assert not storage.has_dirty_entries("drugs")

        rows = storage.find_labels_by_ids([e.identifier for e in stored], ["drugs"])
        assert len(rows) == 40000
        assert rows[0] == {"identifier": "D00000", "label": "drug 0", "vocabulary": "drugs"}
        assert rows[-1]["identifier"] == "D39999"

    def test_stale_marker(self, populated):
        """The stale counter is only reset when no deletion happened since it was read."""
        assert populated.get_stale("drugs") == 0
        populated.mark_stale("drugs")
        seen = populated.get_stale("drugs")
        populated.mark_stale("drugs")
        populated.clear_stale("drugs", seen)
        assert populated.get_stale("drugs") == 2

        populated.clear_stale("drugs", 2)
        assert populated.get_stale("drugs") == 0
        assert populated.get_stale("genes") == 0
