import sqlite3
from collections.abc import Iterable
from contextlib import contextmanager

from lexmatch.types import Entry, EntryMode, VocabularyConfig

_ENTRY_SELECT = """
    SELECT e.*, GROUP_CONCAT(t.tag, '|') AS tag_list
    FROM entries e
    LEFT JOIN entry_tags t ON t.entry_id = e.id
"""

# Stays well under SQLite's host parameter limit.
MAX_BATCH_PARAMS = 500


def _batches(values: list, size: int = MAX_BATCH_PARAMS):
    for start in range(0, len(values), size):
        yield values[start:start + size]


class SQLiteStorage:
    def __init__(self, db_path: str) -> None:
        self.db_path = db_path

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def create_tables(self) -> None:
        with self._connect() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS vocabularies (
                    name TEXT PRIMARY KEY,
                    threshold REAL NOT NULL DEFAULT 0.85,
                    min_tokens INTEGER NOT NULL DEFAULT 1,
                    max_tokens INTEGER NOT NULL DEFAULT 6,
                    language TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );

                CREATE TABLE IF NOT EXISTS entries (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    vocabulary TEXT NOT NULL REFERENCES vocabularies(name),
                    label TEXT NOT NULL,
                    identifier TEXT NOT NULL,
                    norm1 TEXT NOT NULL DEFAULT '',
                    norm2 TEXT NOT NULL DEFAULT '',
                    mode INTEGER NOT NULL DEFAULT 0,
                    dirty INTEGER NOT NULL DEFAULT 0,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );

                CREATE TABLE IF NOT EXISTS entry_tags (
                    entry_id INTEGER NOT NULL REFERENCES entries(id),
                    tag TEXT NOT NULL,
                    PRIMARY KEY (entry_id, tag)
                );

                CREATE INDEX IF NOT EXISTS idx_entries_vocabulary_mode ON entries(vocabulary, mode);
                CREATE INDEX IF NOT EXISTS idx_entries_identifier ON entries(identifier);
            """)
            self._run_migrations(conn)

    def _run_migrations(self, conn) -> None:
        self._migrate_add_column(conn, "entries", "score", "REAL")
        self._migrate_add_column(conn, "vocabularies", "stale", "INTEGER NOT NULL DEFAULT 0")

    def _migrate_add_column(self, conn, table: str, column: str, col_type: str) -> None:
        """Add column to table if it doesn't exist (idempotent migration)."""
        cursor = conn.execute(f"PRAGMA table_info({table})")
        columns = [row[1] for row in cursor.fetchall()]
        if column not in columns:
            conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {col_type}")

    # -- vocabularies --------------------------------------------------------

    def create_vocabulary(self, name: str, config: VocabularyConfig) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO vocabularies (name, threshold, min_tokens, max_tokens, language)
                VALUES (?, ?, ?, ?, ?)
                """,
                (name, config.threshold, config.min_tokens, config.max_tokens, config.language),
            )

    def get_vocabulary(self, name: str) -> VocabularyConfig | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM vocabularies WHERE name = ?", (name,)).fetchone()
        if row is None:
            return None
        return VocabularyConfig(
            threshold=row["threshold"],
            min_tokens=row["min_tokens"],
            max_tokens=row["max_tokens"],
            language=row["language"],
        )

    def list_vocabularies(self) -> list[str]:
        with self._connect() as conn:
            rows = conn.execute("SELECT name FROM vocabularies ORDER BY name").fetchall()
        return [row[0] for row in rows]

    def delete_vocabulary(self, name: str) -> None:
        with self._connect() as conn:
            self._delete_where(conn, "vocabulary = ?", (name,))
            conn.execute("DELETE FROM vocabularies WHERE name = ?", (name,))

    def mark_stale(self, name: str) -> None:
        """Record that entries were deleted since the last compile."""
        with self._connect() as conn:
            conn.execute("UPDATE vocabularies SET stale = stale + 1 WHERE name = ?", (name,))

    def get_stale(self, name: str) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT stale FROM vocabularies WHERE name = ?", (name,)).fetchone()
        return row[0] if row else 0

    def clear_stale(self, name: str, seen: int) -> None:
        """Reset the marker unless more deletions happened after ``seen`` was read."""
        with self._connect() as conn:
            conn.execute("UPDATE vocabularies SET stale = 0 WHERE name = ? AND stale = ?", (name, seen))

    # -- entries -------------------------------------------------------------

    def add_entries(self, vocabulary: str, entries: Iterable[Entry]) -> list[Entry]:
        """Insert entries (with tags) in one transaction; returns them with ids set."""
        stored = []
        with self._connect() as conn:
            for entry in entries:
                cursor = conn.execute(
                    """
                    INSERT INTO entries (vocabulary, label, identifier, norm1, norm2, mode, dirty, score)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (vocabulary, entry.label, entry.identifier, entry.norm1, entry.norm2,
                     int(entry.mode), int(entry.dirty), entry.score),
                )
                entry_id = cursor.lastrowid
                if entry.tags:
                    conn.executemany(
                        "INSERT OR IGNORE INTO entry_tags (entry_id, tag) VALUES (?, ?)",
                        [(entry_id, tag) for tag in sorted(entry.tags)],
                    )
                entry.id = entry_id
                stored.append(entry)
        return stored

    def get_entry(self, vocabulary: str, entry_id: int) -> Entry | None:
        with self._connect() as conn:
            row = conn.execute(
                _ENTRY_SELECT + " WHERE e.vocabulary = ? AND e.id = ? GROUP BY e.id",
                (vocabulary, entry_id),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_entry(row)

    def get_entries(
        self,
        vocabulary: str,
        modes: Iterable[EntryMode] | None = None,
        dirty: bool | None = None,
    ) -> list[Entry]:
        where, params = self._entry_filter(vocabulary, modes, dirty)
        with self._connect() as conn:
            rows = conn.execute(
                _ENTRY_SELECT + f" WHERE {where} GROUP BY e.id ORDER BY e.id", params
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def count_entries(self, vocabulary: str) -> dict[EntryMode, int]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT mode, COUNT(*) FROM entries WHERE vocabulary = ? GROUP BY mode",
                (vocabulary,),
            ).fetchall()
        counts = {mode: 0 for mode in EntryMode}
        for mode, n in rows:
            counts[EntryMode(mode)] = n
        return counts

    def has_dirty_entries(self, vocabulary: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM entries WHERE vocabulary = ? AND dirty = 1 LIMIT 1", (vocabulary,)
            ).fetchone()
        return row is not None

    def update_entry_state(self, vocabulary: str, entry_id: int, mode: EntryMode, dirty: bool) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE entries SET mode = ?, dirty = ? WHERE vocabulary = ? AND id = ?",
                (int(mode), int(dirty), vocabulary, entry_id),
            )

    def delete_entry(self, vocabulary: str, entry_id: int) -> None:
        with self._connect() as conn:
            self._delete_where(conn, "vocabulary = ? AND id = ?", (vocabulary, entry_id))

    def delete_entries(self, vocabulary: str, mode: EntryMode | None = None) -> int:
        with self._connect() as conn:
            if mode is None:
                return self._delete_where(conn, "vocabulary = ?", (vocabulary,))
            return self._delete_where(conn, "vocabulary = ? AND mode = ?", (vocabulary, int(mode)))

    def reset_black_entries(self, vocabulary: str) -> int:
        """Turn every BLACK entry of the vocabulary back to GRAY."""
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE entries SET mode = ?, dirty = 1 WHERE vocabulary = ? AND mode = ?",
                (int(EntryMode.GRAY), vocabulary, int(EntryMode.BLACK)),
            )
            return cursor.rowcount

    def clear_dirty(self, vocabulary: str, entry_ids: Iterable[int] | None = None) -> int:
        """Clear the dirty flag; on WHITE entries only when ``entry_ids`` is None."""
        with self._connect() as conn:
            if entry_ids is None:
                cursor = conn.execute(
                    "UPDATE entries SET dirty = 0 WHERE vocabulary = ? AND mode = ? AND dirty = 1",
                    (vocabulary, int(EntryMode.WHITE)),
                )
                return cursor.rowcount
            cleared = 0
            for batch in _batches(list(entry_ids)):
                placeholders = ",".join("?" * len(batch))
                cursor = conn.execute(
                    f"UPDATE entries SET dirty = 0 WHERE vocabulary = ? AND id IN ({placeholders})",
                    [vocabulary, *batch],
                )
                cleared += cursor.rowcount
            return cleared

    def find_labels_by_ids(self, identifiers: list[str], vocabularies: list[str] | None = None) -> list[dict]:
        if not identifiers:
            return []
        scope = ""
        if vocabularies:
            scope = f" AND vocabulary IN ({','.join('?' * len(vocabularies))})"
        rows = []
        with self._connect() as conn:
            for batch in _batches(list(dict.fromkeys(identifiers))):
                where = f"identifier IN ({','.join('?' * len(batch))})" + scope
                rows.extend(conn.execute(
                    f"SELECT id, identifier, label, vocabulary FROM entries WHERE {where}",
                    [*batch, *(vocabularies or [])],
                ).fetchall())
        rows.sort(key=lambda row: row["id"])
        return [{"identifier": row["identifier"], "label": row["label"], "vocabulary": row["vocabulary"]} for row in rows]

    @staticmethod
    def _entry_filter(vocabulary, modes, dirty) -> tuple[str, list]:
        where = "e.vocabulary = ?"
        params: list = [vocabulary]
        if modes is not None:
            modes = [int(m) for m in modes]
            where += f" AND e.mode IN ({','.join('?' * len(modes))})"
            params.extend(modes)
        if dirty is not None:
            where += " AND e.dirty = ?"
            params.append(int(dirty))
        return where, params

    @staticmethod
    def _delete_where(conn, where: str, params: tuple) -> int:
        conn.execute(f"DELETE FROM entry_tags WHERE entry_id IN (SELECT id FROM entries WHERE {where})", params)
        return conn.execute(f"DELETE FROM entries WHERE {where}", params).rowcount

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> Entry:
        tag_list = row["tag_list"]
        return Entry(
            label=row["label"],
            identifier=row["identifier"],
            norm1=row["norm1"],
            norm2=row["norm2"],
            mode=EntryMode(row["mode"]),
            dirty=bool(row["dirty"]),
            tags=frozenset(tag_list.split("|")) if tag_list else frozenset(),
            score=row["score"],
            id=row["id"],
        )
