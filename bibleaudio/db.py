"""Database helpers for the chapter audio service.

Two groups of tables live in one SQLite database:

* the Bible text itself (``bible_versions``, ``books``, ``chapters`` and
  ``verses``), which this service only reads, apart from the upsert
  helpers used to seed it;
* the audio cache (``audio_assets`` and ``audio_cues``), which the
  generation pipeline writes.

Each helper function opens its own connection on demand and closes it as
soon as possible, so the module is safe to use from concurrent requests.
Rows are returned as plain dictionaries.

``audio_assets.hash`` is unique. ``insert_asset`` relies on that
constraint to turn two simultaneous first requests for the same chapter
into a single surviving row. Cues reference their asset with
``ON DELETE CASCADE``; deleting an asset removes its cues.
"""

from __future__ import annotations

import sqlite3
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence

from .config import get_settings
from .cues import VerseCue
from .errors import StorageError


def get_connection() -> sqlite3.Connection:
    """Return a new SQLite connection with dict-like rows and foreign keys on.

    SQLite only enforces ``ON DELETE CASCADE`` when the ``foreign_keys``
    pragma is enabled, which has to be done per connection.
    """
    db_path = get_settings().db_path
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def _write_transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Run a block inside ``BEGIN IMMEDIATE`` ... ``COMMIT``.

    The immediate lock makes read-then-write sequences atomic against
    other writers. Any exception rolls the whole block back.
    """
    conn.isolation_level = None
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    conn.execute("COMMIT")


def init_db() -> None:
    """Create all tables and indices if they do not exist.

    Idempotent; called on application startup and by the tests.
    """
    conn = get_connection()
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS bible_versions (
            id TEXT PRIMARY KEY,
            code TEXT UNIQUE NOT NULL,
            name TEXT,
            language_code TEXT
        )
        """
    )
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS books (
            id TEXT PRIMARY KEY,
            version_id TEXT NOT NULL,
            name TEXT NOT NULL,
            book_order INTEGER NOT NULL,
            chapters_count INTEGER NOT NULL DEFAULT 0,
            FOREIGN KEY(version_id) REFERENCES bible_versions(id)
        )
        """
    )
    cur.execute("CREATE INDEX IF NOT EXISTS idx_books_version ON books(version_id, book_order)")
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS chapters (
            id TEXT PRIMARY KEY,
            book_id TEXT NOT NULL,
            chapter_number INTEGER NOT NULL,
            FOREIGN KEY(book_id) REFERENCES books(id)
        )
        """
    )
    cur.execute("CREATE INDEX IF NOT EXISTS idx_chapters_book ON chapters(book_id, chapter_number)")
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS verses (
            id TEXT PRIMARY KEY,
            chapter_id TEXT NOT NULL,
            version_id TEXT NOT NULL,
            verse_number INTEGER NOT NULL,
            text TEXT NOT NULL DEFAULT '',
            is_superseded INTEGER NOT NULL DEFAULT 0,
            FOREIGN KEY(chapter_id) REFERENCES chapters(id)
        )
        """
    )
    cur.execute(
        "CREATE INDEX IF NOT EXISTS idx_verses_chapter ON verses(chapter_id, version_id, verse_number)"
    )
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS audio_assets (
            id TEXT PRIMARY KEY,
            hash TEXT UNIQUE NOT NULL,
            chapter_id TEXT NOT NULL,
            version_id TEXT NOT NULL,
            file_url TEXT NOT NULL,
            duration_ms INTEGER NOT NULL,
            scope TEXT NOT NULL DEFAULT 'chapter',
            reader_key TEXT NOT NULL,
            tts_provider TEXT NOT NULL,
            voice TEXT NOT NULL,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
        """
    )
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS audio_cues (
            id TEXT PRIMARY KEY,
            audio_id TEXT NOT NULL,
            verse_id TEXT NOT NULL,
            start_ms INTEGER NOT NULL,
            end_ms INTEGER NOT NULL,
            FOREIGN KEY(audio_id) REFERENCES audio_assets(id) ON DELETE CASCADE
        )
        """
    )
    cur.execute("CREATE INDEX IF NOT EXISTS idx_audio_cues_audio ON audio_cues(audio_id, start_ms)")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_audio_cues_verse ON audio_cues(verse_id)")
    conn.commit()
    conn.close()


def _upsert(table: str, fields: Sequence[str], row: Dict[str, Any]) -> str:
    """Insert ``row`` into ``table`` or update it when the id already exists."""
    row_id = row.get("id") or str(uuid.uuid4())
    values = [row_id] + [row.get(f) for f in fields]
    columns = ", ".join(["id", *fields])
    placeholders = ", ".join("?" for _ in values)
    conn = get_connection()
    cur = conn.cursor()
    try:
        cur.execute(f"INSERT INTO {table}({columns}) VALUES ({placeholders})", values)
    except sqlite3.IntegrityError:
        set_clause = ", ".join(f"{field} = ?" for field in fields)
        cur.execute(f"UPDATE {table} SET {set_clause} WHERE id = ?", values[1:] + [row_id])
    conn.commit()
    conn.close()
    return row_id


def insert_version(version: Dict[str, Any]) -> str:
    """Insert or update a Bible version; returns its id."""
    return _upsert("bible_versions", ["code", "name", "language_code"], version)


def insert_book(book: Dict[str, Any]) -> str:
    """Insert or update a book row. ``book_order`` defines canonical order."""
    return _upsert("books", ["version_id", "name", "book_order", "chapters_count"], book)


def insert_chapter(chapter: Dict[str, Any]) -> str:
    return _upsert("chapters", ["book_id", "chapter_number"], chapter)


def insert_verse(verse: Dict[str, Any]) -> str:
    """Insert or update a verse. ``is_superseded`` defaults to 0."""
    verse = {"is_superseded": 0, **verse}
    return _upsert(
        "verses",
        ["chapter_id", "version_id", "verse_number", "text", "is_superseded"],
        verse,
    )


def get_version_by_code(code: str) -> Optional[Dict[str, Any]]:
    conn = get_connection()
    cur = conn.cursor()
    cur.execute("SELECT * FROM bible_versions WHERE code = ?", (code,))
    row = cur.fetchone()
    conn.close()
    return dict(row) if row else None


def resolve_chapter(book_name: str, chapter_number: int, version_code: str) -> Optional[Dict[str, Any]]:
    """Map (book name, chapter number, version code) to row identifiers.

    Returns ``{"chapter_id", "version_id", "book_id"}`` or ``None`` when
    any part of the reference is unknown.
    """
    conn = get_connection()
    cur = conn.cursor()
    cur.execute(
        """
        SELECT c.id AS chapter_id, v.id AS version_id, b.id AS book_id
        FROM bible_versions v
        JOIN books b ON b.version_id = v.id
        JOIN chapters c ON c.book_id = b.id
        WHERE v.code = ? AND b.name = ? AND c.chapter_number = ?
        """,
        (version_code, book_name, chapter_number),
    )
    row = cur.fetchone()
    conn.close()
    return dict(row) if row else None


def get_chapter_verses(chapter_id: str, version_id: str) -> List[Dict[str, Any]]:
    """Return the current (non-superseded) verses of a chapter in order."""
    conn = get_connection()
    cur = conn.cursor()
    cur.execute(
        """
        SELECT id, verse_number, text FROM verses
        WHERE chapter_id = ? AND version_id = ? AND is_superseded = 0
        ORDER BY verse_number ASC
        """,
        (chapter_id, version_id),
    )
    rows = cur.fetchall()
    conn.close()
    return [dict(row) for row in rows]


def get_next_chapter(book_name: str, chapter_number: int, version_code: str) -> Optional[Dict[str, Any]]:
    """Return ``{"book", "chapter"}`` following the given chapter.

    Moves to chapter 1 of the next book (by ``book_order``) after the last
    chapter of a book. Returns ``None`` after the last book or when the
    current book is unknown.
    """
    conn = get_connection()
    cur = conn.cursor()
    cur.execute(
        """
        SELECT b.chapters_count, b.book_order, b.version_id FROM books b
        JOIN bible_versions v ON v.id = b.version_id
        WHERE v.code = ? AND b.name = ?
        """,
        (version_code, book_name),
    )
    current = cur.fetchone()
    if not current:
        conn.close()
        return None
    if chapter_number < current["chapters_count"]:
        conn.close()
        return {"book": book_name, "chapter": chapter_number + 1}
    cur.execute(
        """
        SELECT name FROM books WHERE version_id = ? AND book_order > ?
        ORDER BY book_order ASC LIMIT 1
        """,
        (current["version_id"], current["book_order"]),
    )
    following = cur.fetchone()
    conn.close()
    if not following:
        return None
    return {"book": following["name"], "chapter": 1}


def get_verses_by_ref(book_name: str, chapter_number: int, verse_numbers: Sequence[int],
                      version_code: str) -> List[Dict[str, Any]]:
    """Return the requested verses of one chapter, ordered by number."""
    if not verse_numbers:
        return []
    placeholders = ", ".join("?" for _ in verse_numbers)
    conn = get_connection()
    cur = conn.cursor()
    cur.execute(
        f"""
        SELECT vs.id AS verse_id, vs.verse_number, vs.text AS text_content,
               b.name AS book_name, c.chapter_number, v.code AS version_code
        FROM verses vs
        JOIN chapters c ON c.id = vs.chapter_id
        JOIN books b ON b.id = c.book_id
        JOIN bible_versions v ON v.id = vs.version_id
        WHERE v.code = ? AND b.name = ? AND c.chapter_number = ?
          AND vs.is_superseded = 0 AND vs.verse_number IN ({placeholders})
        ORDER BY vs.verse_number ASC
        """,
        (version_code, book_name, chapter_number, *verse_numbers),
    )
    rows = cur.fetchall()
    conn.close()
    return [dict(row) for row in rows]


# Audio cache


def find_asset_by_hash(cache_key: str) -> Optional[Dict[str, Any]]:
    conn = get_connection()
    cur = conn.cursor()
    cur.execute("SELECT * FROM audio_assets WHERE hash = ?", (cache_key,))
    row = cur.fetchone()
    conn.close()
    return dict(row) if row else None


def get_asset(audio_id: str) -> Optional[Dict[str, Any]]:
    conn = get_connection()
    cur = conn.cursor()
    cur.execute("SELECT * FROM audio_assets WHERE id = ?", (audio_id,))
    row = cur.fetchone()
    conn.close()
    return dict(row) if row else None


def has_cues(audio_id: str) -> bool:
    """Return True when at least one cue exists for ``audio_id``."""
    conn = get_connection()
    cur = conn.cursor()
    cur.execute("SELECT 1 FROM audio_cues WHERE audio_id = ? LIMIT 1", (audio_id,))
    row = cur.fetchone()
    conn.close()
    return row is not None


def insert_asset(asset: Dict[str, Any]) -> Dict[str, Any]:
    """Insert an audio asset unless one with the same hash exists.

    Returns the row stored under ``asset["hash"]`` afterwards, which is
    either the new row or the one a concurrent request wrote first.
    """
    fields = [
        "id",
        "hash",
        "chapter_id",
        "version_id",
        "file_url",
        "duration_ms",
        "scope",
        "reader_key",
        "tts_provider",
        "voice",
    ]
    row = {"id": str(uuid.uuid4()), "scope": "chapter", **asset}
    values = [row.get(f) for f in fields]
    conn = get_connection()
    try:
        cur = conn.cursor()
        cur.execute(
            f"""
            INSERT INTO audio_assets({", ".join(fields)})
            VALUES ({", ".join("?" for _ in fields)})
            ON CONFLICT(hash) DO NOTHING
            """,
            values,
        )
        conn.commit()
        cur.execute("SELECT * FROM audio_assets WHERE hash = ?", (row["hash"],))
        stored = cur.fetchone()
    except sqlite3.Error as exc:
        raise StorageError(f"Failed to save metadata: {exc}") from exc
    finally:
        conn.close()
    if stored is None:
        raise StorageError("Failed to save metadata: asset row missing after insert")
    return dict(stored)


def _cue_rows(audio_id: str, cues: Iterable[VerseCue]) -> List[tuple]:
    return [(str(uuid.uuid4()), audio_id, cue.verse_id, cue.start_ms, cue.end_ms) for cue in cues]


def insert_cues(audio_id: str, cues: Sequence[VerseCue]) -> int:
    """Insert the full cue set of an asset in one transaction.

    If the asset already has cues when the transaction starts nothing is
    written and 0 is returned, so concurrent or repeated runs cannot
    produce a doubled cue set. Otherwise returns the number of rows
    inserted. A failure leaves no cue of the batch behind.
    """
    if not cues:
        return 0
    conn = get_connection()
    try:
        with _write_transaction(conn):
            cur = conn.execute("SELECT 1 FROM audio_cues WHERE audio_id = ? LIMIT 1", (audio_id,))
            if cur.fetchone() is not None:
                return 0
            conn.executemany(
                "INSERT INTO audio_cues(id, audio_id, verse_id, start_ms, end_ms) VALUES (?, ?, ?, ?, ?)",
                _cue_rows(audio_id, cues),
            )
    except sqlite3.Error as exc:
        raise StorageError(f"Failed to save audio cues: {exc}") from exc
    finally:
        conn.close()
    return len(cues)


def replace_cues(audio_id: str, cues: Sequence[VerseCue]) -> int:
    """Atomically swap the cue set of an asset for ``cues``."""
    conn = get_connection()
    try:
        with _write_transaction(conn):
            conn.execute("DELETE FROM audio_cues WHERE audio_id = ?", (audio_id,))
            conn.executemany(
                "INSERT INTO audio_cues(id, audio_id, verse_id, start_ms, end_ms) VALUES (?, ?, ?, ?, ?)",
                _cue_rows(audio_id, cues),
            )
    except sqlite3.Error as exc:
        raise StorageError(f"Failed to replace audio cues: {exc}") from exc
    finally:
        conn.close()
    return len(cues)


def get_cues(audio_id: str) -> List[Dict[str, Any]]:
    """Return cues of an asset ordered by start, with verse numbers attached."""
    conn = get_connection()
    cur = conn.cursor()
    cur.execute(
        """
        SELECT ac.verse_id, vs.verse_number, ac.start_ms, ac.end_ms
        FROM audio_cues ac
        LEFT JOIN verses vs ON vs.id = ac.verse_id
        WHERE ac.audio_id = ?
        ORDER BY ac.start_ms ASC, vs.verse_number ASC
        """,
        (audio_id,),
    )
    rows = cur.fetchall()
    conn.close()
    return [dict(row) for row in rows]


def cues_for_verses(verse_ids: Sequence[str]) -> List[Dict[str, Any]]:
    """Return every cue that points at one of ``verse_ids``."""
    if not verse_ids:
        return []
    placeholders = ", ".join("?" for _ in verse_ids)
    conn = get_connection()
    cur = conn.cursor()
    cur.execute(
        f"""
        SELECT audio_id, verse_id, start_ms, end_ms FROM audio_cues
        WHERE verse_id IN ({placeholders})
        ORDER BY start_ms ASC
        """,
        list(verse_ids),
    )
    rows = cur.fetchall()
    conn.close()
    return [dict(row) for row in rows]


def list_assets(audio_id: Optional[str] = None) -> List[Dict[str, Any]]:
    """Return audio assets (newest first) with a ``cues_count`` column."""
    query = """
        SELECT a.*, COUNT(ac.id) AS cues_count
        FROM audio_assets a
        LEFT JOIN audio_cues ac ON ac.audio_id = a.id
    """
    params: List[Any] = []
    if audio_id is not None:
        query += " WHERE a.id = ?"
        params.append(audio_id)
    query += " GROUP BY a.id ORDER BY a.created_at DESC, a.id ASC"
    conn = get_connection()
    cur = conn.cursor()
    cur.execute(query, params)
    rows = cur.fetchall()
    conn.close()
    return [dict(row) for row in rows]


def delete_asset(audio_id: str) -> Optional[Dict[str, Any]]:
    """Delete an asset and (by cascade) its cues. Returns the deleted row."""
    conn = get_connection()
    cur = conn.cursor()
    cur.execute("SELECT * FROM audio_assets WHERE id = ?", (audio_id,))
    row = cur.fetchone()
    if row is None:
        conn.close()
        return None
    cur.execute("DELETE FROM audio_assets WHERE id = ?", (audio_id,))
    conn.commit()
    conn.close()
    return dict(row)


def delete_all_audio() -> int:
    """Remove every audio asset and cue. Returns the number of assets removed."""
    conn = get_connection()
    cur = conn.cursor()
    cur.execute("DELETE FROM audio_cues")
    cur.execute("DELETE FROM audio_assets")
    deleted = cur.rowcount
    conn.commit()
    conn.close()
    return deleted
