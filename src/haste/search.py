"""Full-text search over clipboard items, backed by the ``items_fts`` FTS5 table.

Documents and queries share the ``unicode61 remove_diacritics 2`` tokenizer, so
matching is case-insensitive, accent-insensitive and Unicode word-segmented on
both sides. Ranking is FTS5's ``bm25``; ties go to the more recent item.
"""

import logging
import re
import sqlite3
from pathlib import PurePath

from haste.errors import CorruptionError
from haste.models import TEXTUAL_KINDS
from haste.storage import translate_error

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"\w+")


def build_match_query(query: str) -> str:
    """Turn free text into an FTS5 MATCH expression of quoted prefix terms.

    Every word is quoted so FTS operators and punctuation in the input are
    taken literally, and every term is a prefix so partially typed words match.
    Returns an empty string when the input contains no words.
    """
    tokens = _TOKEN_RE.findall(query)
    return " ".join(f'"{token}"*' for token in tokens)


def display_name(content_ref: str) -> str:
    """Base name of an image/file path, as shown on an item card."""
    name = PurePath(content_ref).name
    return name or content_ref


class SearchIndex:
    def __init__(self, conn: sqlite3.Connection, index_file_names: bool = False):
        self._conn = conn
        self.index_file_names = index_file_names

    def index_name(self, item_id: int, content_ref: str) -> None:
        """Index the display name of an image/file item (textual items are indexed by trigger)."""
        if not self.index_file_names:
            return
        self._conn.execute(
            "INSERT INTO items_fts (rowid, item_id, text) VALUES (?, ?, ?)",
            (item_id, item_id, display_name(content_ref)),
        )

    def query(self, text: str, limit: int) -> list[int]:
        """Return item ids matching ``text``, best match first."""
        match = build_match_query(text)
        if not match or limit <= 0:
            return []

        sql = """SELECT items.id FROM items_fts
                 JOIN items ON items.id = items_fts.rowid
                 WHERE items_fts MATCH ?"""
        params: list = [match]
        if not self.index_file_names:
            sql += " AND items.kind IN (?, ?)"
            params.extend(kind.value for kind in TEXTUAL_KINDS)
        sql += " ORDER BY bm25(items_fts), items.created_at DESC, items.id DESC LIMIT ?"
        params.append(limit)

        try:
            rows = self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise translate_error(exc) from exc
        return [row[0] for row in rows]

    def rebuild(self) -> int:
        """Regenerate every index row from the items table; return rows written."""
        self._conn.execute("DELETE FROM items_fts")
        self._conn.execute(
            """INSERT INTO items_fts (rowid, item_id, text)
               SELECT id, id, content_ref FROM items WHERE kind IN (?, ?)""",
            tuple(kind.value for kind in TEXTUAL_KINDS),
        )
        if self.index_file_names:
            rows = self._conn.execute(
                "SELECT id, content_ref FROM items WHERE kind NOT IN (?, ?)",
                tuple(kind.value for kind in TEXTUAL_KINDS),
            ).fetchall()
            for row in rows:
                self.index_name(row[0], row[1])
        count = self._conn.execute("SELECT COUNT(*) FROM items_fts").fetchone()[0]
        logger.info("Rebuilt search index with %d rows", count)
        return count

    def check_integrity(self) -> None:
        try:
            self._conn.execute("INSERT INTO items_fts (items_fts) VALUES ('integrity-check')")
            orphans = self._conn.execute(
                "SELECT COUNT(*) FROM items_fts WHERE rowid NOT IN (SELECT id FROM items)"
            ).fetchone()[0]
        except sqlite3.DatabaseError as exc:
            raise CorruptionError(f"Search index failed integrity check: {exc}") from exc
        if orphans:
            raise CorruptionError(f"Search index holds {orphans} rows for deleted items")
