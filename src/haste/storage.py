import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager

from haste.errors import CorruptionError, NotFoundError, StorageError
from haste.models import Item, ItemKind, NewItem

logger = logging.getLogger(__name__)

ITEM_FIELDS = "id, kind, content_ref, source_app, created_at, pinned, tags"


def translate_error(exc: sqlite3.Error) -> Exception:
    """Map a sqlite3 failure onto the engine's error taxonomy."""
    message = str(exc).lower()
    if isinstance(exc, sqlite3.DatabaseError) and (
        "malformed" in message or "not a database" in message or "corrupt" in message
    ):
        return CorruptionError(str(exc))
    return StorageError(str(exc))


class ItemStore:
    """CRUD over the ``items`` table, the source of truth for an item's state.

    The search-index rows and the fingerprint rows derived from an item are
    removed by a trigger and a foreign-key cascade, so ``delete`` stays atomic
    without the store knowing about either index.
    """

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn
        self._depth = 0

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Commit on success, roll back on any exception. Nested use joins the outer one."""
        if self._depth:
            self._depth += 1
            try:
                yield self._conn
            finally:
                self._depth -= 1
            return

        self._depth = 1
        try:
            with self._conn:
                yield self._conn
        except sqlite3.Error as exc:
            raise translate_error(exc) from exc
        finally:
            self._depth = 0

    def insert(self, item: NewItem) -> int:
        with self.transaction() as conn:
            cursor = conn.execute(
                """INSERT INTO items (kind, content_ref, source_app, created_at, pinned, tags)
                   VALUES (?, ?, ?, ?, 0, ?)""",
                (
                    item.kind.value,
                    item.content_ref,
                    item.source_app,
                    item.created_at,
                    json.dumps(list(item.tags)),
                ),
            )
            item_id = cursor.lastrowid
        logger.debug("Inserted %s item %d", item.kind.value, item_id)
        return item_id

    def get(self, item_id: int) -> Item:
        row = self._query_one(f"SELECT {ITEM_FIELDS} FROM items WHERE id = ?", (item_id,))
        if row is None:
            raise NotFoundError(item_id)
        return self._row_to_item(row)

    def delete(self, item_id: int) -> None:
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM items WHERE id = ?", (item_id,))
            if cursor.rowcount == 0:
                raise NotFoundError(item_id)
        logger.debug("Deleted item %d", item_id)

    def set_pinned(self, item_id: int, pinned: bool) -> None:
        with self.transaction() as conn:
            cursor = conn.execute(
                "UPDATE items SET pinned = ? WHERE id = ?",
                (int(pinned), item_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(item_id)

    def touch(self, item_id: int, created_at: int) -> None:
        with self.transaction() as conn:
            cursor = conn.execute(
                "UPDATE items SET created_at = ? WHERE id = ?",
                (created_at, item_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(item_id)
        logger.debug("Touched item %d at %d", item_id, created_at)

    def list_recent(self, limit: int, kind: ItemKind | None = None) -> list[Item]:
        if limit <= 0:
            return []
        if kind is None:
            rows = self._query_all(
                f"SELECT {ITEM_FIELDS} FROM items ORDER BY created_at DESC, id DESC LIMIT ?",
                (limit,),
            )
        else:
            rows = self._query_all(
                f"""SELECT {ITEM_FIELDS} FROM items WHERE kind = ?
                    ORDER BY created_at DESC, id DESC LIMIT ?""",
                (kind.value, limit),
            )
        return [self._row_to_item(r) for r in rows]

    def get_many(self, item_ids: list[int]) -> list[Item]:
        """Fetch items preserving the order of ``item_ids``; missing ids are skipped."""
        if not item_ids:
            return []
        placeholders = ", ".join("?" for _ in item_ids)
        rows = self._query_all(
            f"SELECT {ITEM_FIELDS} FROM items WHERE id IN ({placeholders})",
            tuple(item_ids),
        )
        by_id = {row["id"]: self._row_to_item(row) for row in rows}
        return [by_id[i] for i in item_ids if i in by_id]

    def get_pinned(self) -> list[Item]:
        rows = self._query_all(
            f"SELECT {ITEM_FIELDS} FROM items WHERE pinned = 1 ORDER BY created_at DESC, id DESC"
        )
        return [self._row_to_item(r) for r in rows]

    def count(self) -> int:
        return self._query_one("SELECT COUNT(*) AS cnt FROM items")["cnt"]

    def count_pinned(self) -> int:
        return self._query_one("SELECT COUNT(*) AS cnt FROM items WHERE pinned = 1")["cnt"]

    def all_ids(self, include_pinned: bool = True) -> list[int]:
        sql = "SELECT id FROM items"
        if not include_pinned:
            sql += " WHERE pinned = 0"
        return [row["id"] for row in self._query_all(sql + " ORDER BY id")]

    def ids_beyond(self, keep_count: int) -> list[int]:
        """Unpinned ids older than the newest ``keep_count`` unpinned items."""
        rows = self._query_all(
            """SELECT id FROM items
               WHERE pinned = 0
               ORDER BY created_at DESC, id DESC
               LIMIT -1 OFFSET ?""",
            (max(keep_count, 0),),
        )
        return [row["id"] for row in rows]

    def _query_one(self, sql: str, params: tuple = ()) -> sqlite3.Row | None:
        try:
            return self._conn.execute(sql, params).fetchone()
        except sqlite3.Error as exc:
            raise translate_error(exc) from exc

    def _query_all(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        try:
            return self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise translate_error(exc) from exc

    @staticmethod
    def _row_to_item(row: sqlite3.Row) -> Item:
        try:
            kind = ItemKind(row["kind"])
        except ValueError:
            raise CorruptionError(f"Item {row['id']} has unknown kind {row['kind']!r}") from None
        try:
            tags = json.loads(row["tags"]) if row["tags"] else []
        except json.JSONDecodeError as exc:
            raise CorruptionError(f"Item {row['id']} has unreadable tags") from exc
        if not isinstance(tags, list):
            raise CorruptionError(f"Item {row['id']} has unreadable tags")
        return Item(
            id=row["id"],
            kind=kind,
            content_ref=row["content_ref"],
            source_app=row["source_app"],
            created_at=row["created_at"],
            pinned=bool(row["pinned"]),
            tags=[str(t) for t in tags],
        )
