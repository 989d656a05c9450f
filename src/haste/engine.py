"""The clipboard engine: one explicitly opened database plus its indexes.

Example::

    with Engine("clipboard.db", "blobs") as engine:
        outcome = engine.dedupe_insert("text", "hello world", source_app="Terminal")
        for item in engine.search("hel", limit=10):
            print(item.id, item.content_ref)
"""

import logging
from pathlib import Path

from haste import config
from haste.dedup import DedupIndex
from haste.errors import InvalidArgumentError, StorageError
from haste.models import DedupeOutcome, Item, ItemKind, NewItem
from haste.schema import init_db, open_connection
from haste.search import SearchIndex
from haste.storage import ItemStore
from haste.utils import now_ms

logger = logging.getLogger(__name__)


class Engine:
    def __init__(
        self,
        db_path: str | Path,
        blob_dir: str | Path,
        index_file_names: bool | None = None,
    ):
        self._db_path = str(db_path)
        self._blob_dir = Path(blob_dir)
        try:
            self._blob_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Cannot create blob directory {self._blob_dir}: {exc}") from exc

        self._conn = open_connection(self._db_path)
        try:
            init_db(self._conn)
        except Exception:
            self._conn.close()
            raise
        if index_file_names is None:
            index_file_names = config.INDEX_FILE_NAMES
        self._store = ItemStore(self._conn)
        self._dedup = DedupIndex(self._conn)
        self._search = SearchIndex(self._conn, index_file_names=index_file_names)
        self._closed = False
        logger.debug("Opened engine on %s", self._db_path)

    @property
    def db_path(self) -> str:
        return self._db_path

    @property
    def blob_dir(self) -> Path:
        return self._blob_dir

    @property
    def store(self) -> ItemStore:
        return self._store

    @property
    def closed(self) -> bool:
        return self._closed

    def add_item(
        self,
        kind: ItemKind | str | int,
        content_ref: str,
        source_app: str | None = None,
        created_at: int | None = None,
        tags: list[str] | None = None,
    ) -> int:
        """Insert unconditionally, without a duplicate check."""
        new_item = self._new_item(kind, content_ref, source_app, created_at, tags)
        if not new_item.content_ref.strip():
            raise InvalidArgumentError("content_ref must not be empty")
        return self._insert(new_item)

    def dedupe_insert(
        self,
        kind: ItemKind | str | int,
        content_ref: str,
        source_app: str | None = None,
        created_at: int | None = None,
        tags: list[str] | None = None,
    ) -> DedupeOutcome:
        """Insert unless the same content is already stored; a re-copy bumps the existing item."""
        new_item = self._new_item(kind, content_ref, source_app, created_at, tags)
        if not new_item.content_ref.strip():
            return DedupeOutcome.rejected()

        with self._store.transaction():
            existing_id = self._dedup.lookup(new_item.kind, new_item.content_ref)
            if existing_id is not None:
                self._store.touch(existing_id, new_item.created_at)
                return DedupeOutcome.touched(existing_id)
            return DedupeOutcome.inserted(self._insert(new_item))

    def search(self, query: str, limit: int | None = None) -> list[Item]:
        """Empty query lists the most recent items; otherwise ranked text matches."""
        if limit is None:
            limit = config.DEFAULT_SEARCH_LIMIT
        if limit <= 0:
            return []
        if not query or not query.strip():
            return self._store.list_recent(limit)
        ids = self._search.query(query, limit)
        return self._store.get_many(ids)

    def get_item(self, item_id: int) -> Item:
        return self._store.get(item_id)

    def delete_item(self, item_id: int) -> None:
        # Blob files referenced by the item are owned by the caller and stay on disk.
        self._store.delete(item_id)

    def pin_item(self, item_id: int, pinned: bool) -> None:
        self._store.set_pinned(item_id, pinned)

    def list_recent(self, limit: int | None = None, kind: ItemKind | str | int | None = None) -> list[Item]:
        if limit is None:
            limit = config.DEFAULT_SEARCH_LIMIT
        return self._store.list_recent(limit, ItemKind.parse(kind) if kind is not None else None)

    def get_pinned(self) -> list[Item]:
        return self._store.get_pinned()

    def count(self) -> int:
        return self._store.count()

    def count_pinned(self) -> int:
        return self._store.count_pinned()

    def clear_history(self, keep_pinned: bool = True) -> int:
        """Delete history item by item; pinned items survive unless ``keep_pinned`` is False."""
        ids = self._store.all_ids(include_pinned=not keep_pinned)
        with self._store.transaction():
            for item_id in ids:
                self._store.delete(item_id)
        logger.info("Cleared %d items", len(ids))
        return len(ids)

    def purge_old(self, keep_count: int | None = None) -> int:
        """Delete unpinned items beyond the newest ``keep_count``."""
        keep = keep_count if keep_count is not None else config.MAX_ENTRIES
        ids = self._store.ids_beyond(keep)
        if ids:
            with self._store.transaction():
                for item_id in ids:
                    self._store.delete(item_id)
            logger.info("Purged %d items beyond %d", len(ids), keep)
        return len(ids)

    def reindex(self) -> int:
        with self._store.transaction():
            return self._search.rebuild()

    def check_integrity(self) -> None:
        with self._store.transaction():
            self._search.check_integrity()

    def close(self) -> None:
        if self._closed:
            return
        self._conn.close()
        self._closed = True
        logger.debug("Closed engine on %s", self._db_path)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def _insert(self, new_item: NewItem) -> int:
        with self._store.transaction():
            item_id = self._store.insert(new_item)
            self._dedup.register(item_id, new_item.kind, new_item.content_ref)
            if not new_item.kind.is_textual:
                self._search.index_name(item_id, new_item.content_ref)
        return item_id

    @staticmethod
    def _new_item(
        kind: ItemKind | str | int,
        content_ref: str,
        source_app: str | None,
        created_at: int | None,
        tags: list[str] | None,
    ) -> NewItem:
        if content_ref is None:
            raise InvalidArgumentError("content_ref is required")
        return NewItem(
            kind=ItemKind.parse(kind),
            content_ref=content_ref,
            source_app=source_app,
            created_at=created_at if created_at is not None else now_ms(),
            tags=list(tags) if tags else [],
        )
