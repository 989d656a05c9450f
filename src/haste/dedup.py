import logging
import sqlite3

from haste.models import ItemKind
from haste.storage import translate_error
from haste.utils import content_fingerprint

logger = logging.getLogger(__name__)


class DedupIndex:
    """Maps a content fingerprint to the live items holding that content.

    Rows live in ``item_fingerprints`` and cascade away with their item, so a
    lookup only ever sees items that still exist.
    """

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    @staticmethod
    def fingerprint(kind: ItemKind, content_ref: str) -> str:
        return content_fingerprint(kind.value, content_ref)

    def lookup(self, kind: ItemKind, content_ref: str) -> int | None:
        """Return the most recent item id holding this content, if any."""
        try:
            row = self._conn.execute(
                """SELECT i.id FROM item_fingerprints f
                   JOIN items i ON i.id = f.item_id
                   WHERE f.fingerprint = ?
                   ORDER BY i.created_at DESC, i.id DESC
                   LIMIT 1""",
                (self.fingerprint(kind, content_ref),),
            ).fetchone()
        except sqlite3.Error as exc:
            raise translate_error(exc) from exc
        return row[0] if row else None

    def register(self, item_id: int, kind: ItemKind, content_ref: str) -> None:
        # Runs inside the caller's insert transaction
        self._conn.execute(
            "INSERT OR REPLACE INTO item_fingerprints (item_id, fingerprint) VALUES (?, ?)",
            (item_id, self.fingerprint(kind, content_ref)),
        )
        logger.debug("Registered fingerprint for item %d", item_id)
