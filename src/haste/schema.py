"""On-disk layout of the clipboard database and the migrations that produce it.

The schema version lives in ``PRAGMA user_version``. Each migration runs in its
own transaction together with the version bump, so a migration is either fully
applied and recorded or not applied at all.
"""

import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from haste.errors import CorruptionError, StorageError
from haste.utils import content_fingerprint

logger = logging.getLogger(__name__)

ITEM_COLUMNS = ("id", "kind", "content_ref", "source_app", "created_at", "pinned", "tags")

INIT_SQL = """
CREATE TABLE items (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    kind        TEXT NOT NULL CHECK(kind IN ('text', 'rtf', 'image', 'file')),
    content_ref TEXT NOT NULL,
    source_app  TEXT,
    created_at  INTEGER NOT NULL,
    pinned      INTEGER NOT NULL DEFAULT 0,
    tags        TEXT NOT NULL DEFAULT '[]'
);

CREATE INDEX idx_items_created_at ON items(created_at DESC);
CREATE INDEX idx_items_kind ON items(kind);

CREATE VIRTUAL TABLE items_fts USING fts5(
    item_id UNINDEXED,
    text,
    tokenize='unicode61 remove_diacritics 2'
);
"""

# Version-1 files written without AUTOINCREMENT reissue the id of a deleted
# newest row, so items is rebuilt first. A sequence already recorded for items
# is copied across before the rows, which can only raise it.
# FTS rows use the item id as their rowid, so every item has at most one index
# row and deleting by rowid is a direct lookup.
INDEX_SYNC_SQL = """
CREATE TABLE items_rebuilt (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    kind        TEXT NOT NULL CHECK(kind IN ('text', 'rtf', 'image', 'file')),
    content_ref TEXT NOT NULL,
    source_app  TEXT,
    created_at  INTEGER NOT NULL,
    pinned      INTEGER NOT NULL DEFAULT 0,
    tags        TEXT NOT NULL DEFAULT '[]'
);

INSERT INTO sqlite_sequence (name, seq)
    SELECT 'items_rebuilt', seq FROM sqlite_sequence WHERE name = 'items';

INSERT INTO items_rebuilt (id, kind, content_ref, source_app, created_at, pinned, tags)
    SELECT id, kind, content_ref, source_app, created_at, pinned, tags FROM items ORDER BY id;

DROP TABLE items;
ALTER TABLE items_rebuilt RENAME TO items;

CREATE INDEX idx_items_created_at ON items(created_at DESC);
CREATE INDEX idx_items_kind ON items(kind);

CREATE TABLE item_fingerprints (
    item_id     INTEGER PRIMARY KEY REFERENCES items(id) ON DELETE CASCADE,
    fingerprint TEXT NOT NULL
);

CREATE INDEX idx_item_fingerprints_fingerprint ON item_fingerprints(fingerprint);

CREATE TRIGGER items_fts_ai AFTER INSERT ON items
WHEN new.kind IN ('text', 'rtf') BEGIN
    INSERT INTO items_fts(rowid, item_id, text) VALUES (new.id, new.id, new.content_ref);
END;

CREATE TRIGGER items_fts_ad AFTER DELETE ON items BEGIN
    DELETE FROM items_fts WHERE rowid = old.id;
END;

DELETE FROM items_fts;
INSERT INTO items_fts(rowid, item_id, text)
    SELECT id, id, content_ref FROM items WHERE kind IN ('text', 'rtf');
"""


def _backfill_fingerprints(conn: sqlite3.Connection) -> None:
    rows = conn.execute("SELECT id, kind, content_ref FROM items").fetchall()
    conn.executemany(
        "INSERT INTO item_fingerprints (item_id, fingerprint) VALUES (?, ?)",
        [(row[0], content_fingerprint(row[1], row[2])) for row in rows],
    )
    if rows:
        logger.info("Fingerprinted %d existing items", len(rows))


@dataclass(frozen=True)
class Migration:
    version: int
    name: str
    sql: str
    after: Callable[[sqlite3.Connection], None] | None = None


MIGRATIONS: tuple[Migration, ...] = (
    Migration(1, "init", INIT_SQL),
    Migration(2, "index_sync", INDEX_SYNC_SQL, after=_backfill_fingerprints),
)

SCHEMA_VERSION = MIGRATIONS[-1].version


def open_connection(db_path: str | Path) -> sqlite3.Connection:
    """Open the database file with the pragmas the engine relies on."""
    try:
        conn = sqlite3.connect(str(db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA foreign_keys=ON")
        conn.execute("PRAGMA temp_store=MEMORY")
    except sqlite3.DatabaseError as exc:
        # "file is not a database" surfaces on the first pragma
        raise CorruptionError(f"Cannot open database {db_path}: {exc}") from exc
    except sqlite3.Error as exc:
        raise StorageError(f"Cannot open database {db_path}: {exc}") from exc
    return conn


def get_version(conn: sqlite3.Connection) -> int:
    return conn.execute("PRAGMA user_version").fetchone()[0]


def apply_migrations(conn: sqlite3.Connection, migrations: tuple[Migration, ...] = MIGRATIONS) -> list[int]:
    """Apply every pending migration in order; return the versions applied."""
    current = get_version(conn)
    latest = migrations[-1].version if migrations else 0
    if current > latest:
        raise CorruptionError(
            f"Database schema version {current} is newer than supported version {latest}"
        )

    applied = []
    for migration in migrations:
        if migration.version <= current:
            continue
        try:
            conn.executescript("BEGIN;\n" + migration.sql)
            if migration.after is not None:
                migration.after(conn)
            conn.execute(f"PRAGMA user_version = {int(migration.version)}")
            conn.commit()
        except sqlite3.Error as exc:
            if conn.in_transaction:
                conn.rollback()
            raise StorageError(
                f"Failed to apply migration {migration.version} ({migration.name}): {exc}"
            ) from exc
        logger.info("Applied migration %d (%s)", migration.version, migration.name)
        applied.append(migration.version)
    return applied


def verify_schema(conn: sqlite3.Connection) -> None:
    """Raise CorruptionError unless the tables match what this code expects."""
    columns = tuple(row[1] for row in conn.execute("PRAGMA table_info(items)").fetchall())
    if columns != ITEM_COLUMNS:
        raise CorruptionError(f"Unexpected items columns: {columns}")
    items_sql = conn.execute("SELECT sql FROM sqlite_master WHERE type = 'table' AND name = 'items'").fetchone()[0]
    if "AUTOINCREMENT" not in items_sql.upper():
        raise CorruptionError("items ids are not AUTOINCREMENT")

    tables = {
        row[0]
        for row in conn.execute(
            "SELECT name FROM sqlite_master WHERE type IN ('table', 'trigger')"
        ).fetchall()
    }
    missing = {"items_fts", "item_fingerprints", "items_fts_ai", "items_fts_ad"} - tables
    if missing:
        raise CorruptionError(f"Missing schema objects: {', '.join(sorted(missing))}")


def init_db(conn: sqlite3.Connection) -> list[int]:
    """Bring a fresh or existing database up to SCHEMA_VERSION and verify it."""
    try:
        applied = apply_migrations(conn)
    except sqlite3.DatabaseError as exc:
        raise CorruptionError(f"Unreadable database: {exc}") from exc
    verify_schema(conn)
    return applied
