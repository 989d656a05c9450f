import sqlite3

import pytest

from haste.engine import Engine
from haste.errors import InvalidArgumentError, NotFoundError, StorageError
from haste.models import ItemKind, OutcomeKind


class TestLifecycle:
    def test_creates_blob_dir(self, tmp_path):
        blob_dir = tmp_path / "nested" / "blobs"
        with Engine(":memory:", blob_dir):
            assert blob_dir.is_dir()

    def test_close_is_idempotent(self, tmp_path):
        engine = Engine(":memory:", tmp_path / "blobs")
        engine.close()
        engine.close()
        assert engine.closed

    def test_context_manager_closes(self, tmp_path):
        with Engine(":memory:", tmp_path / "blobs") as engine:
            assert not engine.closed
        assert engine.closed

    def test_operations_after_close_fail(self, tmp_path):
        engine = Engine(":memory:", tmp_path / "blobs")
        engine.close()
        with pytest.raises(StorageError):
            engine.count()

    def test_blob_dir_is_a_file(self, tmp_path):
        blocker = tmp_path / "blobs"
        blocker.write_text("not a directory")
        with pytest.raises(StorageError):
            Engine(":memory:", blocker)

    def test_independent_engines(self, tmp_path):
        with Engine(tmp_path / "a.db", tmp_path / "blobs") as a, Engine(tmp_path / "b.db", tmp_path / "blobs") as b:
            a.add_item("text", "only in a", created_at=1000)
            assert a.count() == 1
            assert b.count() == 0


class TestHistoryScenario:
    def test_copy_recopy_search_delete(self, engine):
        first = engine.dedupe_insert("text", "hello world", created_at=1000)
        assert first.kind is OutcomeKind.INSERTED
        assert first.id == 1

        again = engine.dedupe_insert("text", "hello world", created_at=2000)
        assert again.kind is OutcomeKind.TOUCHED
        assert again.id == 1
        assert engine.get_item(1).created_at == 2000

        second = engine.dedupe_insert("text", "goodbye", created_at=3000)
        assert second.is_inserted
        assert second.id == 2

        assert [i.id for i in engine.search("", 10)] == [2, 1]
        assert [i.id for i in engine.search("hello", 10)] == [1]

        engine.delete_item(1)
        assert engine.search("hello", 10) == []
        assert engine.count() == 1


class TestAddItem:
    def test_returns_id(self, engine):
        item_id = engine.add_item("text", "hello", source_app="Terminal", created_at=1000, tags=["x"])
        item = engine.get_item(item_id)
        assert item.kind == ItemKind.TEXT
        assert item.source_app == "Terminal"
        assert item.tags == ["x"]
        assert item.pinned is False

    def test_does_not_dedupe(self, engine):
        a = engine.add_item("text", "same", created_at=1000)
        b = engine.add_item("text", "same", created_at=2000)
        assert a != b
        assert engine.count() == 2

    def test_default_timestamp_is_now(self, engine):
        item_id = engine.add_item("text", "now")
        assert engine.get_item(item_id).created_at > 1_600_000_000_000

    def test_accepts_kind_codes(self, engine):
        item_id = engine.add_item(2, "/tmp/shot.png", created_at=1000)
        assert engine.get_item(item_id).kind == ItemKind.IMAGE

    @pytest.mark.parametrize("content", ["", "   ", "\n\t"])
    def test_empty_content_rejected(self, engine, content):
        with pytest.raises(InvalidArgumentError):
            engine.add_item("text", content)

    def test_missing_content_rejected(self, engine):
        with pytest.raises(InvalidArgumentError):
            engine.add_item("text", None)

    def test_unknown_kind_rejected(self, engine):
        with pytest.raises(InvalidArgumentError):
            engine.add_item("video", "x")
        with pytest.raises(InvalidArgumentError):
            engine.add_item(9, "x")
        assert engine.count() == 0


class TestDedupeInsert:
    def test_whitespace_only_rejected(self, engine):
        outcome = engine.dedupe_insert("text", "  \n ", created_at=1000)
        assert outcome.is_rejected
        assert outcome.id is None
        assert engine.count() == 0

    def test_whitespace_variants_touch(self, engine):
        first = engine.dedupe_insert("text", "hello world", created_at=1000)
        again = engine.dedupe_insert("text", "  hello\n world ", created_at=2000)
        assert again.is_touched
        assert again.id == first.id
        assert engine.get_item(first.id).content_ref == "hello world"

    def test_touch_preserves_pin_and_tags(self, engine):
        first = engine.dedupe_insert("text", "keep me", created_at=1000, tags=["work"])
        engine.pin_item(first.id, True)
        engine.dedupe_insert("text", "keep me", created_at=2000, tags=["other"])
        item = engine.get_item(first.id)
        assert item.pinned is True
        assert item.tags == ["work"]
        assert item.created_at == 2000

    def test_touch_moves_item_to_front(self, engine):
        a = engine.dedupe_insert("text", "a", created_at=1000).id
        b = engine.dedupe_insert("text", "b", created_at=2000).id
        engine.dedupe_insert("text", "a", created_at=3000)
        assert [i.id for i in engine.list_recent(10)] == [a, b]

    def test_same_path_touches(self, engine):
        first = engine.dedupe_insert("image", "/tmp/blobs/a.png", created_at=1000)
        again = engine.dedupe_insert("image", "/tmp/blobs/a.png", created_at=2000)
        assert again.is_touched
        assert again.id == first.id

    def test_different_kind_inserts(self, engine):
        engine.dedupe_insert("text", "same", created_at=1000)
        outcome = engine.dedupe_insert("rtf", "same", created_at=2000)
        assert outcome.is_inserted
        assert engine.count() == 2

    def test_recopy_after_delete_inserts(self, engine):
        first = engine.dedupe_insert("text", "gone", created_at=1000)
        engine.delete_item(first.id)
        again = engine.dedupe_insert("text", "gone", created_at=2000)
        assert again.is_inserted
        assert again.id != first.id

    def test_forced_duplicate_then_dedupe_touches_newest(self, engine):
        engine.add_item("text", "dup", created_at=1000)
        newest = engine.add_item("text", "dup", created_at=2000)
        outcome = engine.dedupe_insert("text", "dup", created_at=3000)
        assert outcome.is_touched
        assert outcome.id == newest


class TestAtomicity:
    def test_failed_insert_leaves_nothing(self, engine, monkeypatch):
        def fail(*_args):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(engine._dedup, "register", fail)
        with pytest.raises(StorageError):
            engine.dedupe_insert("text", "half written", created_at=1000)
        assert engine.count() == 0
        conn = engine.store.connection
        assert conn.execute("SELECT COUNT(*) FROM items_fts").fetchone()[0] == 0

    def test_failed_clear_keeps_everything(self, engine, monkeypatch):
        for i in range(3):
            engine.add_item("text", f"item {i}", created_at=1000 + i)
        real_delete = engine.store.delete
        calls = []

        def flaky_delete(item_id):
            calls.append(item_id)
            if len(calls) == 2:
                raise sqlite3.OperationalError("disk I/O error")
            real_delete(item_id)

        monkeypatch.setattr(engine.store, "delete", flaky_delete)
        with pytest.raises(StorageError):
            engine.clear_history()
        assert engine.count() == 3


class TestSearch:
    def test_blank_query_lists_recent(self, engine):
        a = engine.add_item("text", "a", created_at=1000)
        b = engine.add_item("image", "/tmp/b.png", created_at=2000)
        assert [i.id for i in engine.search("   ", 10)] == [b, a]

    def test_zero_limit(self, engine):
        engine.add_item("text", "alpha", created_at=1000)
        assert engine.search("alpha", 0) == []
        assert engine.search("", 0) == []

    def test_default_limit(self, engine):
        engine.add_item("text", "alpha", created_at=1000)
        assert len(engine.search("alpha")) == 1

    def test_full_records_returned(self, engine):
        item_id = engine.add_item("text", "alpha", source_app="Notes", created_at=1000, tags=["t"])
        engine.pin_item(item_id, True)
        (item,) = engine.search("alpha", 10)
        assert item.source_app == "Notes"
        assert item.pinned is True
        assert item.tags == ["t"]


class TestGetDeletePin:
    def test_get_missing(self, engine):
        with pytest.raises(NotFoundError):
            engine.get_item(42)

    def test_delete_missing(self, engine):
        with pytest.raises(NotFoundError):
            engine.delete_item(42)

    def test_pin_missing(self, engine):
        with pytest.raises(NotFoundError):
            engine.pin_item(42, True)

    def test_delete_keeps_blob_file(self, engine):
        blob = engine.blob_dir / "shot.png"
        blob.write_bytes(b"\x89PNG")
        item_id = engine.add_item("image", str(blob), created_at=1000)
        engine.delete_item(item_id)
        assert blob.exists()

    def test_get_pinned(self, engine):
        a = engine.add_item("text", "a", created_at=1000)
        engine.add_item("text", "b", created_at=2000)
        engine.pin_item(a, True)
        assert [i.id for i in engine.get_pinned()] == [a]
        assert engine.count_pinned() == 1


class TestListRecent:
    def test_kind_filter_by_name(self, engine):
        engine.add_item("text", "a", created_at=1000)
        file_id = engine.add_item("file", "/tmp/a.txt", created_at=2000)
        assert [i.id for i in engine.list_recent(10, "file")] == [file_id]


class TestRetention:
    def test_clear_keeps_pinned(self, engine):
        keep = engine.add_item("text", "keep", created_at=1000)
        engine.add_item("text", "drop", created_at=2000)
        engine.pin_item(keep, True)
        assert engine.clear_history() == 1
        assert [i.id for i in engine.list_recent(10)] == [keep]

    def test_clear_all(self, engine):
        keep = engine.add_item("text", "keep", created_at=1000)
        engine.pin_item(keep, True)
        engine.add_item("text", "drop", created_at=2000)
        assert engine.clear_history(keep_pinned=False) == 2
        assert engine.count() == 0

    def test_clear_removes_search_rows(self, engine):
        engine.add_item("text", "alpha", created_at=1000)
        engine.clear_history()
        assert engine.search("alpha", 10) == []

    def test_purge_old(self, engine):
        ids = [engine.add_item("text", f"item {i}", created_at=1000 + i) for i in range(5)]
        engine.pin_item(ids[0], True)
        assert engine.purge_old(2) == 2
        remaining = {i.id for i in engine.list_recent(10)}
        assert remaining == {ids[0], ids[3], ids[4]}

    def test_purge_nothing_to_do(self, engine):
        engine.add_item("text", "only", created_at=1000)
        assert engine.purge_old(10) == 0
