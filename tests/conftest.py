import pytest

from haste.engine import Engine
from haste.models import ItemKind, NewItem
from haste.schema import init_db, open_connection
from haste.storage import ItemStore


@pytest.fixture
def engine(tmp_path):
    eng = Engine(":memory:", tmp_path / "blobs")
    yield eng
    eng.close()


@pytest.fixture
def conn():
    connection = open_connection(":memory:")
    init_db(connection)
    yield connection
    connection.close()


@pytest.fixture
def store(conn):
    return ItemStore(conn)


@pytest.fixture
def make_item():
    """Factory fixture to create NewItem instances for testing."""

    def _make_item(
        content: str = "hello world",
        kind: ItemKind = ItemKind.TEXT,
        created_at: int = 1000,
        source_app: str | None = None,
        tags: list[str] | None = None,
    ) -> NewItem:
        return NewItem(
            kind=kind,
            content_ref=content,
            source_app=source_app,
            created_at=created_at,
            tags=tags or [],
        )

    return _make_item

