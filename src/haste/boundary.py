"""Fixed-layout contract for driving the engine from another language.

Everything that crosses this boundary is a plain integer or a C-compatible
``ctypes`` struct returned by value. Records, arrays and strings are handed out
as integer addresses (0 for NULL) of fixed-layout memory, and the free calls
take those same addresses back. Handles are integer capability tokens into a
per-boundary table, never pointers to engine internals. Every record, array and
string handed to the caller is owned by the caller until released through its
matching free call:

    get_item      -> item_free
    search        -> item_array_free (releases every record and string in it)
    last_error    -> string_free

Integer-returning calls use ``STATUS_OK`` / a positive id for success and the
negative ``ERR_*`` codes for failure. ``dedupe_insert`` returns a
``CDedupeResult`` so the three outcomes never share one integer.
"""

import ctypes
import itertools
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass

from haste.engine import Engine
from haste.errors import CorruptionError, HasteError, InvalidArgumentError, NotFoundError, StorageError
from haste.models import DedupeOutcome, Item, ItemKind, OutcomeKind

logger = logging.getLogger(__name__)

NULL_HANDLE = 0

STATUS_OK = 0
ERR_INVALID_HANDLE = -1
ERR_INVALID_ARGUMENT = -2
ERR_NOT_FOUND = -3
ERR_STORAGE = -4
ERR_CORRUPTION = -5

DEDUPE_REJECTED = 0
DEDUPE_INSERTED = 1
DEDUPE_TOUCHED = 2

_OUTCOME_CODES = {
    OutcomeKind.REJECTED: DEDUPE_REJECTED,
    OutcomeKind.INSERTED: DEDUPE_INSERTED,
    OutcomeKind.TOUCHED: DEDUPE_TOUCHED,
}

# Most specific first
_ERROR_CODES = (
    (NotFoundError, ERR_NOT_FOUND),
    (InvalidArgumentError, ERR_INVALID_ARGUMENT),
    (CorruptionError, ERR_CORRUPTION),
    (StorageError, ERR_STORAGE),
)


class CItem(ctypes.Structure):
    _fields_ = [
        ("id", ctypes.c_int64),
        ("kind", ctypes.c_int32),  # 0=Text, 1=Rtf, 2=Image, 3=File
        ("content_ref", ctypes.c_char_p),
        ("source_app", ctypes.c_char_p),  # NULL if absent
        ("created_at", ctypes.c_int64),
        ("pinned", ctypes.c_int32),
        ("tags_json", ctypes.c_char_p),  # JSON array
    ]


class CItemArray(ctypes.Structure):
    _fields_ = [
        ("items", ctypes.POINTER(CItem)),
        ("count", ctypes.c_size_t),
    ]


class CDedupeResult(ctypes.Structure):
    _fields_ = [
        ("outcome", ctypes.c_int32),  # DEDUPE_* or a negative ERR_* code
        ("id", ctypes.c_int64),  # 0 unless inserted or touched
    ]


class _Arena:
    """Holds every buffer of one allocation; dropping the arena releases them together."""

    def __init__(self):
        self._buffers: list = []

    def keep(self, obj):
        self._buffers.append(obj)
        return obj

    def alloc_string(self, value: str | None) -> int:
        if value is None:
            return 0
        # Interior NULs cannot be represented; the C string ends at the first one
        return ctypes.addressof(self.keep(ctypes.create_string_buffer(value.encode("utf-8"))))

    def fill(self, record: CItem, item: Item) -> None:
        record.id = item.id
        record.kind = item.kind.code
        record.content_ref = self.alloc_string(item.content_ref)
        record.source_app = self.alloc_string(item.source_app)
        record.created_at = item.created_at
        record.pinned = 1 if item.pinned else 0
        record.tags_json = self.alloc_string(json.dumps(item.tags))


@dataclass
class _Allocation:
    kind: str  # "item", "array" or "string"
    arena: _Arena


@dataclass
class _Session:
    engine: Engine
    last_error: str | None = None


class EngineBoundary:
    """One boundary instance: a handle table plus the allocations it has handed out.

    Instances are independent; nothing here is process-wide.
    """

    def __init__(self, engine_factory: Callable[..., Engine] = Engine):
        self._engine_factory = engine_factory
        self._sessions: dict[int, _Session] = {}
        self._allocations: dict[int, _Allocation] = {}
        self._handle_ids = itertools.count(1)
        self._open_error: str | None = None

    # Handles

    def open(self, db_path: bytes | str | None, blob_dir: bytes | str | None) -> int:
        """Open an engine; return its handle, or NULL_HANDLE on failure."""
        try:
            engine = self._engine_factory(
                _decode(db_path, "db_path"),
                _decode(blob_dir, "blob_dir"),
            )
        except Exception as exc:
            logger.warning("Failed to open engine: %s", exc)
            self._open_error = str(exc)
            return NULL_HANDLE
        handle = next(self._handle_ids)
        self._sessions[handle] = _Session(engine)
        self._open_error = None
        return handle

    def close(self, handle: int) -> int:
        session = self._sessions.pop(handle, None)
        if session is None:
            logger.warning("close() on invalid handle %r", handle)
            return ERR_INVALID_HANDLE
        session.engine.close()
        return STATUS_OK

    def is_open(self, handle: int) -> bool:
        return handle in self._sessions

    # Engine operations

    def add_item(
        self,
        handle: int,
        kind_code: int,
        content: bytes | str | None,
        source_app: bytes | str | None,
        created_at: int,
    ) -> int:
        """Return the new item id, or a negative ERR_* code."""
        session = self._session(handle)
        if session is None:
            return ERR_INVALID_HANDLE
        try:
            return session.engine.add_item(
                ItemKind.from_code(kind_code),
                _decode(content, "content"),
                _decode(source_app, "source_app", required=False),
                _timestamp(created_at),
            )
        except Exception as exc:
            return self._fail(session, "add_item", exc)

    def dedupe_insert(
        self,
        handle: int,
        kind_code: int,
        content: bytes | str | None,
        source_app: bytes | str | None,
        created_at: int,
    ) -> CDedupeResult:
        session = self._session(handle)
        if session is None:
            return CDedupeResult(ERR_INVALID_HANDLE, 0)
        try:
            outcome: DedupeOutcome = session.engine.dedupe_insert(
                ItemKind.from_code(kind_code),
                _decode(content, "content"),
                _decode(source_app, "source_app", required=False),
                _timestamp(created_at),
            )
        except Exception as exc:
            return CDedupeResult(self._fail(session, "dedupe_insert", exc), 0)
        return CDedupeResult(_OUTCOME_CODES[outcome.kind], outcome.id or 0)

    def search(self, handle: int, query: bytes | str | None, limit: int) -> int:
        """Address of a ``CItemArray`` (possibly empty), or 0 on failure."""
        session = self._session(handle)
        if session is None:
            return 0
        try:
            if limit < 0:
                raise InvalidArgumentError(f"limit must not be negative: {limit}")
            items = session.engine.search(_decode(query, "query"), limit)
        except Exception as exc:
            self._fail(session, "search", exc)
            return 0

        arena = _Arena()
        array = arena.keep(CItemArray(None, len(items)))
        if items:
            records = arena.keep((CItem * len(items))())
            for record, item in zip(records, items):
                arena.fill(record, item)
            array.items = ctypes.cast(records, ctypes.POINTER(CItem))
        address = ctypes.addressof(array)
        self._allocations[address] = _Allocation("array", arena)
        return address

    def get_item(self, handle: int, item_id: int) -> int:
        """Address of a ``CItem``, or 0 when missing or on failure."""
        session = self._session(handle)
        if session is None:
            return 0
        try:
            item = session.engine.get_item(item_id)
        except Exception as exc:
            self._fail(session, "get_item", exc)
            return 0

        arena = _Arena()
        record = arena.keep(CItem())
        arena.fill(record, item)
        address = ctypes.addressof(record)
        self._allocations[address] = _Allocation("item", arena)
        return address

    def delete_item(self, handle: int, item_id: int) -> int:
        session = self._session(handle)
        if session is None:
            return ERR_INVALID_HANDLE
        try:
            session.engine.delete_item(item_id)
        except Exception as exc:
            return self._fail(session, "delete_item", exc)
        return STATUS_OK

    def pin_item(self, handle: int, item_id: int, pinned: int) -> int:
        session = self._session(handle)
        if session is None:
            return ERR_INVALID_HANDLE
        try:
            session.engine.pin_item(item_id, pinned != 0)
        except Exception as exc:
            return self._fail(session, "pin_item", exc)
        return STATUS_OK

    def last_error(self, handle: int) -> int:
        """Address of a copy of the last error message (0 if none); release with string_free.

        ``NULL_HANDLE`` reports why the most recent ``open`` failed.
        """
        if handle == NULL_HANDLE:
            message = self._open_error
        else:
            session = self._session(handle)
            if session is None:
                return 0
            message = session.last_error
        if message is None:
            return 0
        arena = _Arena()
        address = arena.alloc_string(message)
        self._allocations[address] = _Allocation("string", arena)
        return address

    # Releases

    def item_free(self, address: int) -> int:
        if not address:
            return STATUS_OK
        return self._release(address, "item")

    def item_array_free(self, address: int) -> int:
        if not address:
            return STATUS_OK
        return self._release(address, "array")

    def string_free(self, address: int) -> int:
        if not address:
            return STATUS_OK
        return self._release(address, "string")

    def outstanding_allocations(self) -> int:
        return len(self._allocations)

    def _release(self, address: int, kind: str) -> int:
        allocation = self._allocations.get(address)
        if allocation is None or allocation.kind != kind:
            # Double frees, foreign pointers and records owned by an array all land here
            logger.warning("Refusing to free unknown %s allocation at 0x%x", kind, address)
            return ERR_INVALID_ARGUMENT
        del self._allocations[address]
        return STATUS_OK

    def _session(self, handle: int) -> _Session | None:
        session = self._sessions.get(handle)
        if session is None:
            logger.warning("Call on invalid handle %r", handle)
        return session

    @staticmethod
    def _fail(session: _Session, operation: str, exc: Exception) -> int:
        if isinstance(exc, HasteError):
            session.last_error = str(exc)
            logger.debug("%s failed: %s", operation, exc)
            for error_type, code in _ERROR_CODES:
                if isinstance(exc, error_type):
                    return code
        else:
            session.last_error = f"{type(exc).__name__}: {exc}"
        logger.exception("Unexpected error in %s", operation)
        return ERR_STORAGE


def _decode(value: bytes | str | None, name: str, required: bool = True) -> str | None:
    if value is None:
        if required:
            raise InvalidArgumentError(f"{name} must not be NULL")
        return None
    if isinstance(value, str):
        return value
    try:
        return bytes(value).decode("utf-8")
    except UnicodeDecodeError as exc:
        raise InvalidArgumentError(f"{name} is not valid UTF-8") from exc


def _timestamp(created_at: int) -> int | None:
    # Callers without a clock of their own pass 0
    return created_at if created_at > 0 else None
