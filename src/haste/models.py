from dataclasses import dataclass, field
from enum import Enum

from haste.errors import InvalidArgumentError


class ItemKind(str, Enum):
    TEXT = "text"
    RTF = "rtf"
    IMAGE = "image"
    FILE = "file"

    @property
    def code(self) -> int:
        return _KIND_CODES[self]

    @property
    def is_textual(self) -> bool:
        return self in (ItemKind.TEXT, ItemKind.RTF)

    @classmethod
    def from_code(cls, code: int) -> "ItemKind":
        for kind, kind_code in _KIND_CODES.items():
            if kind_code == code:
                return kind
        raise InvalidArgumentError(f"Unrecognized kind code: {code!r}")

    @classmethod
    def parse(cls, value: "ItemKind | str | int") -> "ItemKind":
        """Accept an ItemKind, its string value, or its numeric boundary code."""
        if isinstance(value, ItemKind):
            return value
        if isinstance(value, bool):
            raise InvalidArgumentError(f"Unrecognized kind: {value!r}")
        if isinstance(value, int):
            return cls.from_code(value)
        try:
            return cls(str(value).lower())
        except ValueError:
            raise InvalidArgumentError(f"Unrecognized kind: {value!r}") from None


_KIND_CODES = {
    ItemKind.TEXT: 0,
    ItemKind.RTF: 1,
    ItemKind.IMAGE: 2,
    ItemKind.FILE: 3,
}

TEXTUAL_KINDS = (ItemKind.TEXT, ItemKind.RTF)


@dataclass
class Item:
    id: int
    kind: ItemKind
    content_ref: str
    source_app: str | None
    created_at: int  # ms since epoch
    pinned: bool = False
    tags: list[str] = field(default_factory=list)


@dataclass
class NewItem:
    kind: ItemKind
    content_ref: str
    source_app: str | None
    created_at: int
    tags: list[str] = field(default_factory=list)


class OutcomeKind(str, Enum):
    INSERTED = "inserted"
    TOUCHED = "touched"
    REJECTED = "rejected"


@dataclass(frozen=True)
class DedupeOutcome:
    """Result of a dedupe_insert: a new row, a bumped existing row, or nothing."""

    kind: OutcomeKind
    id: int | None = None

    @classmethod
    def inserted(cls, item_id: int) -> "DedupeOutcome":
        return cls(OutcomeKind.INSERTED, item_id)

    @classmethod
    def touched(cls, item_id: int) -> "DedupeOutcome":
        return cls(OutcomeKind.TOUCHED, item_id)

    @classmethod
    def rejected(cls) -> "DedupeOutcome":
        return cls(OutcomeKind.REJECTED)

    @property
    def is_inserted(self) -> bool:
        return self.kind is OutcomeKind.INSERTED

    @property
    def is_touched(self) -> bool:
        return self.kind is OutcomeKind.TOUCHED

    @property
    def is_rejected(self) -> bool:
        return self.kind is OutcomeKind.REJECTED
