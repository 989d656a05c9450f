"""Error taxonomy shared by every engine layer."""


class HasteError(Exception):
    """Base class for engine errors."""


class NotFoundError(HasteError):
    """An operation referenced an item id that does not exist."""

    def __init__(self, item_id: int):
        super().__init__(f"Item not found: {item_id}")
        self.item_id = item_id


class InvalidArgumentError(HasteError, ValueError):
    """Empty content, an unrecognized kind, or another malformed argument."""


class StorageError(HasteError):
    """The database file could not be read or a transaction could not commit."""


class CorruptionError(HasteError):
    """Schema mismatch or an unreadable row or index. Never retried."""
