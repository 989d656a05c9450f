import os
from pathlib import Path

DATA_DIR = Path(os.environ.get("HASTE_DATA_DIR", Path.home() / ".local" / "share" / "haste"))
DB_PATH = DATA_DIR / "haste.db"
BLOB_DIR = DATA_DIR / "blobs"
LOG_PATH = DATA_DIR / "haste.log"

PREVIEW_LENGTH = 60  # characters shown per item in CLI listings


def _parse_int_env(name: str, default: int, minimum: int, maximum: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(minimum, min(maximum, value))


def _parse_bool_env(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    return default


MAX_ENTRIES = _parse_int_env("HASTE_MAX_ENTRIES", 500, 10, 100_000)  # purge_old retention
DEFAULT_SEARCH_LIMIT = _parse_int_env("HASTE_SEARCH_LIMIT", 100, 1, 1000)
INDEX_FILE_NAMES = _parse_bool_env("HASTE_INDEX_FILE_NAMES", False)  # index image/file base names
