import hashlib
import time
from pathlib import Path

from haste.config import BLOB_DIR, DATA_DIR


def compute_hash(data: str | bytes) -> str:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def normalize_text(text: str) -> str:
    """Trim and collapse every whitespace run to a single space."""
    return " ".join(text.split())


def content_fingerprint(kind: str, content_ref: str) -> str:
    # Text that differs only in spacing is the same capture; paths must match exactly.
    if kind in ("text", "rtf"):
        content_ref = normalize_text(content_ref)
    return compute_hash(f"{kind}\0{content_ref}")


def truncate_text(text: str, max_len: int) -> str:
    single_line = normalize_text(text)
    if len(single_line) <= max_len:
        return single_line
    return single_line[: max_len - 3] + "..."


def now_ms() -> int:
    return time.time_ns() // 1_000_000


def ensure_dirs(data_dir: Path = DATA_DIR, blob_dir: Path = BLOB_DIR) -> None:
    Path(data_dir).mkdir(parents=True, exist_ok=True)
    Path(blob_dir).mkdir(parents=True, exist_ok=True)
