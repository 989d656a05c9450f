import argparse
import logging
import sys
import tempfile
import time
from datetime import datetime
from pathlib import Path

from haste import __version__
from haste.config import BLOB_DIR, DB_PATH, DEFAULT_SEARCH_LIMIT, LOG_PATH, PREVIEW_LENGTH
from haste.engine import Engine
from haste.errors import HasteError
from haste.models import Item, ItemKind
from haste.utils import ensure_dirs, truncate_text

logger = logging.getLogger(__name__)

BENCH_TEXTS = (
    "The quick brown fox jumps over the lazy dog",
    "SQLite is fast and reliable",
    "Clipboard manager for macOS and Linux",
    "Full-text search with FTS5",
    "Performance optimization techniques",
    "Database indexing strategies",
)
BENCH_QUERIES = ("quick", "sqlite", "clip", "search fts5", "zzz-no-match")


def configure_logging(verbose: bool = False) -> None:
    ensure_dirs()
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(LOG_PATH),
            logging.StreamHandler(sys.stderr),
        ],
    )


def format_item(item: Item) -> str:
    """One listing line: id, kind, pin marker, timestamp and a single-line preview."""
    pin = "*" if item.pinned else " "
    stamp = datetime.fromtimestamp(item.created_at / 1000).strftime("%Y-%m-%d %H:%M:%S")
    preview = truncate_text(item.content_ref, PREVIEW_LENGTH)
    return f"{item.id:>6} {pin} {item.kind.value:<5} {stamp}  {preview}"


def format_detail(item: Item) -> str:
    lines = [
        f"id:         {item.id}",
        f"kind:       {item.kind.value}",
        f"source_app: {item.source_app or '-'}",
        f"created_at: {item.created_at}",
        f"pinned:     {'yes' if item.pinned else 'no'}",
        f"tags:       {', '.join(item.tags) if item.tags else '-'}",
    ]
    if not item.kind.is_textual and not Path(item.content_ref).exists():
        lines.append(f"content:    {item.content_ref} (missing on disk)")
    else:
        lines.append(f"content:    {item.content_ref}")
    return "\n".join(lines)


def cmd_add(engine: Engine, args: argparse.Namespace) -> int:
    content = args.content if args.content is not None else sys.stdin.read()
    tags = args.tag or None
    if args.force:
        item_id = engine.add_item(args.kind, content, args.source_app, tags=tags)
        print(f"Inserted {item_id}")
        return 0
    outcome = engine.dedupe_insert(args.kind, content, args.source_app, tags=tags)
    if outcome.is_rejected:
        print("Rejected: empty content")
        return 1
    print(f"{outcome.kind.value.capitalize()} {outcome.id}")
    return 0


def cmd_search(engine: Engine, args: argparse.Namespace) -> int:
    for item in engine.search(" ".join(args.query), args.limit):
        print(format_item(item))
    return 0


def cmd_recent(engine: Engine, args: argparse.Namespace) -> int:
    items = engine.get_pinned() if args.pinned else engine.list_recent(args.limit, args.kind)
    for item in items:
        print(format_item(item))
    return 0


def cmd_get(engine: Engine, args: argparse.Namespace) -> int:
    print(format_detail(engine.get_item(args.id)))
    return 0


def cmd_delete(engine: Engine, args: argparse.Namespace) -> int:
    engine.delete_item(args.id)
    print(f"Deleted {args.id}")
    return 0


def cmd_pin(engine: Engine, args: argparse.Namespace) -> int:
    pinned = args.command == "pin"
    engine.pin_item(args.id, pinned)
    print(f"{'Pinned' if pinned else 'Unpinned'} {args.id}")
    return 0


def cmd_clear(engine: Engine, args: argparse.Namespace) -> int:
    deleted = engine.clear_history(keep_pinned=not args.all)
    print(f"Deleted {deleted} items")
    return 0


def cmd_purge(engine: Engine, args: argparse.Namespace) -> int:
    deleted = engine.purge_old(args.keep)
    print(f"Purged {deleted} items")
    return 0


def cmd_stats(engine: Engine, args: argparse.Namespace) -> int:
    print(f"Database: {engine.db_path}")
    print(f"Items:    {engine.count()}")
    print(f"Pinned:   {engine.count_pinned()}")
    return 0


def cmd_reindex(engine: Engine, args: argparse.Namespace) -> int:
    rows = engine.reindex()
    print(f"Indexed {rows} items")
    return 0


def cmd_check(engine: Engine, args: argparse.Namespace) -> int:
    engine.check_integrity()
    print("OK")
    return 0


def run_bench(engine: Engine, count: int, queries: tuple[str, ...] = BENCH_QUERIES) -> dict[str, float]:
    """Ingest ``count`` mixed items, then time each query; returns timings in ms."""
    kinds = (ItemKind.TEXT, ItemKind.RTF, ItemKind.IMAGE, ItemKind.FILE)
    start = time.perf_counter()
    for i in range(count):
        kind = kinds[i % len(kinds)]
        if kind.is_textual:
            content = f"{BENCH_TEXTS[i % len(BENCH_TEXTS)]} - item {i}"
        else:
            content = str(engine.blob_dir / f"resource_{i}.dat")
        engine.add_item(kind, content, "bench", created_at=1_000_000 + i, tags=["bench"] if i % 5 == 0 else None)
    timings = {"ingest": (time.perf_counter() - start) * 1000}

    for query in queries:
        start = time.perf_counter()
        engine.search(query, DEFAULT_SEARCH_LIMIT)
        timings[query] = (time.perf_counter() - start) * 1000
    return timings


def cmd_bench(engine: Engine, args: argparse.Namespace) -> int:
    timings = run_bench(engine, args.count)
    print(f"Ingested {args.count} items in {timings.pop('ingest'):.1f} ms")
    for query, elapsed in timings.items():
        print(f"  search {query!r}: {elapsed:.2f} ms")
    return 0


COMMANDS = {
    "add": cmd_add,
    "search": cmd_search,
    "recent": cmd_recent,
    "get": cmd_get,
    "delete": cmd_delete,
    "pin": cmd_pin,
    "unpin": cmd_pin,
    "clear": cmd_clear,
    "purge": cmd_purge,
    "stats": cmd_stats,
    "reindex": cmd_reindex,
    "check": cmd_check,
    "bench": cmd_bench,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="haste",
        description="Haste - clipboard history storage and search",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  haste add "hello world"         # store text, bumping an existing copy
  haste search hel                # ranked prefix search
  haste recent --kind image       # newest image items
  haste pin 42                    # keep item 42 through clears
""",
    )
    parser.add_argument("--version", action="version", version=f"haste {__version__}")
    parser.add_argument("--db", default=str(DB_PATH), help="database file")
    parser.add_argument("--blob-dir", default=str(BLOB_DIR), help="directory of referenced blob files")
    parser.add_argument(
        "--index-file-names",
        action="store_true",
        default=None,
        help="also index image/file names for search",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("add", help="store a clipboard item")
    p.add_argument("content", nargs="?", help="text or path (reads stdin when omitted)")
    p.add_argument("--kind", default=ItemKind.TEXT.value, choices=[k.value for k in ItemKind])
    p.add_argument("--source-app")
    p.add_argument("--tag", action="append", help="tag to attach (repeatable)")
    p.add_argument("--force", action="store_true", help="insert even if the content is already stored")

    p = sub.add_parser("search", help="search stored items")
    p.add_argument("query", nargs="*", default=[])
    p.add_argument("-n", "--limit", type=int, default=DEFAULT_SEARCH_LIMIT)

    p = sub.add_parser("recent", help="list the newest items")
    p.add_argument("-n", "--limit", type=int, default=DEFAULT_SEARCH_LIMIT)
    p.add_argument("--kind", choices=[k.value for k in ItemKind])
    p.add_argument("--pinned", action="store_true", help="list pinned items only")

    for name, help_text in (
        ("get", "show one item"),
        ("delete", "delete one item"),
        ("pin", "pin an item"),
        ("unpin", "unpin an item"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("id", type=int)

    p = sub.add_parser("clear", help="delete history (pinned items are kept)")
    p.add_argument("--all", action="store_true", help="delete pinned items too")

    p = sub.add_parser("purge", help="delete unpinned items beyond the retention limit")
    p.add_argument("--keep", type=int, help="number of unpinned items to keep")

    sub.add_parser("stats", help="item counts")
    sub.add_parser("reindex", help="rebuild the search index")
    sub.add_parser("check", help="verify the search index")

    p = sub.add_parser("bench", help="ingest synthetic items and time searches")
    p.add_argument("-c", "--count", type=int, default=10_000)
    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    if args.command == "bench" and args.db == str(DB_PATH):
        # Never benchmark against the real history
        scratch = Path(tempfile.mkdtemp(prefix="haste-bench-"))
        args.db = str(scratch / "bench.db")
        args.blob_dir = str(scratch / "blobs")

    try:
        with Engine(args.db, args.blob_dir, index_file_names=args.index_file_names) as engine:
            code = COMMANDS[args.command](engine, args)
    except HasteError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
