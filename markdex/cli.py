from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Iterable, List, Tuple
from urllib.parse import urlparse

from . import __version__
from .config import Settings, load_settings
from .errors import MarkdexError
from .index_db import BookmarkIndex
from .log import LogConfig, get_logger, setup_logging
from .searcher import BookmarkSearcher
from .sync import ensure_index, mark_index_checked, now_ms, refresh_index
from .tag_store import TagStore

log = get_logger(__name__)

_FOLDER_PREFIXES = ("dir:", "folder:", "path:", "in:")


def main(argv: List[str] | None = None) -> int:
    p = argparse.ArgumentParser(
        prog="markdex",
        description="Index, tag and search browser bookmarks from a local SQLite index.",
    )
    p.add_argument("-V", "--version", action="version", version=f"markdex {__version__}")
    p.add_argument("--config", default=None, help="YAML config file (optional). Env vars override defaults.")
    p.add_argument("--bookmarks", default=None, help="Chromium 'Bookmarks' JSON file to index.")
    p.add_argument("--data-dir", default=None, help="Directory holding the index database.")
    p.add_argument("--log-level", default=None, help="DEBUG/INFO/WARN/ERROR (overrides env/config).")
    p.add_argument("--no-color", action="store_true", help="Disable colored logging.")
    sub = p.add_subparsers(dest="cmd", required=True)

    s = sub.add_parser("search", aliases=["s"], help="Search bookmarks.")
    s.add_argument("query", nargs="*", help="Keywords; '#a,b' or 'dir:a' tokens add folder filters.")
    s.add_argument("-t", "--tags", default=None, help="Comma separated tags, all required.")
    s.add_argument("-p", "--folders", default=None, help="Comma separated folder filters, e.g. work/project.")
    s.add_argument("-f", "--fuzzy", action="store_true", help="Fuzzy subsequence matching.")
    s.add_argument("-l", "--limit", type=int, default=None, help="Maximum number of results.")
    s.add_argument("--json", action="store_true", help="Print one JSON object per result.")

    t = sub.add_parser("tag", aliases=["t"], help="Add tags to a bookmark.")
    t.add_argument("bookmark", help="Bookmark id or URL.")
    t.add_argument("tags", nargs="+", help="Tags (space or comma separated).")

    ut = sub.add_parser("untag", aliases=["ut"], help="Remove a tag from a bookmark.")
    ut.add_argument("bookmark", help="Bookmark id or URL.")
    ut.add_argument("tag")

    lt = sub.add_parser("tags", aliases=["lt"], help="List tags with usage counts.")
    lt.add_argument("prefix", nargs="?", default="")

    sh = sub.add_parser("show", aliases=["sh"], help="Show the tags of a bookmark.")
    sh.add_argument("bookmark", help="Bookmark id or URL.")

    rn = sub.add_parser("rename", aliases=["r"], help="Rename a tag everywhere.")
    rn.add_argument("old_tag")
    rn.add_argument("new_tag")

    sub.add_parser("refresh", aliases=["rf"], help="Rebuild the index from the bookmarks file.")
    sub.add_parser("stats", aliases=["st"], help="Show index statistics.")

    args = p.parse_args(argv)
    cfg = load_settings(args.config)
    if args.bookmarks:
        cfg.bookmarks_path = args.bookmarks
    if args.data_dir:
        cfg.data_dir = args.data_dir
    if args.log_level:
        cfg.log_level = args.log_level
    if args.no_color:
        cfg.no_color = True
    setup_logging(LogConfig(level=cfg.log_level, no_color=cfg.no_color))

    handlers = {
        "search": _cmd_search,
        "s": _cmd_search,
        "tag": _cmd_tag,
        "t": _cmd_tag,
        "untag": _cmd_untag,
        "ut": _cmd_untag,
        "tags": _cmd_tags,
        "lt": _cmd_tags,
        "show": _cmd_show,
        "sh": _cmd_show,
        "rename": _cmd_rename,
        "r": _cmd_rename,
        "refresh": _cmd_refresh,
        "rf": _cmd_refresh,
        "stats": _cmd_stats,
        "st": _cmd_stats,
    }
    handler = handlers.get(args.cmd)
    if handler is None:
        return 2
    try:
        with _open_index(cfg) as index:
            return handler(args, cfg, index)
    except (MarkdexError, ValueError, OSError) as e:
        log.debug("Command %s failed", args.cmd, exc_info=True)
        print(f"markdex: {e}", file=sys.stderr)
        return 2


def _open_index(cfg: Settings) -> BookmarkIndex:
    return BookmarkIndex(cfg.index_path(), busy_timeout_ms=cfg.busy_timeout_ms, fts=cfg.enable_fts)


def _sync(index: BookmarkIndex, cfg: Settings) -> None:
    if not cfg.bookmarks_path:
        log.debug("No bookmarks file configured; using the existing index.")
        return
    ensure_index(
        index,
        Path(cfg.bookmarks_path).expanduser(),
        Path(cfg.data_dir).expanduser(),
        ttl_ms=cfg.index_check_ttl_ms,
    )


def _cmd_search(args, cfg: Settings, index: BookmarkIndex) -> int:
    _sync(index, cfg)
    query, inline_folders = parse_query_and_folder_filters(" ".join(args.query))
    folders = normalize_csv_terms((args.folders or "").split(","))
    folders = _append_unique_case_insensitive(folders, inline_folders)
    tags = normalize_csv_terms((args.tags or "").split(","))
    limit = args.limit if args.limit is not None else cfg.default_limit

    searcher = BookmarkSearcher(index)
    results = searcher.lookup(query, tags=tags, folders=folders, fuzzy=args.fuzzy or cfg.fuzzy, limit=limit)

    if args.json:
        tags_by_id = searcher.tags.tags_for([r.id for r in results]) if searcher.tags else {}
        for r in results:
            row = r.to_dict()
            row["tags"] = tags_by_id.get(r.id, [])
            print(json.dumps(row, ensure_ascii=False))
        return 0

    if not results:
        hint = f" (folders: {', '.join(folders)})" if folders else ""
        print(f"No bookmarks found{hint}.")
        return 0
    for r in results:
        print(f"{r.name}\t{r.url}\t{_subtitle(r.folder_path, domain_of(r.url))}")
    return 0


def _cmd_tag(args, cfg: Settings, index: BookmarkIndex) -> int:
    _sync(index, cfg)
    record = index.get_by_id_or_url(args.bookmark)
    if record is None:
        log.error("Bookmark not found: %s", args.bookmark)
        return 2
    tags = normalize_csv_terms(x for raw in args.tags for x in raw.split(","))
    added = TagStore(index).add_tags(record.id, tags)
    print(f"Added {added} tag(s) to {record.name}.")
    return 0


def _cmd_untag(args, cfg: Settings, index: BookmarkIndex) -> int:
    _sync(index, cfg)
    record = index.get_by_id_or_url(args.bookmark)
    if record is None:
        log.error("Bookmark not found: %s", args.bookmark)
        return 2
    TagStore(index).remove_tag(record.id, args.tag)
    print(f"Removed tag {args.tag.strip()!r} from {record.name}.")
    return 0


def _cmd_tags(args, cfg: Settings, index: BookmarkIndex) -> int:
    suggestions = BookmarkSearcher(index).tag_suggestions(args.prefix)
    if not suggestions:
        print("No tags.")
        return 0
    for tag, n in suggestions:
        print(f"{tag}\t{n}")
    return 0


def _cmd_show(args, cfg: Settings, index: BookmarkIndex) -> int:
    _sync(index, cfg)
    record = index.get_by_id_or_url(args.bookmark)
    if record is None:
        log.error("Bookmark not found: %s", args.bookmark)
        return 2
    tags = TagStore(index).get_tags(record.id)
    print(f"{record.name}\t{record.url}")
    print(", ".join(tags) if tags else "(no tags)")
    return 0


def _cmd_rename(args, cfg: Settings, index: BookmarkIndex) -> int:
    n = TagStore(index).rename(args.old_tag, args.new_tag)
    print(f"Renamed {args.old_tag.strip()!r} -> {args.new_tag.strip()!r} on {n} bookmark(s).")
    return 0


def _cmd_refresh(args, cfg: Settings, index: BookmarkIndex) -> int:
    if not cfg.bookmarks_path:
        log.error("No bookmarks file configured (use --bookmarks or MARKDEX_BOOKMARKS_PATH).")
        return 2
    n = refresh_index(index, Path(cfg.bookmarks_path).expanduser())
    mark_index_checked(Path(cfg.data_dir).expanduser(), now_ms())
    print(f"Indexed {n} bookmarks.")
    return 0


def _cmd_stats(args, cfg: Settings, index: BookmarkIndex) -> int:
    _sync(index, cfg)
    print(f"bookmarks\t{index.count()}")
    if index.tagging:
        tags = TagStore(index)
        print(f"tags\t{tags.tag_count()}")
        print(f"tagged_bookmarks\t{tags.tagged_bookmark_count()}")
    print(f"full_text\t{'on' if index.fts_enabled else 'off'}")
    return 0


def parse_query_and_folder_filters(raw_query: str) -> Tuple[str, List[str]]:
    """Split ``#a,b`` / ``dir:a`` style tokens out of a free-text query."""
    query_tokens: List[str] = []
    folders: List[str] = []
    for token in (raw_query or "").split():
        if token.startswith("#"):
            value = token[1:]
            if value:
                folders = _append_unique_case_insensitive(folders, normalize_csv_terms(value.split(",")))
            continue
        prefix = next((x for x in _FOLDER_PREFIXES if token.startswith(x)), None)
        if prefix is not None:
            value = token[len(prefix):]
            folders = _append_unique_case_insensitive(folders, normalize_csv_terms(value.split(",")))
            continue
        query_tokens.append(token)
    return " ".join(query_tokens), folders


def normalize_csv_terms(values: Iterable[str]) -> List[str]:
    out: List[str] = []
    seen = set()
    for v in values:
        term = (v or "").strip()
        if not term or term in seen:
            continue
        seen.add(term)
        out.append(term)
    return out


def _append_unique_case_insensitive(target: List[str], values: Iterable[str]) -> List[str]:
    out = list(target)
    lowered = {x.lower() for x in out}
    for v in values:
        if v.lower() in lowered:
            continue
        lowered.add(v.lower())
        out.append(v)
    return out


def domain_of(url: str) -> str:
    try:
        host = urlparse(url).netloc
    except ValueError:
        return ""
    if host.startswith("www."):
        host = host[4:]
    return host


def _subtitle(folder_path: str | None, domain: str) -> str:
    parts = [x for x in (folder_path or "", domain) if x]
    return "  ·  ".join(parts)
