from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Optional

from .chrome_source import compute_fingerprint, parse_bookmarks_file
from .index_db import BookmarkIndex
from .log import get_logger

log = get_logger(__name__)

INDEX_CHECK_STATE_FILE = "index_check.json"


def now_ms() -> int:
    return int(time.time() * 1000)


def refresh_index(index: BookmarkIndex, bookmarks_path: Path) -> int:
    """Rebuild the index from ``bookmarks_path`` unconditionally."""
    # Fingerprint first: a file rewritten during parsing is then seen as stale next time.
    fingerprint = compute_fingerprint(bookmarks_path)
    records = parse_bookmarks_file(bookmarks_path)
    return index.replace_all(records, fingerprint)


def ensure_index(
    index: BookmarkIndex,
    bookmarks_path: Path,
    state_dir: Path,
    *,
    ttl_ms: int = 5000,
    now: Optional[int] = None,
) -> bool:
    """Rebuild the index when the source changed. Returns True if it was rebuilt.

    Fingerprint checks are throttled: within ``ttl_ms`` of the last check the
    index is assumed current.
    """
    current = now_ms() if now is None else now
    if is_index_check_recent(state_dir, current, ttl_ms):
        return False

    fingerprint = compute_fingerprint(bookmarks_path)
    if not index.needs_refresh(fingerprint):
        mark_index_checked(state_dir, current)
        return False

    log.info("Bookmarks changed; rebuilding index from %s", bookmarks_path)
    refresh_index(index, bookmarks_path)
    mark_index_checked(state_dir, current)
    return True


def is_index_check_recent(state_dir: Path, now: int, ttl_ms: int) -> bool:
    if ttl_ms <= 0:
        return False
    p = Path(state_dir) / INDEX_CHECK_STATE_FILE
    try:
        state = json.loads(p.read_text(encoding="utf-8"))
        last = int(state["last_checked_ms"])
    except (OSError, ValueError, KeyError, TypeError):
        return False
    return 0 <= now - last <= ttl_ms


def mark_index_checked(state_dir: Path, now: int) -> None:
    p = Path(state_dir) / INDEX_CHECK_STATE_FILE
    try:
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(json.dumps({"last_checked_ms": now}), encoding="utf-8")
    except OSError as e:
        log.warning("Could not record index check time in %s: %s", p, e)
