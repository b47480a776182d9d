from __future__ import annotations

import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Sequence

from .errors import BackendError, IndexDegraded, StoreUnavailable
from .folder_filter import LIKE_ESCAPE, folder_like_patterns, matches_folder_filters, normalize_folder_filters
from .log import get_logger
from .model import BookmarkRecord, TextSearch
from .sql_params import all_tags_subquery
from .tag_store import normalize_tags

log = get_logger(__name__)

FINGERPRINT_KEY = "bookmarks_fingerprint"

_PRAGMAS = (
    "PRAGMA journal_mode = WAL",
    "PRAGMA synchronous = NORMAL",
    "PRAGMA temp_store = MEMORY",
    "PRAGMA cache_size = -4000",
    "PRAGMA mmap_size = 268435456",
)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS meta (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS bookmarks (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        url TEXT NOT NULL,
        date_added TEXT NOT NULL,
        folder_path TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_bookmarks_name ON bookmarks(name)",
    "CREATE INDEX IF NOT EXISTS idx_bookmarks_url ON bookmarks(url)",
    "CREATE INDEX IF NOT EXISTS idx_bookmarks_folder_path ON bookmarks(folder_path)",
)

_TAG_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS bookmark_tags (
        bookmark_id TEXT NOT NULL,
        tag TEXT NOT NULL,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        PRIMARY KEY (bookmark_id, tag)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_bookmark_tags_tag ON bookmark_tags(tag)",
    "CREATE INDEX IF NOT EXISTS idx_bookmark_tags_bookmark_id ON bookmark_tags(bookmark_id)",
)

_FTS_SCHEMA = """
    CREATE VIRTUAL TABLE IF NOT EXISTS bookmarks_fts USING fts5(
        bookmark_id UNINDEXED,
        name,
        url,
        folder_path,
        tokenize = 'unicode61'
    )
"""

_COLUMNS = "b.id, b.name, b.url, b.date_added, b.folder_path"
_FOLDER_LIKE = f"markdex_lower(ifnull(b.folder_path, '')) LIKE ? ESCAPE '{LIKE_ESCAPE}'"


class BookmarkIndex:
    """Durable secondary index over an externally owned bookmark list.

    One SQLite file holds the bookmark rows, an FTS5 projection of them,
    the tag associations and the fingerprint of the last indexed source.
    The handle is not meant to be shared between threads.
    """

    def __init__(
        self,
        db_path: Path | str,
        *,
        busy_timeout_ms: int = 500,
        fts: bool = True,
        tagging: bool = True,
    ):
        self.db_path = Path(db_path)
        self.busy_timeout_ms = max(0, int(busy_timeout_ms))
        self.want_fts = fts
        self.tagging = tagging
        self.conn: sqlite3.Connection | None = None
        self.fts_enabled = False
        self.degraded: Optional[IndexDegraded] = None
        self._fts_writable = False
        self._tags_writable = False

    def __enter__(self) -> "BookmarkIndex":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def open(self) -> None:
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreUnavailable(f"cannot create index directory {self.db_path.parent}: {e}") from e

        timeout_s = self.busy_timeout_ms / 1000.0
        try:
            # Autocommit mode: write transactions are opened explicitly with BEGIN IMMEDIATE.
            self.conn = sqlite3.connect(str(self.db_path), timeout=timeout_s, isolation_level=None)
            self.conn.row_factory = sqlite3.Row
            self.conn.create_function("markdex_lower", 1, _sql_lower, deterministic=True)
            self.conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            for pragma in _PRAGMAS:
                self.conn.execute(pragma)
            for stmt in _SCHEMA:
                self.conn.execute(stmt)
            if self.tagging:
                for stmt in _TAG_SCHEMA:
                    self.conn.execute(stmt)
        except sqlite3.Error as e:
            self.close()
            raise StoreUnavailable(f"cannot open index {self.db_path}: {e}") from e

        # Tag rows written by an earlier tagging handle must still follow reindexes.
        self._tags_writable = self.tagging or self._has_table("bookmark_tags")
        self._setup_fts()

    def close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None

    # -- staleness ---------------------------------------------------------

    def fingerprint(self) -> Optional[str]:
        return self._get_meta(FINGERPRINT_KEY)

    def needs_refresh(self, fingerprint: str) -> bool:
        return self.fingerprint() != fingerprint

    # -- rebuild -----------------------------------------------------------

    def replace_all(self, records: Iterable[BookmarkRecord], fingerprint: str) -> int:
        """Swap the indexed record set for ``records`` in one immediate transaction.

        Readers see either the previous set or the new one. Tag rows whose
        bookmark is gone are removed in the same transaction. Returns the
        number of indexed records.
        """
        t0 = time.time()
        inserted = 0
        with self.write_transaction() as c:
            c.execute("DELETE FROM bookmarks")
            if self._fts_writable:
                c.execute("DELETE FROM bookmarks_fts")

            for r in records:
                c.execute(
                    "INSERT INTO bookmarks (id, name, url, date_added, folder_path) VALUES (?, ?, ?, ?, ?)",
                    (r.id, r.name, r.url, r.date_added, r.folder_path),
                )
                if self._fts_writable:
                    c.execute(
                        "INSERT INTO bookmarks_fts (bookmark_id, name, url, folder_path) VALUES (?, ?, ?, ?)",
                        (r.id, r.name, r.url, r.folder_path),
                    )
                inserted += 1

            if self._tags_writable:
                c.execute("DELETE FROM bookmark_tags WHERE bookmark_id NOT IN (SELECT id FROM bookmarks)")
                if c.rowcount:
                    log.debug("Removed %d orphaned tag rows.", c.rowcount)

            self._set_meta(c, FINGERPRINT_KEY, fingerprint)

        log.info("Indexed %d bookmarks in %d ms.", inserted, int((time.time() - t0) * 1000))
        return inserted

    def clear(self) -> None:
        with self.write_transaction() as c:
            c.execute("DELETE FROM bookmarks")
            if self._fts_writable:
                c.execute("DELETE FROM bookmarks_fts")
            c.execute("DELETE FROM meta WHERE key = ?", (FINGERPRINT_KEY,))

    # -- reads -------------------------------------------------------------

    def count(self) -> int:
        for row in self.query("SELECT COUNT(*) FROM bookmarks"):
            return int(row[0])
        return 0

    def load_all(self) -> List[BookmarkRecord]:
        return self._records(f"SELECT {_COLUMNS} FROM bookmarks b ORDER BY b.rowid")

    def list(self, limit: int) -> List[BookmarkRecord]:
        if limit <= 0:
            return []
        return self._records(f"SELECT {_COLUMNS} FROM bookmarks b ORDER BY b.rowid LIMIT ?", (int(limit),))

    def list_by_folder(self, folder_filters: Sequence[str], limit: int) -> List[BookmarkRecord]:
        """Records under all ``folder_filters``, in row order.

        The LIKE patterns narrow the scan; every candidate is then checked
        with the in-memory hierarchy matcher so both paths agree.
        """
        if limit <= 0:
            return []
        patterns = folder_like_patterns(folder_filters)
        if not patterns:
            return self.list(limit)

        where = " AND ".join([_FOLDER_LIKE] * len(patterns))
        rows = self.query(f"SELECT {_COLUMNS} FROM bookmarks b WHERE {where} ORDER BY b.rowid", patterns)
        return _take_matching(rows, normalize_folder_filters(folder_filters), limit)

    def list_by_tags(self, tags: Sequence[str], limit: int) -> List[BookmarkRecord]:
        wanted = normalize_tags(tags)
        if not wanted or limit <= 0 or not self.tagging:
            return []
        sub, params = all_tags_subquery(wanted)
        return self._records(
            f"SELECT {_COLUMNS} FROM bookmarks b WHERE b.id IN ({sub}) ORDER BY b.rowid LIMIT ?",
            params + [int(limit)],
        )

    def get_by_id_or_url(self, value: str) -> Optional[BookmarkRecord]:
        key = (value or "").strip()
        if not key:
            return None
        out = self._records(
            f"SELECT {_COLUMNS} FROM bookmarks b WHERE b.id = ? OR b.url = ? ORDER BY b.rowid LIMIT 1",
            (key, key),
        )
        return out[0] if out else None

    def search_text(
        self,
        query: str,
        limit: int,
        *,
        folders: Sequence[str] = (),
        tags: Sequence[str] = (),
    ) -> TextSearch:
        """Full-text lookup ordered by bm25 relevance.

        Returns ``TextSearch.unavailable()`` when the text index is off or the
        query has no searchable token, so callers can fall back to a scan.
        """
        if not self.fts_enabled:
            return TextSearch.unavailable()
        fts_query = build_fts_query(query)
        if fts_query is None:
            return TextSearch.unavailable()
        if limit <= 0:
            return TextSearch.of([])

        sql = [
            f"SELECT {_COLUMNS} FROM bookmarks_fts JOIN bookmarks b ON b.id = bookmarks_fts.bookmark_id",
            "WHERE bookmarks_fts MATCH ?",
        ]
        params: List[object] = [fts_query]

        patterns = folder_like_patterns(folders)
        for pattern in patterns:
            sql.append(f"AND {_FOLDER_LIKE}")
            params.append(pattern)

        wanted = normalize_tags(tags)
        if wanted:
            if not self.tagging:
                return TextSearch.of([])
            sub, sub_params = all_tags_subquery(wanted)
            sql.append(f"AND b.id IN ({sub})")
            params.extend(sub_params)

        sql.append("ORDER BY bm25(bookmarks_fts), b.rowid")
        if not patterns:
            sql.append("LIMIT ?")
            params.append(int(limit))
            return TextSearch.of(self._records(" ".join(sql), params))

        rows = self.query(" ".join(sql), params)
        return TextSearch.of(_take_matching(rows, normalize_folder_filters(folders), limit))

    # -- plumbing shared with TagStore -------------------------------------

    @contextmanager
    def write_transaction(self) -> Iterator[sqlite3.Cursor]:
        """Run the body inside ``BEGIN IMMEDIATE``; roll back fully on any error."""
        conn = self._conn()
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            raise StoreUnavailable(f"cannot start write transaction on {self.db_path}: {e}") from e
        try:
            yield conn.cursor()
        except sqlite3.Error as e:
            self._rollback(conn)
            raise StoreUnavailable(f"write transaction failed on {self.db_path}: {e}") from e
        except BaseException:
            self._rollback(conn)
            raise
        try:
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            self._rollback(conn)
            raise StoreUnavailable(f"commit failed on {self.db_path}: {e}") from e

    def query(self, sql: str, params: Sequence[object] = ()) -> Iterator[sqlite3.Row]:
        conn = self._conn()
        cur = None
        try:
            cur = conn.execute(sql, list(params))
            for row in cur:
                yield row
        except sqlite3.OperationalError as e:
            raise StoreUnavailable(f"read failed on {self.db_path}: {e}") from e
        except sqlite3.Error as e:
            raise BackendError(f"query failed on {self.db_path}: {e}") from e
        finally:
            if cur is not None:
                cur.close()

    # -- internals ---------------------------------------------------------

    def _setup_fts(self) -> None:
        conn = self._conn()
        if self.want_fts:
            try:
                conn.execute(_FTS_SCHEMA)
            except sqlite3.OperationalError as e:
                self.degraded = IndexDegraded(f"full-text index unavailable: {e}")
                log.warning("Full-text index disabled, falling back to scans: %s", e)
                return
            self.fts_enabled = True
            self._fts_writable = True
            self._resync_fts()
            return
        # Text search is off for this handle, but a projection created earlier
        # must still follow the bookmark rows so re-enabling it stays correct.
        if self._has_table("bookmarks_fts"):
            try:
                conn.execute("SELECT 1 FROM bookmarks_fts LIMIT 0").fetchall()
                self._fts_writable = True
            except sqlite3.OperationalError:
                self._fts_writable = False

    def _resync_fts(self) -> None:
        row = next(
            self.query("SELECT (SELECT COUNT(*) FROM bookmarks) - (SELECT COUNT(*) FROM bookmarks_fts)"),
            None,
        )
        if row is None or int(row[0]) == 0:
            return
        log.info("Full-text projection out of date; rebuilding it from %s.", self.db_path.name)
        with self.write_transaction() as c:
            c.execute("DELETE FROM bookmarks_fts")
            c.execute(
                "INSERT INTO bookmarks_fts (bookmark_id, name, url, folder_path) "
                "SELECT id, name, url, folder_path FROM bookmarks ORDER BY rowid"
            )

    def _records(self, sql: str, params: Sequence[object] = ()) -> List[BookmarkRecord]:
        return [_record_from_row(row) for row in self.query(sql, params)]

    def _get_meta(self, key: str) -> Optional[str]:
        for row in self.query("SELECT value FROM meta WHERE key = ?", (key,)):
            return str(row[0])
        return None

    def _set_meta(self, c: sqlite3.Cursor, key: str, value: str) -> None:
        c.execute(
            """
            INSERT INTO meta (key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """,
            (key, value),
        )

    def _has_table(self, name: str) -> bool:
        for _row in self.query("SELECT 1 FROM sqlite_master WHERE name = ? LIMIT 1", (name,)):
            return True
        return False

    def _rollback(self, conn: sqlite3.Connection) -> None:
        if not conn.in_transaction:
            return
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            log.warning("Rollback failed on %s: %s", self.db_path, e)

    def _conn(self) -> sqlite3.Connection:
        if self.conn is None:
            raise StoreUnavailable("index is not open")
        return self.conn


def build_fts_query(query: str) -> Optional[str]:
    """Turn free text into an FTS5 prefix query, or ``None`` if nothing is searchable.

    Each whitespace token keeps only alphanumerics and ``-``, ``_``, ``.``;
    survivors become quoted prefix terms (``"rust-lang"*``) that are ANDed.
    Tokens left without any alphanumeric character produce no index term
    and are dropped.
    """
    parts: List[str] = []
    for token in (query or "").split():
        cleaned = "".join(ch for ch in token if ch.isalnum() or ch in "-_.")
        if not any(ch.isalnum() for ch in cleaned):
            continue
        parts.append(f'"{cleaned}"*')
    if not parts:
        return None
    return " ".join(parts)


def _record_from_row(row: sqlite3.Row) -> BookmarkRecord:
    try:
        return BookmarkRecord(
            id=str(row["id"]),
            name=row["name"],
            url=row["url"],
            date_added=str(row["date_added"]),
            folder_path=row["folder_path"],
        )
    except (IndexError, KeyError, TypeError, AttributeError) as e:
        raise BackendError(f"cannot decode bookmark row: {e}") from e


def _take_matching(rows: Iterable[sqlite3.Row], filters: List[List[str]], limit: int) -> List[BookmarkRecord]:
    out: List[BookmarkRecord] = []
    for row in rows:
        record = _record_from_row(row)
        if not matches_folder_filters(record, filters):
            continue
        out.append(record)
        if len(out) >= limit:
            break
    return out


def _sql_lower(value):
    return value.lower() if isinstance(value, str) else value
