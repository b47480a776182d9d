from __future__ import annotations

from typing import TYPE_CHECKING, Dict, Iterable, List

from .log import get_logger
from .sql_params import all_tags_subquery, in_clause

if TYPE_CHECKING:
    from .index_db import BookmarkIndex

log = get_logger(__name__)


def normalize_tags(tags: Iterable[str]) -> List[str]:
    """Trim, drop blanks and deduplicate (case-sensitive), keeping first-seen order."""
    out: List[str] = []
    seen = set()
    for t in tags or ():
        tag = (t or "").strip()
        if not tag or tag in seen:
            continue
        seen.add(tag)
        out.append(tag)
    return out


class TagStore:
    """Bookmark <-> tag associations stored next to the bookmark rows.

    Tags keep their trimmed input casing. Associations survive reindexing
    unless their bookmark disappears from the new record set.
    """

    def __init__(self, index: "BookmarkIndex"):
        if not index.tagging:
            raise ValueError("tagging is disabled for this index")
        self.index = index

    def add_tags(self, bookmark_id: str, tags: Iterable[str]) -> int:
        wanted = normalize_tags(tags)
        if not wanted:
            return 0
        inserted = 0
        with self.index.write_transaction() as c:
            for tag in wanted:
                c.execute(
                    "INSERT OR IGNORE INTO bookmark_tags (bookmark_id, tag) VALUES (?, ?)",
                    (bookmark_id, tag),
                )
                inserted += c.rowcount
        return inserted

    def remove_tag(self, bookmark_id: str, tag: str) -> None:
        name = (tag or "").strip()
        if not name:
            return
        with self.index.write_transaction() as c:
            c.execute("DELETE FROM bookmark_tags WHERE bookmark_id = ? AND tag = ?", (bookmark_id, name))

    def remove_all_tags(self, bookmark_id: str) -> int:
        with self.index.write_transaction() as c:
            c.execute("DELETE FROM bookmark_tags WHERE bookmark_id = ?", (bookmark_id,))
            return c.rowcount

    def get_tags(self, bookmark_id: str) -> List[str]:
        rows = self.index.query("SELECT tag FROM bookmark_tags WHERE bookmark_id = ? ORDER BY tag", (bookmark_id,))
        return [str(r["tag"]) for r in rows]

    def tags_for(self, bookmark_ids: Iterable[str]) -> Dict[str, List[str]]:
        ids = list(dict.fromkeys(i for i in bookmark_ids if i))
        if not ids:
            return {}
        pred, params = in_clause("bookmark_id", ids)
        out: Dict[str, List[str]] = {}
        rows = self.index.query(
            f"SELECT bookmark_id, tag FROM bookmark_tags WHERE {pred} ORDER BY bookmark_id, tag",
            params,
        )
        for r in rows:
            out.setdefault(str(r["bookmark_id"]), []).append(str(r["tag"]))
        return out

    def find_by_tags(self, tags: Iterable[str]) -> List[str]:
        """Ids carrying every distinct tag requested (AND)."""
        wanted = normalize_tags(tags)
        if not wanted:
            return []
        sql, params = all_tags_subquery(wanted)
        return [str(r["bookmark_id"]) for r in self.index.query(sql + " ORDER BY bookmark_id", params)]

    def find_by_any_tag(self, tags: Iterable[str]) -> List[str]:
        wanted = normalize_tags(tags)
        if not wanted:
            return []
        pred, params = in_clause("tag", wanted)
        rows = self.index.query(
            f"SELECT DISTINCT bookmark_id FROM bookmark_tags WHERE {pred} ORDER BY bookmark_id",
            params,
        )
        return [str(r["bookmark_id"]) for r in rows]

    def rename(self, old_tag: str, new_tag: str) -> int:
        """Rename ``old_tag`` to ``new_tag`` everywhere.

        A bookmark that already carries ``new_tag`` keeps that association and
        loses ``old_tag``. Returns how many bookmarks were moved or merged.
        """
        old = (old_tag or "").strip()
        new = (new_tag or "").strip()
        if not old or not new or old == new:
            return 0
        with self.index.write_transaction() as c:
            c.execute(
                """
                DELETE FROM bookmark_tags
                WHERE tag = ?
                  AND bookmark_id IN (SELECT bookmark_id FROM bookmark_tags WHERE tag = ?)
                """,
                (old, new),
            )
            merged = c.rowcount
            c.execute("UPDATE bookmark_tags SET tag = ? WHERE tag = ?", (new, old))
            updated = c.rowcount
        if merged:
            log.debug("Tag rename %r -> %r merged %d existing associations.", old, new, merged)
        return merged + updated

    def all_tags(self) -> Dict[str, int]:
        """Tag -> usage count, ordered by count desc then tag asc."""
        rows = self.index.query(
            "SELECT tag, COUNT(*) AS n FROM bookmark_tags GROUP BY tag ORDER BY n DESC, tag"
        )
        return {str(r["tag"]): int(r["n"]) for r in rows}

    def tag_count(self) -> int:
        for r in self.index.query("SELECT COUNT(DISTINCT tag) FROM bookmark_tags"):
            return int(r[0])
        return 0

    def tagged_bookmark_count(self) -> int:
        for r in self.index.query("SELECT COUNT(DISTINCT bookmark_id) FROM bookmark_tags"):
            return int(r[0])
        return 0
