from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

from .folder_filter import matches_folder_filters, normalize_folder_filters
from .index_db import BookmarkIndex
from .log import get_logger
from .model import BookmarkRecord
from .ranking import rank
from .tag_store import TagStore, normalize_tags

log = get_logger(__name__)


class BookmarkSearcher:
    """Answers bookmark queries against one open :class:`BookmarkIndex`."""

    def __init__(self, index: BookmarkIndex, tags: Optional[TagStore] = None):
        self.index = index
        if tags is None and index.tagging:
            tags = TagStore(index)
        self.tags = tags

    def search(
        self,
        query: str,
        *,
        tags: Sequence[str] = (),
        folders: Sequence[str] = (),
        fuzzy: bool = False,
        limit: int = 50,
    ) -> List[BookmarkRecord]:
        """Scan all indexed records and rank them in memory."""
        if limit <= 0:
            return []

        wanted_tags = normalize_tags(tags)
        tagged_ids = None
        if wanted_tags:
            if self.tags is None:
                return []
            tagged_ids = set(self.tags.find_by_tags(wanted_tags))
            if not tagged_ids:
                return []

        filters = normalize_folder_filters(folders)

        def accept(record: BookmarkRecord) -> bool:
            if tagged_ids is not None and record.id not in tagged_ids:
                return False
            return matches_folder_filters(record, filters)

        records = self.index.load_all()
        hits = rank(records, (query or "").strip(), fuzzy=fuzzy, limit=limit, accept=accept)
        return [h.record for h in hits]

    def lookup(
        self,
        query: str,
        *,
        tags: Sequence[str] = (),
        folders: Sequence[str] = (),
        fuzzy: bool = False,
        limit: int = 50,
    ) -> List[BookmarkRecord]:
        """Pick the cheapest path for the request.

        Fuzzy queries always scan. Empty queries list in row order. Other
        queries go through the text index and fall back to the exact scan
        when it cannot answer.
        """
        if limit <= 0:
            return []
        q = (query or "").strip()

        if fuzzy:
            return self.search(q, tags=tags, folders=folders, fuzzy=True, limit=limit)

        if not q:
            if normalize_tags(tags):
                return self.search("", tags=tags, folders=folders, limit=limit)
            return self.index.list_by_folder(folders, limit)

        result = self.index.search_text(q, limit, folders=folders, tags=tags)
        if result.available:
            return result.records
        log.debug("Text index cannot answer %r; scanning.", q)
        return self.search(q, tags=tags, folders=folders, fuzzy=False, limit=limit)

    def tag_suggestions(self, prefix: str = "") -> List[Tuple[str, int]]:
        if self.tags is None:
            return []
        needle = (prefix or "").strip().lower()
        out = [(tag, n) for tag, n in self.tags.all_tags().items() if needle in tag.lower()]
        out.sort(key=lambda x: (-x[1], x[0]))
        return out
