"""Scoring and bounded top-K selection over loaded bookmark records.

Two scoring modes exist and exactly one is used per query:

* exact: weighted substring containment on the lower-cased fields, summed
  across fields;
* fuzzy: a smart-case subsequence gate per field, scored with rapidfuzz's
  ``partial_ratio``, weighted (name x2, url x1, folder x0.5) and reduced
  with ``max``. A candidate whose best weighted score is 0 is dropped.

Results are ordered by score descending, then by position in the input
sequence, so identical input always yields identical output.
"""

from __future__ import annotations

import heapq
from dataclasses import dataclass
from functools import cmp_to_key
from typing import Callable, Generic, Iterable, List, Optional, Sequence, TypeVar

from rapidfuzz import fuzz

from .model import BookmarkRecord

T = TypeVar("T")

# Exact-mode weights.
NAME_CONTAINS = 200
NAME_EQUALS = 100
NAME_PREFIX = 50
URL_CONTAINS = 100
FOLDER_CONTAINS = 50


@dataclass
class RankedHit:
    record: BookmarkRecord
    score: int
    index: int


def compare_hits(a: RankedHit, b: RankedHit) -> int:
    """Negative when ``a`` ranks ahead of ``b``: higher score, then lower index."""
    if a.score != b.score:
        return -1 if a.score > b.score else 1
    if a.index != b.index:
        return -1 if a.index < b.index else 1
    return 0


class TopK(Generic[T]):
    """Keeps the ``k`` best items seen so far under ``compare``.

    ``compare(a, b)`` follows the ``cmp`` convention: negative when ``a``
    ranks ahead of ``b``. Each offer costs O(log k).
    """

    def __init__(self, k: int, compare: Callable[[T, T], int]):
        self.k = max(0, int(k))
        self._compare = compare
        # Reversed order so the heap root is the weakest kept item.
        self._heap_key = cmp_to_key(lambda a, b: compare(b, a))
        self._heap: list = []

    def __len__(self) -> int:
        return len(self._heap)

    def offer(self, item: T) -> bool:
        if self.k == 0:
            return False
        wrapped = self._heap_key(item)
        if len(self._heap) < self.k:
            heapq.heappush(self._heap, wrapped)
            return True
        weakest = self._heap[0].obj
        if self._compare(item, weakest) < 0:
            heapq.heapreplace(self._heap, wrapped)
            return True
        return False

    def extend(self, items: Iterable[T]) -> None:
        for item in items:
            self.offer(item)

    def results(self) -> List[T]:
        return sorted((w.obj for w in self._heap), key=cmp_to_key(self._compare))


def exact_score(record: BookmarkRecord, query_lower: str) -> int:
    score = 0
    if query_lower in record.name_lower:
        score += NAME_CONTAINS
        if record.name_lower == query_lower:
            score += NAME_EQUALS
        if record.name_lower.startswith(query_lower):
            score += NAME_PREFIX
    if query_lower in record.url_lower:
        score += URL_CONTAINS
    if record.folder_path_lower is not None and query_lower in record.folder_path_lower:
        score += FOLDER_CONTAINS
    return score


def fuzzy_match(choice: str, pattern: str) -> Optional[int]:
    """Score ``pattern`` against ``choice``; ``None`` unless it is a subsequence.

    Smart case: an all-lowercase pattern matches case-insensitively. The
    subsequence check decides membership; ``fuzz.partial_ratio`` over the
    best-aligned window decides the score (0..100), so contiguous hits
    outrank scattered ones.
    """
    if not pattern:
        return None
    case_sensitive = any(ch.isupper() for ch in pattern)
    text = choice if case_sensitive else choice.lower()
    pat = pattern if case_sensitive else pattern.lower()
    if len(pat) > len(text) or not _is_subsequence(pat, text):
        return None
    return int(round(fuzz.partial_ratio(pat, text)))


def _is_subsequence(pat: str, text: str) -> bool:
    pos = 0
    for ch in pat:
        pos = text.find(ch, pos)
        if pos < 0:
            return False
        pos += 1
    return True


def fuzzy_score(record: BookmarkRecord, query: str) -> Optional[int]:
    """Best weighted per-field fuzzy score, or ``None`` when no field matches."""
    best: Optional[int] = None
    s = fuzzy_match(record.name, query)
    if s is not None:
        best = s * 2
    s = fuzzy_match(record.url, query)
    if s is not None:
        best = s if best is None else max(best, s)
    if record.folder_path is not None:
        s = fuzzy_match(record.folder_path, query)
        if s is not None:
            best = s // 2 if best is None else max(best, s // 2)
    return best


def rank(
    records: Sequence[BookmarkRecord],
    query: str,
    *,
    fuzzy: bool = False,
    limit: int = 50,
    accept: Optional[Callable[[BookmarkRecord], bool]] = None,
) -> List[RankedHit]:
    """Rank ``records`` against ``query``.

    ``accept`` pre-filters candidates (tag or folder constraints); indexes
    always refer to positions in ``records`` so ties resolve by source order.
    An empty query skips scoring and returns accepted records in order.
    """
    if limit <= 0:
        return []

    if not query:
        out: List[RankedHit] = []
        for idx, record in enumerate(records):
            if accept is not None and not accept(record):
                continue
            out.append(RankedHit(record=record, score=0, index=idx))
            if len(out) >= limit:
                break
        return out

    query_lower = query.lower()
    top: TopK[RankedHit] = TopK(limit, compare_hits)
    for idx, record in enumerate(records):
        if accept is not None and not accept(record):
            continue
        if fuzzy:
            score = fuzzy_score(record, query)
            if score is None or score <= 0:
                continue
        else:
            score = exact_score(record, query_lower)
            if score <= 0:
                continue
        top.offer(RankedHit(record=record, score=score, index=idx))
    return top.results()
