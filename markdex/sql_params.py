from __future__ import annotations

from typing import Iterable, List, Sequence, Tuple


def in_clause(column: str, values: Iterable[object]) -> Tuple[str, List[object]]:
    """Build ``column IN (?, ?, ...)`` with one bound parameter per value.

    ``column`` must be a trusted identifier; only ``values`` come from callers.
    An empty value list yields a predicate that matches nothing.
    """
    params = list(values)
    if not params:
        return "0 = 1", []
    placeholders = ", ".join(["?"] * len(params))
    return f"{column} IN ({placeholders})", params


def all_tags_subquery(tags: Sequence[str]) -> Tuple[str, List[object]]:
    """Subquery selecting bookmark ids that carry every tag in ``tags``.

    ``tags`` must already be deduplicated: the count of distinct matched
    tags is compared against its length.
    """
    pred, params = in_clause("tag", tags)
    sql = (
        "SELECT bookmark_id FROM bookmark_tags "
        f"WHERE {pred} "
        "GROUP BY bookmark_id "
        "HAVING COUNT(DISTINCT tag) = ?"
    )
    return sql, params + [len(tags)]
