"""Hierarchical folder filters.

A filter such as ``"work/project"`` (or ``work > project``, ``work\\project``,
``work|project``) is normalised into lower-cased segments. Two matchers use
the same segments:

* :func:`matches_folder_filters` runs against loaded records and requires the
  filter segments to appear in order, each inside some folder segment at or
  after the previous hit.
* :func:`folder_filter_to_like_pattern` renders a ``LIKE`` pattern for the
  store. It only checks that the segments occur in order as substrings of
  the whole path, so it can accept paths the in-memory matcher rejects
  (``"work/project"`` vs. ``"Root/WorkProject"``). Treat it as a pre-filter.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence

from .model import BookmarkRecord

_SEPARATORS = ("\\", ">", "|")
LIKE_ESCAPE = "\\"


def normalize_folder_filter(raw: str) -> Optional[List[str]]:
    cleaned = (raw or "").strip().lower()
    for sep in _SEPARATORS:
        cleaned = cleaned.replace(sep, "/")
    segments = [s.strip() for s in cleaned.split("/")]
    segments = [s for s in segments if s]
    return segments or None


def normalize_folder_filters(raws: Iterable[str]) -> List[List[str]]:
    out: List[List[str]] = []
    for raw in raws or ():
        segments = normalize_folder_filter(raw)
        if segments:
            out.append(segments)
    return out


def folder_segments(folder_path_lower: Optional[str]) -> List[str]:
    if not folder_path_lower:
        return []
    return [s.strip() for s in folder_path_lower.split("/") if s.strip()]


def folder_matches_hierarchy(path_segments: Sequence[str], filter_segments: Sequence[str]) -> bool:
    if not filter_segments:
        return True

    if len(filter_segments) == 1:
        wanted = filter_segments[0]
        return any(wanted in segment for segment in path_segments)

    # Greedy left-to-right cursor; a later filter segment never re-uses an earlier path segment.
    cursor = 0
    for wanted in filter_segments:
        found = False
        while cursor < len(path_segments):
            hit = wanted in path_segments[cursor]
            cursor += 1
            if hit:
                found = True
                break
        if not found:
            return False
    return True


def matches_folder_filters(record: BookmarkRecord, filters: Sequence[Sequence[str]]) -> bool:
    """AND across all normalised ``filters``; no filters means no constraint."""
    if not filters:
        return True
    if record.folder_path_lower is None:
        return False
    segments = folder_segments(record.folder_path_lower)
    return all(folder_matches_hierarchy(segments, f) for f in filters)


def escape_like(text: str) -> str:
    return (
        text.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


def folder_filter_to_like_pattern(raw: str) -> Optional[str]:
    segments = normalize_folder_filter(raw)
    if not segments:
        return None
    return "%" + "%".join(escape_like(s) for s in segments) + "%"


def folder_like_patterns(raws: Iterable[str]) -> List[str]:
    out: List[str] = []
    for raw in raws or ():
        pattern = folder_filter_to_like_pattern(raw)
        if pattern:
            out.append(pattern)
    return out
