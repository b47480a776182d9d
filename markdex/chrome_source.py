from __future__ import annotations

import json
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .log import get_logger
from .model import BookmarkRecord

log = get_logger(__name__)

ROOT_LABELS = (
    ("bookmark_bar", "Bookmarks Bar"),
    ("other", "Other Bookmarks"),
    ("synced", "Synced Bookmarks"),
)


class BookmarkNode(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    node_type: str = Field("folder", alias="type")
    id: str = ""
    name: str = ""
    url: Optional[str] = None
    date_added: Optional[str] = None
    children: List["BookmarkNode"] = Field(default_factory=list)


class BookmarkRoots(BaseModel):
    model_config = ConfigDict(extra="ignore")

    bookmark_bar: BookmarkNode
    other: BookmarkNode
    synced: Optional[BookmarkNode] = None


class ChromeBookmarksFile(BaseModel):
    model_config = ConfigDict(extra="ignore")

    roots: BookmarkRoots


BookmarkNode.model_rebuild()


def parse_bookmarks_file(path: Path) -> List[BookmarkRecord]:
    """Flatten a Chromium ``Bookmarks`` JSON file into records, depth first."""
    text = Path(path).read_text(encoding="utf-8", errors="replace")
    try:
        data = ChromeBookmarksFile.model_validate(json.loads(text))
    except (json.JSONDecodeError, ValidationError) as e:
        raise ValueError(f"not a Chromium bookmarks file: {path}: {e}") from e

    out: List[BookmarkRecord] = []
    for attr, label in ROOT_LABELS:
        root = getattr(data.roots, attr)
        if root is None:
            continue
        for child in root.children:
            _walk(child, label, out)
    log.debug("Parsed %d bookmarks from %s", len(out), path)
    return out


def _walk(node: BookmarkNode, folder_path: str, out: List[BookmarkRecord]) -> None:
    if node.node_type == "url":
        if node.url and node.date_added is not None:
            out.append(
                BookmarkRecord(
                    id=node.id,
                    name=node.name,
                    url=node.url,
                    date_added=node.date_added,
                    folder_path=folder_path,
                )
            )
        return
    if node.node_type == "folder":
        sub_path = f"{folder_path}/{node.name}"
        for child in node.children:
            _walk(child, sub_path, out)


def compute_fingerprint(path: Path) -> str:
    """``<mtime_ns>-<size>-<canonical path>``; changes whenever the file is rewritten."""
    p = Path(path)
    st = p.stat()
    try:
        canonical = p.resolve(strict=True)
    except OSError:
        canonical = p
    return f"{st.st_mtime_ns}-{st.st_size}-{canonical}"
