from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class BookmarkRecord:
    id: str
    name: str
    url: str
    date_added: str = "0"
    folder_path: Optional[str] = None

    # Lower-cased projections, recomputed on every construction and never persisted.
    name_lower: str = field(init=False, repr=False, compare=False)
    url_lower: str = field(init=False, repr=False, compare=False)
    folder_path_lower: Optional[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.name_lower = self.name.lower()
        self.url_lower = self.url.lower()
        self.folder_path_lower = self.folder_path.lower() if self.folder_path is not None else None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "date_added": self.date_added,
            "folder_path": self.folder_path,
        }


@dataclass
class TextSearch:
    """Outcome of a text-index lookup.

    ``available`` is False when the text index cannot answer the query at all
    (feature missing, or no searchable token in the query). An available
    result with an empty ``records`` list means "searched, nothing matched".
    """

    available: bool
    records: List[BookmarkRecord] = field(default_factory=list)

    @classmethod
    def unavailable(cls) -> "TextSearch":
        return cls(available=False)

    @classmethod
    def of(cls, records: List[BookmarkRecord]) -> "TextSearch":
        return cls(available=True, records=list(records))
