from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    STORE_UNAVAILABLE = "store_unavailable"
    INDEX_DEGRADED = "index_degraded"
    BACKEND = "backend"


class MarkdexError(Exception):
    kind: ErrorKind = ErrorKind.BACKEND

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class StoreUnavailable(MarkdexError):
    """Opening the index or running a write transaction failed (lock wait exceeded, I/O)."""

    kind = ErrorKind.STORE_UNAVAILABLE


class IndexDegraded(MarkdexError):
    """The full-text index could not be created; text search answers "unavailable".

    Not raised to callers: the store keeps an instance on ``BookmarkIndex.degraded``.
    """

    kind = ErrorKind.INDEX_DEGRADED


class BackendError(MarkdexError):
    kind = ErrorKind.BACKEND
