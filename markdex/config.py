from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    return v.strip().lower() in ("1", "true", "yes", "y", "on")


def _env_str(name: str, default: str) -> str:
    v = os.getenv(name)
    return default if v is None else v


def _default_data_dir() -> str:
    base = os.getenv("XDG_CACHE_HOME") or str(Path.home() / ".cache")
    return str(Path(base) / "markdex")


@dataclass
class Settings:
    # Source
    bookmarks_path: str = ""

    # Index store
    data_dir: str = ""
    index_filename: str = "index.sqlite"
    busy_timeout_ms: int = 500
    enable_fts: bool = True
    index_check_ttl_ms: int = 5000

    # Search
    default_limit: int = 50
    fuzzy: bool = False

    # Logging / UX
    log_level: str = "WARNING"
    no_color: bool = False

    def __post_init__(self) -> None:
        if not self.data_dir:
            self.data_dir = _default_data_dir()

    def index_path(self) -> Path:
        return Path(self.data_dir).expanduser() / self.index_filename

    @staticmethod
    def from_env() -> "Settings":
        s = Settings()
        s.bookmarks_path = _env_str("MARKDEX_BOOKMARKS_PATH", s.bookmarks_path)

        s.data_dir = _env_str("MARKDEX_DATA_DIR", s.data_dir) or s.data_dir
        s.index_filename = _env_str("MARKDEX_INDEX_FILENAME", s.index_filename)
        s.busy_timeout_ms = _env_int("MARKDEX_BUSY_TIMEOUT_MS", s.busy_timeout_ms)
        s.enable_fts = _env_bool("MARKDEX_ENABLE_FTS", s.enable_fts)
        s.index_check_ttl_ms = _env_int("MARKDEX_INDEX_CHECK_TTL_MS", s.index_check_ttl_ms)

        s.default_limit = _env_int("MARKDEX_LIMIT", s.default_limit)
        s.fuzzy = _env_bool("MARKDEX_FUZZY", s.fuzzy)

        s.log_level = _env_str("MARKDEX_LOG_LEVEL", s.log_level)
        s.no_color = _env_bool("MARKDEX_NO_COLOR", s.no_color)
        return s

    @staticmethod
    def from_file(path: Path) -> "Settings":
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        s = Settings.from_env()
        for k, v in data.items():
            if hasattr(s, k):
                setattr(s, k, v)
        return s


def load_settings(config_path: Optional[str]) -> Settings:
    if config_path:
        return Settings.from_file(Path(config_path))
    return Settings.from_env()
