import os
import sys
from pathlib import Path

import pytest

# Allow `import markdex` without installing the package.
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch, tmp_path):
    """Tests must never read the user's MARKDEX_* settings or cache directory."""
    for name in list(os.environ):
        if name.startswith("MARKDEX_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "xdg-cache"))


@pytest.fixture
def index(tmp_path: Path):
    from markdex.index_db import BookmarkIndex

    with BookmarkIndex(tmp_path / "index.sqlite") as idx:
        yield idx
