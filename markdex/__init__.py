"""markdex: local bookmark index with tags, folder filters and ranked search."""

from importlib import metadata
from pathlib import Path


def _read_version() -> str:
    p = Path(__file__).resolve().parents[1] / "VERSION"
    try:
        return p.read_text(encoding="utf-8").strip()
    except OSError:
        # Installed without the source tree; the wheel metadata carries the same VERSION.
        try:
            return metadata.version("markdex")
        except metadata.PackageNotFoundError:
            return "0+unknown"


__version__ = _read_version()
