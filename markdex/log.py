"""Logging for the CLI and library modules.

Library code only calls :func:`get_logger`. The CLI installs a single stderr
handler through :func:`setup_logging`; calling it again swaps that handler
instead of stacking another one, and leaves foreign handlers alone.
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass

from rich.console import Console
from rich.logging import RichHandler

PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
HANDLER_NAME = "markdex-stderr"


@dataclass(frozen=True)
class LogConfig:
    level: str = "WARNING"
    no_color: bool = False

    def numeric_level(self) -> int:
        # getLevelName maps known names (WARN included) to ints and echoes unknown ones back.
        value = logging.getLevelName((self.level or "").strip().upper())
        return value if isinstance(value, int) else logging.WARNING

    def use_color(self) -> bool:
        if self.no_color or os.getenv("NO_COLOR") is not None:
            return False
        return sys.stderr.isatty()


def setup_logging(cfg: LogConfig) -> logging.Handler:
    level = cfg.numeric_level()
    root = logging.getLogger()
    root.setLevel(level)
    for h in list(root.handlers):
        if h.get_name() == HANDLER_NAME:
            root.removeHandler(h)

    if cfg.use_color():
        handler: logging.Handler = RichHandler(
            console=Console(stderr=True),
            rich_tracebacks=True,
            show_time=False,
            show_path=False,
            markup=False,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT))

    handler.set_name(HANDLER_NAME)
    handler.setLevel(level)
    root.addHandler(handler)
    return handler


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
