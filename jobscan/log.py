"""Logging setup shared by every jobscan module.

Console output always goes to stdout. A per-day file under ``logs/`` is added
unless ``JOBSCAN_LOG_TO_FILE`` is off; ``JOBSCAN_LOG_DIR`` moves it.
"""
from __future__ import annotations

import logging
import os
import sys
from datetime import date
from pathlib import Path

LOG_FORMAT = "%(asctime)s  %(levelname)-8s  %(name)s  %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_default_dir = Path(__file__).resolve().parent.parent / "logs"
_ready = False


def _file_logging_enabled() -> bool:
    return os.environ.get("JOBSCAN_LOG_TO_FILE", "1").strip().lower() not in ("0", "false", "no")


def _install_handlers(root: logging.Logger, level: int) -> None:
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    stream = logging.StreamHandler(sys.stdout)
    stream.setLevel(level)
    stream.setFormatter(formatter)
    root.addHandler(stream)

    if not _file_logging_enabled():
        return
    target = Path(os.environ.get("JOBSCAN_LOG_DIR") or _default_dir)
    try:
        target.mkdir(parents=True, exist_ok=True)
        daily = logging.FileHandler(target / f"jobscan_{date.today():%Y-%m-%d}.log", encoding="utf-8")
    except OSError:
        root.warning("Cannot write log files under %s; console only", target)
        return
    daily.setLevel(logging.DEBUG)
    daily.setFormatter(formatter)
    root.addHandler(daily)


def get_logger(name: str) -> logging.Logger:
    """Named logger; the root handlers are installed on first use."""
    global _ready
    if not _ready:
        root = logging.getLogger()
        level = logging.getLevelName(os.environ.get("LOG_LEVEL", "INFO").upper())
        if not isinstance(level, int):
            level = logging.INFO
        root.setLevel(level)
        # Leave an embedding application's (or pytest's) handlers alone.
        if not root.handlers:
            _install_handlers(root, level)
        _ready = True
    return logging.getLogger(name)
