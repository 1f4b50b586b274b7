# tcbuild/logging.py
# -*- coding: utf-8 -*-
"""
tcbuild logging

Features:
 - Console color formatter (stderr)
 - Optional plain file handler
 - Five-level verbosity scale (FATAL < ERROR < WARNING < NOTICE < DEBUG) plus TRACE
 - Per-module LoggerAdapter that injects 'tcbuild_module' into records
"""

from __future__ import annotations

import logging
import sys
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

NOTICE = 25
TRACE = 5
logging.addLevelName(NOTICE, "NOTICE")
logging.addLevelName(TRACE, "TRACE")

# index = verbosity
VERBOSITY_LEVELS = [logging.CRITICAL, logging.ERROR, logging.WARNING, NOTICE, logging.DEBUG, TRACE]
DEFAULT_VERBOSITY = 2

_LEVEL_NAMES = {
    "FATAL": logging.CRITICAL,
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "NOTICE": NOTICE,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
    "TRACE": TRACE,
}

DEFAULT_FORMAT = "[%(levelname)s] [%(tcbuild_module)s] %(message)s"
FILE_FORMAT = "%(asctime)s %(levelname)s [%(tcbuild_module)s] %(message)s"

_root = logging.getLogger("tcbuild")
_handlers: List[logging.Handler] = []
_lock = threading.RLock()


# ----------------------
# Color formatter
# ----------------------
class ColorFormatter(logging.Formatter):
    COLORS = {
        TRACE: "\033[90m",               # dark gray
        logging.DEBUG: "\033[37m",       # light gray
        logging.INFO: "\033[36m",        # cyan
        NOTICE: "\033[32m",              # green
        logging.WARNING: "\033[33m",     # yellow
        logging.ERROR: "\033[31m",       # red
        logging.CRITICAL: "\033[41;37m", # white on red
    }
    RESET = "\033[0m"

    def __init__(self, fmt: Optional[str] = None, datefmt: Optional[str] = None, color: bool = True):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.color = color

    def format(self, record):
        if not hasattr(record, "tcbuild_module"):
            record.tcbuild_module = record.name
        msg = super().format(record)
        if self.color:
            color = self.COLORS.get(record.levelno, "")
            return f"{color}{msg}{self.RESET}"
        return msg


class _ModuleFieldFilter(logging.Filter):
    def filter(self, record):
        if not hasattr(record, "tcbuild_module"):
            record.tcbuild_module = record.name
        return True


class TcbuildLoggerAdapter(logging.LoggerAdapter):
    """LoggerAdapter with notice() and trace() for the two extra levels."""

    def process(self, msg, kwargs):
        extra = dict(self.extra or {})
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs

    def notice(self, msg, *args, **kwargs):
        self.log(NOTICE, msg, *args, **kwargs)

    def trace(self, msg, *args, **kwargs):
        self.log(TRACE, msg, *args, **kwargs)


# ----------------------
# Level helpers
# ----------------------
def verbosity_to_level(verbosity: int) -> int:
    verbosity = max(0, min(int(verbosity), len(VERBOSITY_LEVELS) - 1))
    return VERBOSITY_LEVELS[verbosity]


def level_to_verbosity(level: Union[int, str]) -> int:
    if isinstance(level, str):
        level = parse_level(level)
    for idx, lvl in enumerate(VERBOSITY_LEVELS):
        if level >= lvl:
            return idx
    return len(VERBOSITY_LEVELS) - 1


def parse_level(name: Union[int, str, None], default: int = logging.WARNING) -> int:
    if name is None:
        return default
    if isinstance(name, int):
        return name
    return _LEVEL_NAMES.get(str(name).strip().upper(), default)


# ----------------------
# Configuration
# ----------------------
def configure(level: Union[int, str] = logging.WARNING, color: Optional[bool] = None,
              file: Optional[str] = None, file_level: Union[int, str] = logging.DEBUG,
              stream=None) -> logging.Logger:
    """(Re)configure the 'tcbuild' logger. Safe to call more than once."""
    with _lock:
        for h in list(_handlers):
            _root.removeHandler(h)
            h.close()
        _handlers.clear()

        level = parse_level(level)
        stream = stream or sys.stderr
        if color is None:
            color = hasattr(stream, "isatty") and stream.isatty()

        ch = logging.StreamHandler(stream)
        ch.setLevel(level)
        ch.setFormatter(ColorFormatter(DEFAULT_FORMAT, color=color))
        ch.addFilter(_ModuleFieldFilter())
        _root.addHandler(ch)
        _handlers.append(ch)

        if file:
            file_path = Path(file).expanduser()
            file_path.parent.mkdir(parents=True, exist_ok=True)
            fh = logging.FileHandler(str(file_path), encoding="utf-8")
            fh.setLevel(parse_level(file_level, logging.DEBUG))
            fh.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%H:%M:%S"))
            fh.addFilter(_ModuleFieldFilter())
            _root.addHandler(fh)
            _handlers.append(fh)

        _root.setLevel(min(h.level for h in _handlers))
        return _root


def configure_from(cfg: Dict[str, Any], verbosity: Optional[int] = None) -> logging.Logger:
    """Configure from the 'logging' section of the config; verbosity overrides its level."""
    level = verbosity_to_level(verbosity) if verbosity is not None else parse_level(cfg.get("level"))
    return configure(level=level, color=cfg.get("color"), file=cfg.get("file"))


def get_logger(module: str) -> TcbuildLoggerAdapter:
    """Return a LoggerAdapter that injects 'tcbuild_module' into records."""
    return TcbuildLoggerAdapter(logging.getLogger(f"tcbuild.{module}"), {"tcbuild_module": module})
