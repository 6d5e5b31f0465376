# metrocard/audit/logger.py
from __future__ import annotations
import logging
from logging.handlers import RotatingFileHandler
import os

from metrocard.utils.config import LOGS_DIR

DEFAULT_LEVEL = os.environ.get("METROCARD_LOG_LEVEL", "INFO").upper()
LOG_FILE = LOGS_DIR / "metrocard.log"

# the bot long-polls, so these log every request at INFO
_NOISY = ("httpx", "apscheduler", "telegram.ext")

CONSOLE_FORMAT = "[%(levelname)s] %(name)s: %(message)s"
FILE_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_INITIALIZED = False

def _resolve(level: str | int) -> int:
    if isinstance(level, int):
        return level
    return getattr(logging, str(level).upper(), logging.INFO)

def initialize_logging(level: str | int = DEFAULT_LEVEL, to_file: bool = True) -> None:
    """
    Console + rotating file (2 MB x 5) on the root logger.
    Idempotent: the bot, API and preflight all call it on startup.
    """
    global _INITIALIZED
    if _INITIALIZED:
        return

    root = logging.getLogger()
    root.setLevel(_resolve(level))

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    root.addHandler(console)

    if to_file:
        LOGS_DIR.mkdir(parents=True, exist_ok=True)
        fh = RotatingFileHandler(LOG_FILE, maxBytes=2_000_000, backupCount=5, encoding="utf-8")
        fh.setFormatter(logging.Formatter(FILE_FORMAT))
        root.addHandler(fh)

    for name in _NOISY:
        logging.getLogger(name).setLevel(max(root.level, logging.WARNING))
    _INITIALIZED = True

def get_logger(name: str) -> logging.Logger:
    if not _INITIALIZED:
        initialize_logging()
    return logging.getLogger(name)
