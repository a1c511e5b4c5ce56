"""POS Ledger: double-entry bookkeeping and FIFO costing for a retail counter.

Importing the package sets up the shared ``pos_ledger`` logger. Every module
logs through ``from . import log`` so one rotating file collects the whole
audit narrative of a session.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

__version__ = "1.0.0"

LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_MAX_BYTES = 1_000_000
LOG_BACKUPS = 5

# POS_LEDGER_LOG_DIR moves the log file out of the checkout (e.g. on a till
# where the install directory is read-only).
LOG_DIR = Path(os.environ.get("POS_LEDGER_LOG_DIR") or Path(__file__).resolve().parents[2] / ".logs")
LOG_FILE = LOG_DIR / "pos_ledger.log"


def _file_handler(formatter: logging.Formatter) -> logging.Handler | None:
    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(LOG_FILE, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8")
    except OSError as exc:
        print(f"Warning: ledger log file '{LOG_FILE}' is unavailable ({exc}); logging to console only", file=sys.stderr)
        return None
    handler.setFormatter(formatter)
    return handler


def _build_logger() -> logging.Logger:
    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    level_name = os.environ.get("POS_LEDGER_LOG_LEVEL", "INFO").upper()
    logger.setLevel(getattr(logging, level_name, logging.INFO))
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    handler = _file_handler(formatter)
    if handler is not None:
        logger.addHandler(handler)

    # The till operator only sees problems; the file keeps the full trail.
    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.WARNING)
    console.setFormatter(formatter)
    logger.addHandler(console)
    return logger


log = _build_logger()
log.debug("pos_ledger %s logging to %s", __version__, LOG_FILE)
