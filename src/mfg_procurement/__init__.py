"""Procurement-to-payment workflow engine for a manufacturing plant.

Importing the package configures the ``mfg_procurement`` logger once; every
module logs through the shared :data:`log` instance.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[2]
# An installed package has no project root of its own to write logs into.
LOG_DIR = Path(os.environ.get("MFG_PROCUREMENT_LOG_DIR", PROJECT_ROOT / ".logs"))
LOG_FILE = LOG_DIR / "mfg_procurement.log"


def _configure_logging() -> logging.Logger:
    """Attach the rotating file and stderr handlers to the package logger."""

    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    logger.setLevel(logging.INFO)
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=1_000_000,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    except OSError as exc:
        print(
            f"Warning: procurement log file unavailable at '{LOG_FILE}': {exc}",
            file=sys.stderr,
        )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.WARNING)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


log = _configure_logging()
log.debug("Logger initialized for the 'mfg_procurement' package.")
