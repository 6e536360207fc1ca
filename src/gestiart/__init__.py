"""GestiArt sales core.

Importing the package configures the shared ``gestiart`` logger. The log
directory and level can be overridden through ``GESTIART_LOG_DIR`` and
``GESTIART_LOG_LEVEL`` so that scripts and test runs do not write into the
source tree.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = Path(os.environ.get("GESTIART_LOG_DIR", PROJECT_ROOT / ".logs"))
LOG_FILE = LOG_DIR / "gestiart.log"
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"


def _resolve_level(raw: str | None) -> int:
    """Map a level name such as ``"debug"`` to its ``logging`` constant."""

    if not raw:
        return logging.INFO
    level = logging.getLevelName(raw.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def _configure_logging() -> logging.Logger:
    """Attach a rotating file handler and a stderr handler to the package logger.

    The console only receives warnings and errors; the log file keeps the full
    audit trail of stock movements and sale mutations.
    """

    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    level = _resolve_level(os.environ.get("GESTIART_LOG_LEVEL"))
    logger.setLevel(level)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=1_000_000,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    except (OSError, PermissionError) as exc:
        print(
            f"Warning: unable to open log file '{LOG_FILE}': {exc}",
            file=sys.stderr,
        )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(max(level, logging.WARNING))
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


log = _configure_logging()
log.debug("Logger ready for the 'gestiart' package (level=%s)", logging.getLevelName(log.level))
