"""Logging setup: a dated append-only log file plus console output.

Every Info-or-higher event goes to ``{log_dir}/{prefix}-YYYYMMDD.log`` no
matter how verbose the console is. The console shows warnings and errors by
default, info with ``--verbose`` and everything with ``--debug``.
"""

from __future__ import annotations

import logging
import sys
from datetime import date
from pathlib import Path

PACKAGE_LOGGER = "archive_estimate"

LEVEL_LABELS = {
    logging.DEBUG: "Debug",
    logging.INFO: "Info",
    logging.WARNING: "Warning",
    logging.ERROR: "Error",
    logging.CRITICAL: "Error",
}


class LevelLabelFormatter(logging.Formatter):
    """Render levels as fixed-width Info/Warning/Error labels."""

    def format(self, record: logging.LogRecord) -> str:
        record.label = LEVEL_LABELS.get(record.levelno, record.levelname.title())
        return super().format(record)


def log_file_path(log_dir: Path, prefix: str, today: date | None = None) -> Path:
    today = today or date.today()
    return log_dir / f"{prefix}-{today:%Y%m%d}.log"


def configure_logging(
    log_dir: Path,
    prefix: str,
    verbose: bool = False,
    debug: bool = False,
    level: str = "INFO",
) -> Path:
    """Install file and console handlers on the package logger; returns the log file path."""
    log_dir.mkdir(parents=True, exist_ok=True)
    path = log_file_path(log_dir, prefix)

    logger = logging.getLogger(PACKAGE_LOGGER)
    reset_logging()
    logger.setLevel(logging.DEBUG)

    file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    file_handler.setLevel(min(getattr(logging, level.upper(), logging.INFO), logging.INFO))
    file_handler.setFormatter(
        LevelLabelFormatter("%(asctime)s  %(label)-7s  %(message)s", datefmt="%Y-%m-%d %H:%M:%S")
    )
    logger.addHandler(file_handler)

    console = logging.StreamHandler(sys.stderr)
    if debug:
        console.setLevel(logging.DEBUG)
    elif verbose:
        console.setLevel(logging.INFO)
    else:
        console.setLevel(logging.WARNING)
    console.setFormatter(LevelLabelFormatter("%(label)s: %(message)s"))
    logger.addHandler(console)
    return path


def reset_logging() -> None:
    """Close and remove handlers installed by configure_logging (primarily for testing)."""
    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in logger.handlers[:]:
        handler.close()
        logger.removeHandler(handler)
