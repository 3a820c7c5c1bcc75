"""Process-wide logging setup for the rotator CLI."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "info", log_dir: str | None = None) -> None:
    """Attach console and optional file handlers to the package logger.

    With ``log_dir`` set, everything goes to ``combined.log`` and errors are
    duplicated into ``error.log``.
    """
    logger = logging.getLogger("transcoder_rotator")
    logger.setLevel(level.upper())
    logger.handlers.clear()
    logger.propagate = False

    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_dir is None:
        return

    path = Path(log_dir)
    path.mkdir(parents=True, exist_ok=True)

    combined = logging.FileHandler(path / "combined.log")
    combined.setFormatter(formatter)
    logger.addHandler(combined)

    errors = logging.FileHandler(path / "error.log")
    errors.setLevel(logging.ERROR)
    errors.setFormatter(formatter)
    logger.addHandler(errors)
