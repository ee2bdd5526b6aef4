# Copyright (c) 2025.
# This file is part of ExprFactor, released under the MIT License.
"""Logger factory shared by every ExprFactor module."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

ROOT_LOGGER_NAME = "exprfactor"

CONSOLE_FORMAT = "%(levelname)s: %(message)s"
FILE_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"


def get_logger(name: str) -> logging.Logger:
    """
    Return a logger with the given name.

    Library modules call ``get_logger(__name__)``; handlers live on the
    package root logger so child loggers only propagate.
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)

    if not root.handlers:  # avoid duplicate handlers on reload
        root.setLevel(logging.WARNING)

        ch = logging.StreamHandler()
        ch.setLevel(logging.DEBUG)
        ch.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        root.addHandler(ch)

    return logging.getLogger(name)


def configure_logging(
    level: Union[int, str] = logging.INFO,
    log_file: Optional[Union[str, Path]] = None,
) -> logging.Logger:
    """
    Set the package log level and optionally mirror everything to a file.

    The console keeps the short format; the file gets timestamps and the
    logger name.
    """
    root = get_logger(ROOT_LOGGER_NAME)
    root.setLevel(level)

    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)

        existing = {
            getattr(h, "baseFilename", None)
            for h in root.handlers
            if isinstance(h, logging.FileHandler)
        }
        if str(path.resolve()) not in existing:
            fh = logging.FileHandler(path)
            fh.setLevel(logging.DEBUG)
            fh.setFormatter(logging.Formatter(FILE_FORMAT))
            root.addHandler(fh)

    return root
