from __future__ import annotations

import logging
import sys
from typing import Optional, Union

_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: Union[int, str] = logging.INFO, log_file: Optional[str] = None) -> logging.Logger:
    """Configure the ``murverse`` namespace logger.

    Handlers are replaced rather than appended so repeated imports (test
    clients, reloads) do not duplicate lines. Records still propagate to the
    root logger.
    """
    if isinstance(level, str):
        resolved = logging.getLevelName(level.strip().upper() or "INFO")
        level = resolved if isinstance(resolved, int) else logging.INFO

    logger = logging.getLogger("murverse")
    logger.setLevel(level)
    if logger.handlers:
        logger.handlers.clear()

    formatter = logging.Formatter(_FORMAT, datefmt="%H:%M:%S")
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger
