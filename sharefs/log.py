"""Logging setup for applications embedding sharefs.

Library modules only create named loggers; applications call
:func:`configure_logging` once at start-up to route them somewhere.
"""

from __future__ import annotations

import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

LOG_FORMAT = "[%(asctime)s][%(levelname)s][%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(
    level: str = "INFO",
    file_path: str | Path | None = None,
    *,
    backup_count: int = 7,
) -> None:
    """Install console (and optionally daily-rotated file) handlers on the root logger.

    Existing root handlers are removed, so calling this again reconfigures
    logging rather than duplicating output.

    Args:
        level: Level name such as ``"DEBUG"`` or ``"info"``.
        file_path: Log file; rotated at midnight when given.
        backup_count: Number of rotated files to keep.

    Raises:
        ValueError: If ``level`` is not a known level name.

    """
    root_logger = logging.getLogger()

    level_value = logging.getLevelNamesMapping().get(level.upper())
    if level_value is None:
        message = f"Invalid logging level: {level}"
        raise ValueError(message)

    root_logger.setLevel(level_value)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(level_value)
    stream_handler.setFormatter(formatter)
    root_logger.addHandler(stream_handler)

    if not file_path or not str(file_path).strip():
        return

    try:
        file_path_obj = Path(file_path)
        file_path_obj.parent.mkdir(parents=True, exist_ok=True)
        file_handler = TimedRotatingFileHandler(
            filename=str(file_path_obj),
            when="midnight",
            interval=1,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.suffix = "%Y-%m-%d"
        file_handler.setLevel(level_value)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
    except OSError:
        root_logger.error(
            "File logging handler failed to initialize path=%s",
            file_path,
            exc_info=True,
        )
