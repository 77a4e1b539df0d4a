# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.
"""Logger setup shared by fuse-abort commands."""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional, Tuple

DEFAULT_FORMATTER = logging.Formatter(
    "[%(asctime)s] - [%(levelname)s] - [%(name)s] - %(message)s"
)


def init_logger(
    logger_name: str,
    log_dir: Optional[str] = None,
    log_name: Optional[str] = None,
    log_formatter: Optional[logging.Formatter] = DEFAULT_FORMATTER,
    log_level: int = logging.INFO,
    max_bytes: int = 1024 * 1024,
    backup_count: int = 2,
) -> Tuple[logging.Logger, logging.Handler]:
    """Set up logging for a command.

    Logs are stored at {log_dir}/{log_name} when `log_dir` is given, otherwise they
    are written to stderr. Standard output is left to the command's status lines.
    """
    logger = logging.getLogger(logger_name)
    logger.setLevel(log_level)

    handler: logging.Handler
    if log_dir is not None:
        file_path = os.path.join(log_dir, log_name or logger_name + ".log")
        os.makedirs(os.path.dirname(file_path), exist_ok=True)
        handler = RotatingFileHandler(
            file_path, mode="a", maxBytes=max_bytes, backupCount=backup_count
        )
    else:
        handler = logging.StreamHandler(sys.stderr)

    if log_formatter:
        handler.setFormatter(log_formatter)
    logger.addHandler(handler)

    return logger, handler
