"""Logging setup for the ledger server.

Every module logs through ``logging.getLogger(__name__)``; this module only
decides where records go. Output is duplicated to stdout and a log file, at
the level named by the LOG_LEVEL setting.
"""

import logging
import sys
from pathlib import Path

from chama.config import get_settings

LOG_FORMAT = "[%(asctime)s] %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Handlers installed here carry these names so a second setup replaces them
STDOUT_HANDLER = "chama.stdout"
FILE_HANDLER = "chama.file"

# Loggers that flood the output below WARNING
NOISY_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool")


def get_log_level(name: str | None = None) -> int:
    """Translate a level name into a logging constant.

    Args:
        name: Level name such as "debug"; the LOG_LEVEL setting when omitted

    Returns:
        Logging level constant, INFO for unknown names
    """
    if name is None:
        name = get_settings().log_level
    level = logging.getLevelName(name.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def setup_server_logging(log_file: str | None = None, level: str | None = None) -> None:
    """Send all records to stdout and ``log_file``.

    Args:
        log_file: Log file path; the LOG_FILE setting when omitted. Missing
            parent directories are created.
        level: Level name overriding the LOG_LEVEL setting
    """
    log_path = Path(log_file or get_settings().log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    log_level = get_log_level(level)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        if handler.get_name() in (STDOUT_HANDLER, FILE_HANDLER):
            root_logger.removeHandler(handler)
            handler.close()

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.set_name(STDOUT_HANDLER)
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.set_name(FILE_HANDLER)
    for handler in (stdout_handler, file_handler):
        handler.setLevel(log_level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    logging.getLogger(__name__).debug(
        "Logging to stdout and %s at %s", log_path, logging.getLevelName(log_level)
    )


__all__ = ["get_log_level", "setup_server_logging"]
