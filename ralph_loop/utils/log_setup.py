"""Logging setup for the loop process."""

import logging
import sys
from pathlib import Path

LOG_FILE_NAME = "ralph.log"
LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(log_dir: str | Path, verbose: bool = False) -> Path:
    """Configure the root ``ralph_loop`` logger.

    Every record is appended to ``<log_dir>/ralph.log``. With ``verbose`` the
    same records are echoed to stdout.

    Args:
        log_dir: Directory holding the append-only log file
        verbose: Also echo log records to stdout

    Returns:
        Path of the log file
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)
    log_file = log_path / LOG_FILE_NAME

    package_logger = logging.getLogger("ralph_loop")
    package_logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    file_handler.setFormatter(formatter)
    package_logger.addHandler(file_handler)

    if verbose:
        stream_handler = logging.StreamHandler(sys.stdout)
        stream_handler.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
        package_logger.addHandler(stream_handler)

    package_logger.propagate = False
    return log_file
