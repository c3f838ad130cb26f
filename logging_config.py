import logging
import sys
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
    "NOTSET": logging.NOTSET,
}


def _resolve_level(log_level: Union[str, int, None]) -> int:
    if isinstance(log_level, int):
        return log_level
    if isinstance(log_level, str):
        name = log_level.strip().upper()
        if name.isdigit():
            return int(name)
        return _LEVELS.get(name, logging.INFO)
    return logging.INFO


def setup_logging(log_level: Union[str, int, None] = "INFO", log_file: Optional[str] = None) -> None:
    """Configure the root logger once: stdout handler plus an optional file handler.

    Calling it again only adjusts the level, so both the entrypoint and the
    app module can call it without duplicating output.
    """
    root = logging.getLogger()
    if not root.handlers:
        formatter = logging.Formatter(LOG_FORMAT)
        stream_handler = logging.StreamHandler(sys.stdout)
        stream_handler.setFormatter(formatter)
        root.addHandler(stream_handler)
        if log_file:
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)
        logging.captureWarnings(True)
    root.setLevel(_resolve_level(log_level))


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
