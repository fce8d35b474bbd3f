"""Logging utilities for docsite commands."""

from __future__ import annotations

import logging
from pathlib import Path

_LOGGER_NAME = "docsite"
_SERVER_LOGGER_NAME = "uvicorn"
_CONSOLE_FORMAT = "[docsite] %(levelname)s %(message)s"
_DEV_CONSOLE_FORMAT = "[docsite %(asctime)s] %(levelname)s %(message)s"


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a module-scoped logger under the docsite hierarchy."""
    full_name = f"{_LOGGER_NAME}.{name}" if name else _LOGGER_NAME
    return logging.getLogger(full_name)


def configure_logging(
    *, verbose: bool = False, log_file: Path | None = None, dev: bool = False
) -> logging.Logger:
    """Configure the docsite logger with console output and optional file sink.

    With ``dev`` set, console lines carry the wall-clock time so successive
    rebuilds can be told apart, and the snapshot server's ``uvicorn`` loggers
    write through the same handlers instead of their own.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False
    _reset_handlers(logger)

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(level)
    stream_handler.setFormatter(
        logging.Formatter(_DEV_CONSOLE_FORMAT if dev else _CONSOLE_FORMAT, datefmt="%H:%M:%S")
    )
    logger.addHandler(stream_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        logger.addHandler(file_handler)

    if dev:
        server_logger = logging.getLogger(_SERVER_LOGGER_NAME)
        _reset_handlers(server_logger)
        server_logger.propagate = False
        for handler in logger.handlers:
            server_logger.addHandler(handler)

    return logger


def _reset_handlers(logger: logging.Logger) -> None:
    # The CLI may configure logging more than once per process.
    for handler in list(logger.handlers):
        logger.removeHandler(handler)


__all__ = ["configure_logging", "get_logger"]
