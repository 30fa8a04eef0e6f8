"""Logging configuration for the wftrig daemon process.

Two outputs exist side by side:
- Diagnostics go through stdlib logging, rendered on stderr by Rich.
- Trigger/action events go to the structured JSONL event log (see sink.py).

The diagnostic logger can additionally mirror everything to a plain text file,
which is useful when the daemon runs under a supervisor without a terminal.
"""

from __future__ import annotations

import logging
from typing import Literal

from rich.logging import RichHandler

Verbosity = Literal["debug", "info", "warning", "error"]

_LEVEL_MAP = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def setup_logging(
    verbosity: Verbosity = "info",
    log_to_file: bool = False,
    log_file_path: str | None = None,
) -> logging.Logger:
    """Configure logging for the daemon process.

    Args:
        verbosity: Console verbosity level (debug, info, warning, error)
        log_to_file: Whether to also log to a file (default: False)
        log_file_path: Path for file logging (if log_to_file=True)

    Returns:
        Configured root logger instance
    """
    log_level = _LEVEL_MAP.get(verbosity, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Avoid duplicate handlers when start is invoked twice in one process (tests)
    root_logger.handlers.clear()

    rich_handler = RichHandler(
        console=None,
        show_time=True,
        show_level=True,
        show_path=False,
        markup=True,
        rich_tracebacks=True,
        tracebacks_show_locals=False,
    )
    rich_handler.setLevel(log_level)
    rich_handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    root_logger.addHandler(rich_handler)

    if log_to_file and log_file_path:
        try:
            file_handler = logging.FileHandler(log_file_path, mode="a", encoding="utf-8")
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(
                logging.Formatter(
                    "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
                    datefmt="%Y-%m-%d %H:%M:%S",
                )
            )
            root_logger.addHandler(file_handler)
        except OSError as e:
            root_logger.warning(f"Failed to setup file logging: {e}")

    # watchdog is chatty at debug level
    logging.getLogger("watchdog").setLevel(max(log_level, logging.INFO))

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a named logger for a specific module.

    Args:
        name: Logger name (typically __name__ of the module)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def init_daemon_logging(verbosity: str = "info") -> None:
    """Initialize daemon logging with default settings. Call early in cli.py."""
    setup_logging(verbosity=verbosity)  # type: ignore[arg-type]
