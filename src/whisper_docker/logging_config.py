"""
Logging configuration for the Whisper Docker provider CLI.

Library code only ever uses ``logging.getLogger(__name__)``; handlers are
installed here, by the command-line entry point.
"""

import logging
import sys
from pathlib import Path

from whisper_docker.config import get_config_dir

LOG_FILENAME = "whisper-docker.log"


def get_log_file() -> Path:
    """Get platform-specific log file path."""
    return get_config_dir() / LOG_FILENAME


def setup_logging(
    verbose: bool = False,
    component: str = "whisper-docker",
    log_to_file: bool = True,
) -> logging.Logger:
    """
    Set up logging with console and file handlers.

    Args:
        verbose: Enable debug logging on the console and for aiohttp
        component: Component name shown in log records
        log_to_file: Also write DEBUG records to the log file

    Returns:
        Logger instance for the component
    """
    level = logging.DEBUG if verbose else logging.INFO

    verbose_formatter = logging.Formatter(
        f"%(asctime)s - [{component}] %(name)s - %(levelname)s - "
        f"[%(filename)s:%(lineno)d] - %(message)s"
    )
    console_formatter = logging.Formatter(
        f"%(asctime)s - [{component}] %(name)s - %(levelname)s - %(message)s"
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if log_to_file else level)

    has_file_handler = any(
        isinstance(h, logging.FileHandler) for h in root_logger.handlers
    )

    # Console goes to stderr; stdout carries the JSON output
    has_console_handler = any(
        type(h) is logging.StreamHandler and h.stream is sys.stderr
        for h in root_logger.handlers
    )
    if not has_console_handler:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(console_formatter)
        root_logger.addHandler(console_handler)

    if log_to_file and not has_file_handler:
        try:
            log_file = get_log_file()
            file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(verbose_formatter)
            root_logger.addHandler(file_handler)
        except OSError as e:
            print(f"Warning: Could not set up file logging: {e}", file=sys.stderr)

    if verbose:
        logging.getLogger("aiohttp").setLevel(logging.DEBUG)
        logging.getLogger("aiohttp.client").setLevel(logging.DEBUG)
        logging.getLogger(component).debug("Verbose logging enabled")
    else:
        logging.getLogger("aiohttp").setLevel(logging.WARNING)

    return logging.getLogger(component)
