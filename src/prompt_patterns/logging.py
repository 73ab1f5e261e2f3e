"""Logging configuration for prompt-patterns.

Provides centralized logging setup with file output to ~/prompt-patterns/logs/.
"""

import logging
import sys
from pathlib import Path

# Default log directory
DEFAULT_LOG_DIR = Path.home() / "prompt-patterns" / "logs"

LOGGER_PREFIX = "prompt_patterns"


def setup_logging(
    name: str,
    log_dir: Path | None = None,
    level: int = logging.INFO,
    console: bool = True,
) -> logging.Logger:
    """Configure logging for a prompt-patterns component.

    Handlers are attached to the package root logger so that every
    component logger (indexer, tracker, detector, store, ...) writes to
    ~/prompt-patterns/logs/<name>.log for the running process.

    Args:
        name: Process name (used for log filename)
        log_dir: Directory for log files (defaults to ~/prompt-patterns/logs/)
        level: Logging level (defaults to INFO)
        console: Whether to also log to console (defaults to True)

    Returns:
        Configured logger instance for the component
    """
    if log_dir is None:
        log_dir = DEFAULT_LOG_DIR

    log_dir.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger(LOGGER_PREFIX)
    root.setLevel(level)
    logger = get_logger(name)

    # Avoid adding duplicate handlers if already configured
    if root.handlers:
        return logger

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    file_handler = logging.FileHandler(log_dir / f"{name}.log", encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a prompt-patterns component.

    Args:
        name: Logger name (will be prefixed with 'prompt_patterns.')

    Returns:
        Logger instance
    """
    return logging.getLogger(f"{LOGGER_PREFIX}.{name}")
