"""
Centralized logging configuration for Incident Commander.

Provides a single place to configure console and rotating-file handlers so
that the CLI and embedding services do not call basicConfig() repeatedly.

Functions:
    setup_logging: Configure root handlers and formatters.
    get_logger: Get a logger, configuring defaults on first use.
    configure_cli_logging: Map CLI verbosity flags to a level.

Example:
    >>> from incident_commander.logging_config import setup_logging
    >>> setup_logging(level='DEBUG', log_file='incident-commander.log')
"""
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional, Union

from .logging_context import JSONFormatter

_LOGGING_CONFIGURED = False


def setup_logging(
    level: str = 'INFO',
    log_file: Optional[Union[str, Path]] = None,
    log_format: Optional[str] = None,
    include_timestamp: bool = True,
    use_json: bool = False,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5
) -> None:
    """
    Configure logging for Incident Commander.

    Sets up console and optional file logging with consistent formatting.
    Calling it again only updates the root level.

    Args:
        level: Log level ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')
        log_file: Optional path to log file. Enables rotation when given.
        log_format: Custom log format string. If None, uses default format.
        include_timestamp: Whether to include timestamps in log messages.
        use_json: Emit one JSON object per record, including incident_id.
        max_bytes: Maximum size of log file before rotation (default 10MB).
        backup_count: Number of backup log files to keep (default 5).
    """
    global _LOGGING_CONFIGURED

    if _LOGGING_CONFIGURED:
        root_logger = logging.getLogger()
        root_logger.setLevel(getattr(logging, level.upper()))
        return

    if log_format is None:
        if include_timestamp:
            log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        else:
            log_format = '%(name)s - %(levelname)s - %(message)s'

    formatter: logging.Formatter
    if use_json:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(log_format)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=max_bytes,
            backupCount=backup_count
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

        root_logger.info(f"Logging to file: {log_path}")

    _LOGGING_CONFIGURED = True

    root_logger.debug(f"Logging configured at {level} level")


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the given name.

    If logging hasn't been configured yet, this sets up basic logging at
    INFO level.
    """
    if not _LOGGING_CONFIGURED:
        setup_logging(level='INFO')

    return logging.getLogger(name)


def reset_logging_config() -> None:
    """Reset logging configuration. Used by tests."""
    global _LOGGING_CONFIGURED

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    _LOGGING_CONFIGURED = False


def configure_cli_logging(
    verbose: bool = False,
    quiet: bool = False,
    log_file: Optional[str] = None,
    use_json: bool = False,
) -> None:
    """
    Configure logging for CLI usage.

    Args:
        verbose: Enable DEBUG level logging
        quiet: Only show WARNING and above
        log_file: Optional rotating log file
        use_json: Structured JSON output
    """
    if quiet:
        level = 'WARNING'
    elif verbose:
        level = 'DEBUG'
    else:
        level = 'INFO'

    setup_logging(
        level=level,
        log_file=log_file,
        include_timestamp=verbose,
        use_json=use_json,
    )
