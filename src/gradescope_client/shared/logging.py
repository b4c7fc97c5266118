"""
Logging Module - Handlers for scrape runs.
==========================================

All log output goes to stderr so tables and snapshot JSON on stdout stay
clean. Handlers are installed once per process from a ``LoggingConfig``;
the CLI installs them again with ``force`` once ``--verbose`` is known.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

from gradescope_client.shared.config import LoggingConfig, get_settings

# Loggers that report every connection at DEBUG
QUIET_LOGGERS = ("urllib3", "requests", "charset_normalizer")

_stderr = Console(stderr=True)
_configured = False


def _level_number(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def _console_handler(config: LoggingConfig) -> logging.Handler:
    if config.rich_console:
        handler: logging.Handler = RichHandler(
            console=_stderr,
            show_path=False,
            rich_tracebacks=True,
            markup=False,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(config.format))
    return handler


def _file_handler(config: LoggingConfig) -> logging.Handler:
    path = Path(config.file)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter(config.format))
    return handler


def setup_logging(
    config: Optional[LoggingConfig] = None,
    level: Optional[str] = None,
    force: bool = False,
) -> None:
    """
    Install the root handlers for a scrape run.

    Args:
        config: Handler settings (built-in defaults when omitted)
        level: Level name that replaces ``config.level``
        force: Replace the handlers of an earlier call instead of keeping them
    """
    global _configured

    if _configured and not force:
        return

    config = config or LoggingConfig()
    numeric_level = _level_number(level or config.level)

    root = logging.getLogger()
    for handler in root.handlers:
        if isinstance(handler, logging.FileHandler):
            handler.close()
    root.handlers.clear()
    root.setLevel(numeric_level)

    root.addHandler(_console_handler(config))
    if config.file:
        root.addHandler(_file_handler(config))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    _configured = True
    logging.getLogger(__name__).debug(
        f"Logging to stderr at {logging.getLevelName(numeric_level)}"
        + (f" and to {config.file}" if config.file else "")
    )


def setup_logging_from_settings(level: Optional[str] = None, force: bool = False) -> None:
    """Install handlers from the ``logging`` section of the settings; ``level`` wins over it."""
    settings = get_settings()
    setup_logging(settings.logging, level=level or settings.get_effective_log_level(), force=force)


def get_logger(name: str) -> logging.Logger:
    """
    Get a named logger, installing default handlers on first use.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("Listing started")
    """
    if not _configured:
        setup_logging()
    return logging.getLogger(name)
