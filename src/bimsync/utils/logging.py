"""
Logging configuration for bimsync.

Console output goes through Rich (or a plain stream handler when
console_type is "plain"); file output uses a parseable format.
"""

import logging
import re
import sys
import threading
from pathlib import Path
from typing import Any

from rich.logging import RichHandler


MASK = "********"

# "Bearer <token>" headers and token=... / "token": "..." pairs
SECRET_PATTERNS = (
    re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]+", re.IGNORECASE),
    re.compile(r"""((?:access_token|token)["']?\s*[=:]\s*["']?)([^"'\s,&}]+)""", re.IGNORECASE),
)


def mask_secrets(text: str) -> str:
    """Mask bearer tokens and token-valued pairs in ``text``."""
    if not text:
        return text
    for pattern in SECRET_PATTERNS:
        text = pattern.sub(lambda m: m.group(1) + MASK, text)
    return text


class CredentialFilter(logging.Filter):
    """Masks credentials in the rendered message before any handler sees it."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = mask_secrets(message)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


class FileFormatter(logging.Formatter):
    """Formatter for file logs - clean and parseable."""

    def __init__(self) -> None:
        super().__init__(fmt="%(asctime)s [%(levelname)-8s] %(name)s: %(message)s", datefmt="%Y-%m-%d %H:%M:%S")


LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def _parse_level(level: str | int) -> int:
    """
    Parse logging level from string or int.

    Unknown names fall back to INFO.
    """
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        level_upper = level.upper()
        if level_upper in LEVEL_MAP:
            return LEVEL_MAP[level_upper]
    return logging.INFO


def setup_logging(
    level: str | int = logging.INFO,
    log_file: str | Path | None = None,
    format_string: str | None = None,
    file_mode: str = "a",
    console: Any | None = None,
    console_enabled: bool = True,
    use_rich: bool = True,
) -> logging.Logger:
    """
    Setup logging configuration for bimsync.

    Args:
        level: Logging level as string (DEBUG, INFO, etc.) or int (default: INFO)
        log_file: Optional file path to write logs to (default: None, console only)
        format_string: Optional custom format string for the plain console handler
        file_mode: File mode for file handler - 'a' for append, 'w' for overwrite (default: 'a')
        console: Optional Rich Console instance to log through
        console_enabled: Whether to enable console logging (default: True)
        use_rich: Whether to use RichHandler for console output (default: True)

    Returns:
        Logger instance
    """
    logger = logging.getLogger("bimsync")

    # Only clear handlers from this specific logger, not root or child loggers
    logger.handlers.clear()
    credential_filter = CredentialFilter()

    level_int = _parse_level(level)
    logger.setLevel(level_int)

    if console_enabled:
        if use_rich:
            handler_kwargs: dict[str, Any] = {
                "level": level_int,
                "show_time": True,
                "show_path": False,
                "markup": False,
                "rich_tracebacks": True,
                "log_time_format": "[%X]",
            }
            if console is not None:
                handler_kwargs["console"] = console
            rich_handler = RichHandler(**handler_kwargs)
            rich_handler.addFilter(credential_filter)
            logger.addHandler(rich_handler)
        else:
            formatter = logging.Formatter(
                format_string or "%(levelname)s: %(asctime)s - %(name)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setLevel(level_int)
            console_handler.setFormatter(formatter)
            console_handler.addFilter(credential_filter)
            logger.addHandler(console_handler)

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file, mode=file_mode)
        # File captures everything the logger lets through
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(FileFormatter())
        file_handler.addFilter(credential_filter)
        logger.addHandler(file_handler)

    return logger


def setup_logging_from_config(config: dict[str, Any], project_dir: Path | None = None) -> logging.Logger:
    """
    Setup logging from the 'logging' section of bimsync configuration.

    Recognised keys: level, file, file_mode, format, console_enabled,
    console_type ("rich" or "plain").
    """
    logging_config = config.get("logging") or {}

    level = logging_config.get("level", logging.INFO)
    file_mode = logging_config.get("file_mode", "a")
    format_string = logging_config.get("format")
    console_enabled = logging_config.get("console_enabled", True)
    console_type = logging_config.get("console_type", "rich")

    log_file = logging_config.get("file")
    if log_file and project_dir:
        log_file = Path(log_file)
        if not log_file.is_absolute():
            log_file = project_dir / log_file

    return setup_logging(
        level=level,
        log_file=log_file,
        format_string=format_string,
        file_mode=file_mode,
        console_enabled=console_enabled,
        use_rich=console_type == "rich",
    )


_logging_setup_done = False
_logging_setup_lock = threading.Lock()


def _auto_setup_logging() -> None:
    """
    Set up logging from the global config if nothing configured it yet.

    Called by get_logger(); a no-op until a global config has been set.
    """
    global _logging_setup_done

    if _logging_setup_done:
        return

    bimsync_logger = logging.getLogger("bimsync")
    if bimsync_logger.handlers:
        _logging_setup_done = True
        return

    with _logging_setup_lock:
        if _logging_setup_done or bimsync_logger.handlers:
            _logging_setup_done = True
            return

        from bimsync.config.singleton import get_config

        config_obj = get_config()
        if config_obj is not None:
            setup_logging_from_config(config_obj.data)
            _logging_setup_done = True


def get_logger(name: str = "bimsync") -> logging.Logger:
    """
    Get a logger instance.

    Automatically sets up logging from global config if not already configured.

    Args:
        name: Logger name (default: "bimsync")

    Returns:
        Logger instance
    """
    _auto_setup_logging()
    return logging.getLogger(name)
