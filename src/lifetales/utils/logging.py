"""Logging configuration for LifeTales.

Provides centralized logging setup with Rich console formatting,
optional file logging, and a redacting filter for secrets.

Example:
    >>> from lifetales.utils.logging import setup_logging, get_logger, LogContext
    >>> setup_logging(level="DEBUG")
    >>> logger = get_logger(__name__)
    >>> logger.info("Starting pipeline")
    >>> with LogContext("Weaving chapter"):
    ...     # do work
    ... # Logs: "Weaving chapter completed in 2.3s"
"""

from __future__ import annotations

import logging
import re
import time
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.logging import RichHandler


# =============================================================================
# Constants
# =============================================================================

PACKAGE_NAME = "lifetales"

# Noisy third-party loggers to filter
NOISY_LOGGERS = [
    "google",
    "google.auth",
    "google.genai",
    "urllib3",
    "httpx",
    "httpcore",
    "PIL",
    "asyncio",
    "keyring",
]

FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s"
FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_console = Console(stderr=True)


# =============================================================================
# Secure Logging Filter
# =============================================================================


class RedactingFilter(logging.Filter):
    """Logging filter that redacts things that look like API keys.

    Patterns detected:
    - Values following api_key=, key=, token=, secret=, bearer
    - Gemini-style keys (``AIza...``)

    Example:
        >>> logger = logging.getLogger("my_module")
        >>> logger.addFilter(RedactingFilter())
        >>> logger.info("Using api_key=AIzaSy123456789...")
        # Output: "Using api_key=[REDACTED]"
    """

    KEY_VALUE_PATTERNS = [
        re.compile(r'(api_key\s*[=:]\s*)["\']?([a-zA-Z0-9_\-]{20,})["\']?', re.IGNORECASE),
        re.compile(r'(key\s*[=:]\s*)["\']?([a-zA-Z0-9_\-]{20,})["\']?', re.IGNORECASE),
        re.compile(r'(token\s*[=:]\s*)["\']?([a-zA-Z0-9_\-]{20,})["\']?', re.IGNORECASE),
        re.compile(r"(bearer\s+)([a-zA-Z0-9_\-]{20,})", re.IGNORECASE),
        re.compile(r'(secret\s*[=:]\s*)["\']?([a-zA-Z0-9_\-]{20,})["\']?', re.IGNORECASE),
    ]
    STANDALONE_PATTERNS = [
        re.compile(r"\bAIza[a-zA-Z0-9_\-]{30,}\b"),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        """Redact the record in place. Always lets the record through."""
        if isinstance(record.msg, str):
            record.msg = self.redact(record.msg)

        if record.args and isinstance(record.args, tuple):
            record.args = tuple(
                self.redact(arg) if isinstance(arg, str) else arg for arg in record.args
            )

        return True

    def redact(self, text: str) -> str:
        """Replace sensitive patterns in ``text`` with [REDACTED]."""
        for pattern in self.KEY_VALUE_PATTERNS:
            text = pattern.sub(r"\1[REDACTED]", text)
        for pattern in self.STANDALONE_PATTERNS:
            text = pattern.sub("[REDACTED]", text)
        return text


# =============================================================================
# Setup Functions
# =============================================================================


def setup_logging(
    level: str = "INFO",
    log_file: Path | None = None,
    quiet_third_party: bool = True,
) -> None:
    """Configure logging for the lifetales package.

    Sets up a Rich console handler on stderr and optionally a file handler.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Optional path to log file.
        quiet_third_party: If True, suppress noisy third-party loggers.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger(PACKAGE_NAME)
    root_logger.setLevel(numeric_level)

    # Remove existing handlers to avoid duplicates
    root_logger.handlers = []

    console_handler = RichHandler(
        console=_console,
        show_time=False,
        show_path=False,
        rich_tracebacks=True,
        tracebacks_show_locals=numeric_level == logging.DEBUG,
        markup=False,
    )
    console_handler.setLevel(numeric_level)
    console_handler.addFilter(RedactingFilter())
    root_logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=FILE_DATE_FORMAT))
        file_handler.addFilter(RedactingFilter())
        root_logger.addHandler(file_handler)

    if quiet_third_party:
        for logger_name in NOISY_LOGGERS:
            logging.getLogger(logger_name).setLevel(logging.WARNING)

    root_logger.propagate = False
    root_logger.debug(f"Logging configured: level={level}, file={log_file}")


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the package namespace."""
    if not name.startswith(PACKAGE_NAME):
        name = f"{PACKAGE_NAME}.{name}"
    return logging.getLogger(name)


# =============================================================================
# Log Context Manager
# =============================================================================


class LogContext:
    """Context manager for timing and logging operations.

    Only the exception type is logged on failure; exception text may carry
    user content.

    Attributes:
        message: Description of the operation.
        level: Log level for messages.
        logger: Logger instance to use.
        elapsed: Elapsed time in seconds (after exit).

    Example:
        >>> with LogContext("Transcribing audio") as ctx:
        ...     pass
        >>> ctx.elapsed
    """

    def __init__(
        self,
        message: str,
        level: int = logging.INFO,
        logger: logging.Logger | None = None,
    ) -> None:
        self.message = message
        self.level = level
        self.logger = logger or logging.getLogger(PACKAGE_NAME)
        self.elapsed: float = 0.0
        self._start_time: float = 0.0

    def __enter__(self) -> "LogContext":
        self._start_time = time.perf_counter()
        self.logger.log(self.level, f"{self.message}...")
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        self.elapsed = time.perf_counter() - self._start_time

        if exc_type is not None:
            self.logger.log(
                self.level,
                f"{self.message} failed after {self.elapsed:.2f}s: {exc_type.__name__}",
            )
        else:
            self.logger.log(self.level, f"{self.message} completed in {self.elapsed:.2f}s")
