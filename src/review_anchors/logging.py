"""Stderr logging shared by the engine and the CLI.

- Errors and warnings always go to stderr
- Debug output only when verbose is enabled (--verbose)
- ANSI colors when stderr is a terminal
"""

import sys
import traceback
from enum import Enum
from typing import Any


class LogLevel(Enum):
    """Log levels for console output."""

    DEBUG = 0
    INFO = 1
    WARNING = 2
    ERROR = 3


_COLORS = {
    LogLevel.DEBUG: "36",  # Cyan
    LogLevel.INFO: "37",  # White
    LogLevel.WARNING: "33",  # Yellow
    LogLevel.ERROR: "31",  # Red
}

_PREFIXES = {
    LogLevel.DEBUG: "DEBUG: ",
    LogLevel.INFO: "",
    LogLevel.WARNING: "Warning: ",
    LogLevel.ERROR: "Error: ",
}


class Logger:
    """Minimal leveled logger writing to stderr.

    Attributes:
        verbose: If True, DEBUG messages are printed
        use_colors: If True, use ANSI color codes
    """

    def __init__(self, verbose: bool = False, use_colors: bool = True) -> None:
        self.verbose = verbose
        self.use_colors = use_colors and sys.stderr.isatty()

    def _colorize(self, text: str, color_code: str) -> str:
        if not self.use_colors:
            return text
        return f"\033[{color_code}m{text}\033[0m"

    def _emit(self, level: LogLevel, message: str, details: dict[str, Any]) -> None:
        formatted = self._colorize(f"{_PREFIXES[level]}{message}", _COLORS[level])
        if details:
            formatted += " (" + " ".join(f"{k}={v!r}" for k, v in details.items()) + ")"
        print(formatted, file=sys.stderr)

    def debug(self, message: str, **details: Any) -> None:
        """Log debug message (only if verbose enabled)."""
        if self.verbose:
            self._emit(LogLevel.DEBUG, message, details)

    def info(self, message: str, **details: Any) -> None:
        self._emit(LogLevel.INFO, message, details)

    def warning(self, message: str, **details: Any) -> None:
        self._emit(LogLevel.WARNING, message, details)

    def error(self, message: str, suggestion: str | None = None) -> None:
        """Log error message with optional suggestion.

        Args:
            message: Error message to log
            suggestion: Optional hint for fixing the error, printed indented
        """
        self._emit(LogLevel.ERROR, message, {})
        if suggestion:
            print(self._colorize(f"  -> {suggestion}", _COLORS[LogLevel.WARNING]), file=sys.stderr)

    def exception(self, message: str, exc: BaseException) -> None:
        """Log exception, with traceback in verbose mode."""
        self.error(f"{message}: {exc}")
        if self.verbose:
            tb = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
            print(self._colorize(tb, "90"), file=sys.stderr)  # Gray


_logger: Logger | None = None


def init_logger(verbose: bool = False, use_colors: bool = True) -> Logger:
    """Configure the process-wide logger and return it."""
    global _logger
    _logger = Logger(verbose=verbose, use_colors=use_colors)
    return _logger


def get_logger() -> Logger:
    """Return the process-wide logger, creating a non-verbose one if needed."""
    global _logger
    if _logger is None:
        _logger = Logger()
    return _logger
