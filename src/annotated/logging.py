"""Shared stderr logging for the annotation engine and CLI.

Library code calls ``get_logger()``; the CLI calls ``init_logger()`` once
with the user's ``--verbose`` choice. Until then a quiet default logger is
used so that reconciliation and store code can always report problems.
"""

import sys
import traceback
from typing import Any


class Logger:
    """Simple stderr logger.

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

    @staticmethod
    def _with_details(message: str, details: dict[str, Any]) -> str:
        if not details:
            return message
        rendered = " ".join(f"{k}={v!r}" for k, v in details.items())
        return f"{message} ({rendered})"

    def debug(self, message: str, **kwargs: Any) -> None:
        """Log debug message (only if verbose enabled).

        Args:
            message: Message to log
            **kwargs: Additional key-value pairs to include
        """
        if not self.verbose:
            return
        formatted = self._colorize(self._with_details(f"DEBUG: {message}", kwargs), "36")
        print(formatted, file=sys.stderr)

    def info(self, message: str, **kwargs: Any) -> None:
        formatted = self._colorize(self._with_details(message, kwargs), "37")
        print(formatted, file=sys.stderr)

    def warning(self, message: str, **kwargs: Any) -> None:
        formatted = self._colorize(self._with_details(f"Warning: {message}", kwargs), "33")
        print(formatted, file=sys.stderr)

    def error(self, message: str, suggestion: str | None = None) -> None:
        """Log error message with optional suggestion.

        Args:
            message: Error message to log
            suggestion: Optional hint for fixing the error
        """
        print(self._colorize(f"Error: {message}", "31"), file=sys.stderr)
        if suggestion:
            print(self._colorize(f"  -> {suggestion}", "33"), file=sys.stderr)

    def exception(self, message: str, exc: BaseException) -> None:
        """Log an exception; the traceback is only shown in verbose mode."""
        self.error(f"{message}: {exc}")
        if self.verbose:
            tb = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
            print(self._colorize(tb, "90"), file=sys.stderr)


_logger: Logger | None = None


def init_logger(verbose: bool = False, use_colors: bool = True) -> Logger:
    """Initialize the global logger.

    Args:
        verbose: Enable debug output
        use_colors: Enable ANSI color codes

    Returns:
        Logger instance
    """
    global _logger
    _logger = Logger(verbose=verbose, use_colors=use_colors)
    return _logger


def get_logger() -> Logger:
    """Return the global logger, creating a non-verbose one on first use."""
    global _logger
    if _logger is None:
        _logger = Logger()
    return _logger
