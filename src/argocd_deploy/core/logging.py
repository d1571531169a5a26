"""Structured logging configuration for argocd-deploy.

Interactive runs log to stderr through Rich. Inside a Buildkite job the agent
timestamps every line itself, so records are written plainly and
log_section() emits the group headers the job log folds on.
"""

import logging
import sys
from enum import Enum
from typing import Any

from rich.console import Console
from rich.logging import RichHandler

ROOT_LOGGER = "argocd_deploy"

PLAIN_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
BUILDKITE_FORMAT = "%(levelname)-7s %(message)s"

_buildkite_sections = False


class LogLevel(str, Enum):
    """Log level enumeration."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


def setup_logging(
    level: LogLevel = LogLevel.INFO,
    rich_output: bool = True,
    buildkite: bool = False,
) -> logging.Logger:
    """Configure logging for argocd-deploy.

    Args:
        level: The logging level
        rich_output: Whether to use Rich for formatted output
        buildkite: Running inside a Buildkite job; wins over rich_output

    Returns:
        Configured logger instance
    """
    global _buildkite_sections

    log_level = getattr(logging, level.value.upper())

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler: logging.Handler
    if buildkite:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(BUILDKITE_FORMAT))
    elif rich_output:
        handler = RichHandler(
            console=Console(stderr=True),
            show_time=True,
            show_path=False,
            rich_tracebacks=True,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)
    _buildkite_sections = buildkite

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(log_level)

    # httpx logs every request at INFO
    for noisy in ("httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return logger


def log_section(title: str, expanded: bool = False) -> None:
    """Start a collapsible group in the Buildkite job log. No-op elsewhere."""
    if not _buildkite_sections:
        return
    marker = "+++" if expanded else "---"
    sys.stderr.write(f"{marker} :argo: {title}\n")
    sys.stderr.flush()


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the argocd_deploy hierarchy.

    Module names already inside the package are used as-is.
    """
    if name == ROOT_LOGGER or name.startswith(f"{ROOT_LOGGER}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def _format_value(value: Any) -> str:
    text = str(value)
    if not text or any(c.isspace() for c in text):
        return repr(text)
    return text


class StructuredLogger:
    """Logger that appends key=value context to each message.

    Values containing whitespace are quoted so a line stays greppable.
    """

    def __init__(self, name: str):
        self._logger = get_logger(name)
        self._context: dict[str, Any] = {}

    @property
    def name(self) -> str:
        return self._logger.name

    def bind(self, **kwargs: Any) -> "StructuredLogger":
        """Create a new logger with additional context."""
        new_logger = StructuredLogger(self._logger.name)
        new_logger._context = {**self._context, **kwargs}
        return new_logger

    def _format_message(self, message: str, **kwargs: Any) -> str:
        context = {**self._context, **kwargs}
        if not context:
            return message
        pairs = " ".join(f"{k}={_format_value(v)}" for k, v in context.items() if v is not None)
        return f"{message} [{pairs}]" if pairs else message

    def section(self, title: str, expanded: bool = False) -> None:
        """Open a Buildkite log group and record the title at INFO."""
        log_section(title, expanded)
        self._logger.info(self._format_message(title))

    def debug(self, message: str, **kwargs: Any) -> None:
        self._logger.debug(self._format_message(message, **kwargs))

    def info(self, message: str, **kwargs: Any) -> None:
        self._logger.info(self._format_message(message, **kwargs))

    def warning(self, message: str, **kwargs: Any) -> None:
        self._logger.warning(self._format_message(message, **kwargs))

    def error(self, message: str, **kwargs: Any) -> None:
        self._logger.error(self._format_message(message, **kwargs))

    def exception(self, message: str, **kwargs: Any) -> None:
        """Log with the active exception's traceback."""
        self._logger.exception(self._format_message(message, **kwargs))
