"""shieldpool logging.

Thin structured layer over the standard library: context-stamped loggers and
JSON/text formatters.
"""

from .core import (
    ContextLogger,
    LogConfig,
    LogContext,
    LogLevel,
    get_logger,
    setup_logging,
    shutdown_logging,
)
from .formatters import JSONFormatter, TextFormatter

__all__ = [
    "LogLevel",
    "LogConfig",
    "LogContext",
    "ContextLogger",
    "get_logger",
    "setup_logging",
    "shutdown_logging",
    "JSONFormatter",
    "TextFormatter",
]
