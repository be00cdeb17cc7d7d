"""Log formatters for shieldpool."""

import json
import logging
import time
from typing import Any, Dict, Optional


class JSONFormatter(logging.Formatter):
    """JSON log formatter."""

    def __init__(
        self,
        include_context: bool = True,
        include_exception: bool = True,
        include_thread: bool = False,
        timestamp_format: str = "iso",
        indent: Optional[int] = None,
    ):
        super().__init__()
        self.include_context = include_context
        self.include_exception = include_exception
        self.include_thread = include_thread
        self.timestamp_format = timestamp_format
        self.indent = indent

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        data: Dict[str, Any] = {
            "timestamp": self._format_timestamp(record.created),
            "level": record.levelname.lower(),
            "logger": record.name,
        }

        context = getattr(record, "context", None)
        if self.include_context and context:
            data["context"] = context

        if self.include_exception and record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            data["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_value),
                "traceback": self.formatException(record.exc_info),
            }

        if self.include_thread:
            data["thread_id"] = record.thread

        data["message"] = record.getMessage()

        return json.dumps(data, indent=self.indent, default=str)

    def _format_timestamp(self, timestamp: float) -> str:
        if self.timestamp_format == "iso":
            return (
                time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(timestamp))
                + f".{int((timestamp % 1) * 1000000):06d}Z"
            )
        elif self.timestamp_format == "unix":
            return str(timestamp)
        else:
            return time.strftime(self.timestamp_format, time.gmtime(timestamp))


class TextFormatter(logging.Formatter):
    """Human-readable formatter that appends the record's context."""

    def __init__(self, fmt: str = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"):
        super().__init__(fmt)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = getattr(record, "context", None)
        if context:
            rendered = " ".join(f"{k}={v}" for k, v in context.items())
            line = f"{line} | {rendered}"
        return line
