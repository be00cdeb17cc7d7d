"""Core logging interfaces for shieldpool.

Modules log through the standard ``logging`` hierarchy under the
``shieldpool`` root. ``ContextLogger`` stamps each record with a
``LogContext`` (build id, pipeline stage, component) so the output of a
single transaction build can be followed end to end.
"""

import logging
import sys
import threading
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, MutableMapping, Optional, Tuple


class LogLevel(Enum):
    """Log levels."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    def to_stdlib(self) -> int:
        return getattr(logging, self.name)


@dataclass
class LogContext:
    """Log context information."""

    component: Optional[str] = None
    operation: Optional[str] = None
    build_id: Optional[str] = None
    stage: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert context to dictionary, dropping unset fields."""
        data = {
            "component": self.component,
            "operation": self.operation,
            "build_id": self.build_id,
            "stage": self.stage,
        }
        data = {k: v for k, v in data.items() if v is not None}
        if self.metadata:
            data["metadata"] = self.metadata
        return data

    def merge(self, **updates: Any) -> "LogContext":
        """Return a copy with the given fields replaced."""
        return replace(self, **updates)


class ContextLogger(logging.LoggerAdapter):
    """Logger adapter that attaches a ``LogContext`` to every record."""

    def __init__(self, logger: logging.Logger, context: Optional[LogContext] = None):
        super().__init__(logger, {})
        self.context = context or LogContext()

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> Tuple[Any, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        extra["context"] = self.context.to_dict()
        kwargs["extra"] = extra
        return msg, kwargs

    def bind(self, **updates: Any) -> "ContextLogger":
        """Return a logger whose context has ``updates`` applied."""
        return ContextLogger(self.logger, self.context.merge(**updates))


class LogConfig:
    """Log configuration."""

    def __init__(
        self,
        name: str = "shieldpool",
        level: LogLevel = LogLevel.INFO,
        format_type: str = "text",
        handlers: List[str] = None,
        propagate: bool = False,
        filename: Optional[str] = None,
    ):
        if format_type not in ("text", "json"):
            raise ValueError(f"Unsupported format type: {format_type}")
        self.name = name
        self.level = level
        self.format_type = format_type
        self.handlers = handlers or ["console"]
        self.propagate = propagate
        self.filename = filename

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return {
            "name": self.name,
            "level": self.level.value,
            "format_type": self.format_type,
            "handlers": list(self.handlers),
            "propagate": self.propagate,
            "filename": self.filename,
        }


_setup_lock = threading.RLock()
_configured_handlers: List[Tuple[logging.Logger, logging.Handler]] = []


def get_logger(name: str = "shieldpool", context: Optional[LogContext] = None, **fields: Any) -> ContextLogger:
    """Get a context-aware logger instance."""
    if context is None:
        context = LogContext(**fields)
    elif fields:
        context = context.merge(**fields)
    return ContextLogger(logging.getLogger(name), context)


def setup_logging(config: Optional[LogConfig] = None) -> logging.Logger:
    """Install handlers on the ``shieldpool`` logger according to ``config``."""
    from .formatters import JSONFormatter, TextFormatter

    config = config or LogConfig()
    with _setup_lock:
        _remove_handlers()
        root = logging.getLogger(config.name)

        formatter: logging.Formatter
        if config.format_type == "json":
            formatter = JSONFormatter()
        else:
            formatter = TextFormatter()

        for handler_name in config.handlers:
            if handler_name == "console":
                handler: logging.Handler = logging.StreamHandler(sys.stderr)
            elif handler_name == "file":
                if not config.filename:
                    raise ValueError("File handler requires a filename")
                handler = logging.FileHandler(config.filename)
            else:
                raise ValueError(f"Unknown handler: {handler_name}")
            handler.setFormatter(formatter)
            root.addHandler(handler)
            _configured_handlers.append((root, handler))

        root.setLevel(config.level.to_stdlib())
        root.propagate = config.propagate
        return root


def shutdown_logging() -> None:
    """Remove handlers installed by ``setup_logging``."""
    with _setup_lock:
        _remove_handlers()


def _remove_handlers() -> None:
    for owner, handler in _configured_handlers:
        owner.removeHandler(handler)
        handler.close()
    _configured_handlers.clear()
