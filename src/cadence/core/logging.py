"""Structured logging for Cadence.

Every module logs through a component-bound CadenceLogger:

    _logger = get_logger("learning.weights")
    _logger.info("weights_updated", user_id=user_id, cas_attempts=2)

Events are snake_case names with keyword fields, never formatted strings.
The engine facade wraps each user-scoped call in a RequestContext, so lines
emitted deep inside the weight store still carry the user_id and a shared
request_id:

    with with_context(RequestContext(user_id="u-42", component="engine")):
        await feedback.record_completion(task)

configure_logging() is called once by the host application or the CLI.
Until then structlog's defaults apply, which is what tests rely on when they
capture events with structlog.testing.capture_logs().
"""

from __future__ import annotations

import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field, replace
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Literal

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

# Field name fragments that are never written to logs
SENSITIVE_PATTERNS = frozenset({
    "api_key",
    "token",
    "secret",
    "password",
    "credential",
    "authorization",
})
REDACTED = "[REDACTED]"

_ROTATE_BYTES = 10 * 1024 * 1024
_ROTATE_BACKUPS = 3


@dataclass(frozen=True)
class RequestContext:
    """Correlation fields for one engine call.

    Attributes:
        user_id: User whose data the call touches; None for global calls
            such as experiment management.
        request_id: Shared by every line of the call.
        component: Where the call entered the engine.
    """

    user_id: str | None = None
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    component: str = "unknown"

    def with_component(self, component: str) -> RequestContext:
        return replace(self, component=component)

    def to_dict(self) -> dict[str, Any]:
        fields: dict[str, Any] = {"request_id": self.request_id, "component": self.component}
        if self.user_id is not None:
            fields["user_id"] = self.user_id
        return fields


# Each asyncio task inherits a copy, so deferred triggers keep their caller's context
_active_context: ContextVar[RequestContext | None] = ContextVar(
    "cadence_request_context", default=None
)


def get_current_context() -> RequestContext | None:
    return _active_context.get()


@contextmanager
def with_context(ctx: RequestContext) -> Iterator[RequestContext]:
    """Make ctx the active RequestContext until the block exits."""
    token = _active_context.set(ctx)
    try:
        yield ctx
    finally:
        _active_context.reset(token)


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(fragment in lowered for fragment in SENSITIVE_PATTERNS)


def _sanitize_value(key: str, value: Any) -> Any:
    return REDACTED if _is_sensitive(key) else value


def _sanitize_event_dict(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Redact sensitive keys, including keys of dict-valued fields.

    Experiment parameters are logged as a dict, hence the second level.
    """
    return {
        key: (
            {k: _sanitize_value(k, v) for k, v in value.items()}
            if isinstance(value, dict)
            else _sanitize_value(key, value)
        )
        for key, value in event_dict.items()
    }


def _add_context(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Fill in RequestContext fields the event did not set itself."""
    ctx = _active_context.get()
    if ctx is None:
        return event_dict
    for key, value in ctx.to_dict().items():
        event_dict.setdefault(key, value)
    return event_dict


class CadenceLogger:
    """Logger bound to a component name plus optional extra fields.

    The structlog logger is resolved on each call rather than at import
    time, so module-level loggers pick up a later configure_logging().
    """

    def __init__(self, component: str, **initial_context: Any) -> None:
        self._component = component
        self._context: dict[str, Any] = {"component": component, **initial_context}

    def _derive(self, context: dict[str, Any]) -> CadenceLogger:
        derived = CadenceLogger(self._component)
        derived._context = context
        return derived

    def bind(self, **context: Any) -> CadenceLogger:
        return self._derive({**self._context, **context})

    def unbind(self, *keys: str) -> CadenceLogger:
        return self._derive({k: v for k, v in self._context.items() if k not in keys})

    def _emit(self, method: str, event: str, fields: dict[str, Any]) -> None:
        bound = structlog.get_logger().bind(**self._context)
        getattr(bound, method)(event, **fields)

    def debug(self, event: str, **fields: Any) -> None:
        self._emit("debug", event, fields)

    def info(self, event: str, **fields: Any) -> None:
        self._emit("info", event, fields)

    def warning(self, event: str, **fields: Any) -> None:
        self._emit("warning", event, fields)

    def error(self, event: str, **fields: Any) -> None:
        self._emit("error", event, fields)

    def exception(self, event: str, **fields: Any) -> None:
        """Error with the active traceback; only valid inside ``except``."""
        self._emit("exception", event, fields)


def _open_handler(format: str, file_path: Path | None) -> logging.Handler:  # noqa: A002
    if file_path is not None:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        return RotatingFileHandler(
            file_path, maxBytes=_ROTATE_BYTES, backupCount=_ROTATE_BACKUPS, encoding="utf-8"
        )
    # JSON lines go to stdout so they can be piped; console output stays on stderr
    return logging.StreamHandler(sys.stdout if format == "json" else sys.stderr)


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO",
    format: Literal["json", "console"] = "console",  # noqa: A002
    file_path: Path | None = None,
) -> None:
    """Route structlog through the stdlib root logger.

    Replaces any handlers already on the root logger, so calling it again
    reconfigures rather than duplicates output.

    Args:
        level: Minimum level written.
        format: "console" for people, "json" for log shippers.
        file_path: Write to this size-rotated file instead of a stream.
    """
    numeric_level = logging.getLevelName(level)
    handler = _open_handler(format, file_path)
    handler.setLevel(numeric_level)

    root = logging.getLogger()
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(numeric_level)

    renderer: Processor = (
        structlog.processors.JSONRenderer()
        if format == "json"
        else structlog.dev.ConsoleRenderer(colors=file_path is None and sys.stderr.isatty())
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            _sanitize_event_dict,
            _add_context,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(component: str, **initial_context: Any) -> CadenceLogger:
    """Logger for a dotted component name such as ``"learning.weights"``."""
    return CadenceLogger(component, **initial_context)


__all__ = [
    "CadenceLogger",
    "RequestContext",
    "SENSITIVE_PATTERNS",
    "configure_logging",
    "get_current_context",
    "get_logger",
    "with_context",
]
