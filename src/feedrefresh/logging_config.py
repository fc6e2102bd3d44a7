"""Logging configuration and custom formatters for feedrefresh.

Provides a human-readable formatter that appends structured ``extra`` fields,
a JSON formatter for production, and a context id carried through a
``ContextVar`` so that every log line emitted while a refresh job runs can be
correlated with that job.
"""

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
import json
import logging
from logging.config import dictConfig
import sys
from typing import Any, Literal

_original_log_record_factory = logging.getLogRecordFactory()

# LogRecord attributes that are never treated as user-supplied extras.
_STANDARD_ATTRS = frozenset(
    {
        "args",
        "asctime",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "thread",
        "threadName",
        "taskName",
        "context_id",
        "exc_custom_attrs",
        "semantic_trace",
    }
)


def custom_record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
    """Create a log record enriched with exception attributes and cause chain.

    Walks ``__cause__``/``__context__`` of the logged exception, collecting the
    public attributes of each exception (``feed_id``, ``url``, ...) and the
    message of every link in the chain.

    Args:
        *args: Arguments passed to the original log record factory.
        **kwargs: Keyword arguments passed to the original log record factory.

    Returns:
        The enriched LogRecord.
    """
    record = _original_log_record_factory(*args, **kwargs)
    if not (record.exc_info and record.exc_info[1]):
        return record

    collected_attrs: dict[str, Any] = {}
    chain_messages: list[str] = []
    current_exc: BaseException | None = record.exc_info[1]
    while current_exc is not None:
        for name, val in vars(current_exc).items():
            if not name.startswith("_") and val is not None:
                collected_attrs.setdefault(name, val)
        chain_messages.append(str(current_exc) or type(current_exc).__name__)
        current_exc = current_exc.__cause__ or current_exc.__context__

    if collected_attrs:
        record.exc_custom_attrs = collected_attrs
    record.semantic_trace = chain_messages
    return record


_context_id_var: ContextVar[str | None] = ContextVar("context_id", default=None)


def set_context_id(context_id: str | None) -> None:
    """Set the context ID for the current async context.

    Args:
        context_id: Identifier to attach to subsequent log records, e.g.
            ``"feed-123-attempt0"``; ``None`` clears it.
    """
    _context_id_var.set(context_id)


@contextmanager
def log_context(context_id: str) -> Iterator[None]:
    """Attach ``context_id`` to log records emitted inside the block."""
    token = _context_id_var.set(context_id)
    try:
        yield
    finally:
        _context_id_var.reset(token)


class ContextIdFilter(logging.Filter):
    """Inject the current context_id into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Copy the context id onto the record; never drops the record."""
        context_id = _context_id_var.get()
        if context_id is not None:
            record.context_id = context_id
        return True


_should_include_stacktrace: bool = False


class HumanReadableExtrasFormatter(logging.Formatter):
    """Human-readable formatter that appends ``extra`` fields as ``key:value``.

    Output looks like::

        2024-01-01 12:00:00 INFO [feedrefresh.pipeline.worker_pool] CtxID:feed-1-attempt0 feed_id:1 - Refreshing feed.

    When stack traces are disabled, exceptions are rendered as their cause
    chain instead of a full traceback.
    """

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        style: Literal["%", "{", "$"] = "%",
        validate: bool = True,
        *,
        defaults: Mapping[str, Any] | None = None,
    ):
        super().__init__(fmt, datefmt, style, validate, defaults=defaults)

    @staticmethod
    def _format_value(value: Any) -> str:
        if isinstance(value, dict | list | tuple):
            try:
                return json.dumps(value, sort_keys=True, separators=(", ", ":"))
            except TypeError:
                return f"[Unserializable Value: {type(value).__name__}]"  # type: ignore
        return str(value)

    def _extras(self, record: logging.LogRecord) -> dict[str, Any]:
        extras: dict[str, Any] = {}
        exc_attrs = getattr(record, "exc_custom_attrs", None)
        if isinstance(exc_attrs, dict):
            extras.update(exc_attrs)  # type: ignore
        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                extras[key] = value
        return extras

    def _format_exception_block(self, record: logging.LogRecord) -> str:
        if _should_include_stacktrace:
            if not record.exc_text and record.exc_info:
                record.exc_text = self.formatException(record.exc_info)
            return f"\n{record.exc_text}" if record.exc_text else ""

        trace: list[str] | None = getattr(record, "semantic_trace", None)
        if not trace:
            return ""
        lines = [f"Error: {trace[0]}"]
        lines.extend(f"  Caused by: {msg}" for msg in trace[1:])
        return "\n" + "\n".join(lines)

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as a single human-readable line.

        Args:
            record: The log record to format.

        Returns:
            The formatted line, followed by exception and stack details if any.
        """
        parts: list[str] = [
            self.formatTime(record, self.datefmt),
            record.levelname,
            f"[{record.name}]",
        ]
        ctx_id = getattr(record, "context_id", None)
        if ctx_id is not None:
            parts.append(f"CtxID:{ctx_id}")

        parts.extend(
            f"{key}:{self._format_value(value)}"
            for key, value in self._extras(record).items()
        )

        message = record.getMessage()
        parts.append(f"- {message}" if message else "-")
        line = " ".join(parts)

        if record.exc_info:
            line += self._format_exception_block(record)
        if record.stack_info:
            line += "\n" + self.formatStack(record.stack_info)
        return line


LOGGING_CONFIG: dict[str, Any] = {
    "version": 1,
    "disable_existing_loggers": False,
    "filters": {
        "context_id_filter": {
            "()": ContextIdFilter,
        },
    },
    "formatters": {
        "human_readable_formatter": {
            "()": HumanReadableExtrasFormatter,
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
        "json_formatter": {
            "()": "pythonjsonlogger.json.JsonFormatter",
            "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
        },
    },
    "handlers": {
        "console_handler": {
            "class": "logging.StreamHandler",
            "formatter": "human_readable_formatter",
            "stream": "ext://sys.stdout",
            "filters": ["context_id_filter"],
        },
    },
    "loggers": {
        "feedrefresh": {
            "handlers": ["console_handler"],
            "level": "INFO",
            "propagate": False,
        },
        # APScheduler logs every interval tick at INFO
        "apscheduler": {
            "handlers": ["console_handler"],
            "level": "WARNING",
            "propagate": False,
        },
    },
    "root": {
        "handlers": ["console_handler"],
        "level": "WARNING",
    },
}


def setup_logging(
    log_format_type: Literal["human", "json"],
    app_log_level_name: str,
    include_stacktrace: bool,
) -> None:
    """Configure logging for the service.

    Args:
        log_format_type: Format for logs ('human' or 'json').
        app_log_level_name: Logging level name for the ``feedrefresh`` logger
            (e.g., 'INFO', 'DEBUG'). Invalid names fall back to INFO.
        include_stacktrace: Whether to include full stack traces in error logs.
    """
    global _should_include_stacktrace
    _should_include_stacktrace = include_stacktrace

    logging.setLogRecordFactory(custom_record_factory)

    level_name = app_log_level_name.upper()
    if not isinstance(logging.getLevelName(level_name), int):
        print(
            f"Warning: Invalid LOG_LEVEL '{app_log_level_name}'. Defaulting to INFO.",
            file=sys.stderr,
        )
        level_name = "INFO"
    LOGGING_CONFIG["loggers"]["feedrefresh"]["level"] = level_name

    formatter = (
        "json_formatter"
        if log_format_type.lower() == "json"
        else "human_readable_formatter"
    )
    LOGGING_CONFIG["handlers"]["console_handler"]["formatter"] = formatter

    dictConfig(LOGGING_CONFIG)
