"""
Structured logging setup using structlog.

Application code logs through the standard library (`logging.getLogger`
with `extra=`); structlog renders those records together with the
notification context bound by the handler.
"""

import logging
import sys
from typing import Any

import structlog
from opentelemetry import trace

# Libraries that log connection chatter at INFO
NOISY_LOGGERS = ("nats", "nats.aio.client", "asyncio")


def add_trace_context(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Attach the current span's trace and span ids, if any."""
    span = trace.get_current_span()
    if span.is_recording():
        ctx = span.get_span_context()
        event_dict.setdefault("trace_id", format(ctx.trace_id, "032x"))
        event_dict.setdefault("span_id", format(ctx.span_id, "016x"))
    return event_dict


def add_static_fields(fields: dict[str, Any]) -> structlog.types.Processor:
    """
    Build a processor stamping every record with fixed process identity.

    Used for the consumer and bucket names so records from several pullers
    sharing one log sink can be told apart.
    """
    def processor(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        for key, value in fields.items():
            event_dict.setdefault(key, value)
        return event_dict

    return processor


def _renderer(log_format: str) -> structlog.types.Processor:
    if log_format == "console":
        return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    return structlog.processors.JSONRenderer()


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    static_fields: dict[str, Any] | None = None,
) -> None:
    """
    Configure structured logging for the process.

    Takes plain values rather than the settings object so that a
    configuration error can still be reported in the configured shape.

    Args:
        log_level: Level name, e.g. "INFO".
        log_format: "json" for production, "console" for development.
        static_fields: Fields added to every record.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.ExtraAdder(),
        add_trace_context,
    ]
    if static_fields:
        shared_processors.append(add_static_fields(static_fields))

    final_processors: list[Any] = [structlog.stdlib.ProcessorFormatter.remove_processors_meta]
    if log_format != "console":
        # Tracebacks as structured data rather than one opaque string
        final_processors.append(structlog.processors.dict_tracebacks)
    final_processors.append(_renderer(log_format))

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=final_processors,
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def bind_context(**kwargs: Any) -> None:
    """
    Bind fields to every later record in the current task.

    Bindings made inside an asyncio task stay local to that task.
    """
    structlog.contextvars.bind_contextvars(**kwargs)
