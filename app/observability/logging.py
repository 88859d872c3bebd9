"""
Structured logging configuration using structlog.
JSON output for production, coloured console for dev.
Per-document context is bound through structlog contextvars.
"""

import logging
import sys

import structlog

from app.config import settings

# Event keys whose values never reach the log output
SECRET_KEYS = frozenset({
    "api_key", "service_key", "service_role", "authorization", "webhook_secret", "signature",
})


def redact_secrets(logger, method_name, event_dict):
    """structlog processor: mask credential-bearing keys."""
    for key in SECRET_KEYS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = "***"
    return event_dict


def setup_logging() -> None:
    """Configure structlog for the API process and the reprocessing worker."""

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.DEBUG:
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    # Quieten HTTP clients and the worker loop
    for name in ("uvicorn.access", "httpx", "httpcore", "anthropic", "rq.worker"):
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.DB_ECHO else logging.WARNING
    )


def bind_document_context(document_id: str, company: str) -> None:
    """Attach the document being processed to every log line in this context."""
    structlog.contextvars.bind_contextvars(document_id=document_id, company=company)


def clear_document_context() -> None:
    structlog.contextvars.unbind_contextvars("document_id", "company")
