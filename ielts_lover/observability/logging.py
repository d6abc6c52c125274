"""
Structured Logging with Structlog.

JSON logs carrying the trace id of the action that produced them. Learner
text (essays, transcripts, uploaded charts) never reaches the log stream:
those fields are replaced by their size.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from ielts_lover.config import settings

# Fields holding learner submissions or AI output about them
REDACTED_FIELDS: frozenset[str] = frozenset(
    {"content", "text", "rewritten_text", "feedback", "image_base64"}
)


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add application-level context to all log entries."""
    event_dict["service"] = settings.service_name
    event_dict["version"] = settings.api_version
    return event_dict


def redact_learner_text(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Replace submission text with its length."""
    for key in REDACTED_FIELDS & event_dict.keys():
        value = event_dict[key]
        if isinstance(value, (str, bytes)):
            event_dict[key] = f"<redacted {len(value)} chars>"
    return event_dict


def setup_logging() -> None:
    """
    Configure structlog for the service.

    A submit that fails evaluation logs, for example:
    {
        "event": "evaluation_failed",
        "level": "error",
        "timestamp": "2026-10-19T09:14:03.120931Z",
        "logger": "ielts_lover.services.attempts",
        "service": "ielts-lover-credits",
        "version": "0.1.0",
        "trace_id": "ERR-7KQ2ZD",
        "attempt_id": "5b0d...",
        "charge_id": "c41e...",
        "error_type": "AIServiceError"
    }
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper()),
    )

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_app_context,
        redact_learner_text,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if settings.log_level.upper() == "DEBUG":
        processors.append(structlog.processors.ExceptionRenderer())
    else:
        processors.append(structlog.processors.format_exc_info)

    if settings.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Usage:
        log = trace.bind(get_logger(__name__)).bind(attempt_id=str(attempt_id))
        log.info("attempt_submitted", user_id=str(user_id))
    """
    return structlog.get_logger(name)  # type: ignore[no-any-return]
