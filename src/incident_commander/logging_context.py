"""
Structured logging with incident correlation.

Every log record emitted while an incident is being handled carries its
``incident_id`` so that interleaved output from concurrent incidents can be
told apart.
"""

import contextvars
import logging
import json
from datetime import datetime, timezone
from typing import Any, Optional

# Context survives across await points within one incident task
incident_context: contextvars.ContextVar[dict] = contextvars.ContextVar(
    'incident_context', default={}
)

CONTEXT_KEYS = ('incident_id', 'alarm_name', 'provider', 'action')


class ContextualLogger(logging.LoggerAdapter):
    """
    Logger adapter that injects incident correlation fields into records.

    Usage:
        logger = get_logger(__name__)
        with LoggingContext(incident_id='inc-20240101000000-1'):
            logger.info("Planning")
    """

    def process(self, msg, kwargs):
        ctx = incident_context.get({})
        extra = dict(kwargs.get('extra') or {})

        for key in CONTEXT_KEYS:
            value = ctx.get(key)
            if value is not None:
                extra.setdefault(key, value)

        kwargs['extra'] = extra
        incident_id = ctx.get('incident_id')
        if incident_id:
            msg = f"[{incident_id}] {msg}"
        return msg, kwargs


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs log records as JSON objects with consistent fields.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        for key in CONTEXT_KEYS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def get_logger(name: str) -> ContextualLogger:
    """Get a contextual logger for ``name`` (typically __name__)."""
    return ContextualLogger(logging.getLogger(name), {})


def set_context(**kwargs: Any) -> contextvars.Token:
    """
    Add correlation values to the current context.

    Returns:
        Token to reset context later
    """
    current = incident_context.get({}).copy()
    current.update(kwargs)
    return incident_context.set(current)


def get_context() -> dict:
    """Get current correlation context."""
    return incident_context.get({}).copy()


def clear_context() -> None:
    """Clear correlation context."""
    incident_context.set({})


class LoggingContext:
    """
    Context manager for setting logging context.

    Usage:
        with LoggingContext(incident_id='inc-1'):
            logger.info("Dispatching")  # Includes incident_id
    """

    def __init__(self, **kwargs: Any):
        self.kwargs = kwargs
        self.token: Optional[contextvars.Token] = None

    def __enter__(self):
        self.token = set_context(**self.kwargs)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.token:
            incident_context.reset(self.token)
        return False
