"""
Logging Context Module

Stores contextual information (correlation_id, actor) that the ContextFilter
in logging_config stamps onto every log record.

Usage:
    >>> from inbox_rules.logging_context import with_correlation_id
    >>>
    >>> with with_correlation_id('sweep-abc123'):
    ...     logger.info("This log will include the correlation id")
"""
import contextvars
from contextlib import contextmanager
from typing import Dict, Any, Optional

_correlation_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar('correlation_id', default=None)
_actor: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar('actor', default=None)


def get_logging_context() -> Dict[str, Any]:
    """Return the fields that are currently set."""
    context = {}
    correlation_id = _correlation_id.get()
    actor = _actor.get()
    if correlation_id is not None:
        context['correlation_id'] = correlation_id
    if actor is not None:
        context['actor'] = actor
    return context


def set_correlation_id(correlation_id: Optional[str]) -> None:
    _correlation_id.set(correlation_id)


def set_actor(actor: Optional[str]) -> None:
    _actor.set(actor)


def clear_context() -> None:
    """Reset all context fields."""
    _correlation_id.set(None)
    _actor.set(None)


@contextmanager
def with_correlation_id(correlation_id: str):
    """
    Context manager for a correlation id scope.

    The previous value is restored on exit, so scopes can nest.
    """
    token = _correlation_id.set(correlation_id)
    try:
        yield
    finally:
        _correlation_id.reset(token)
