"""
Retry wrapper for transient database failures.

Connection drops and pool exhaustion surface as ``OperationalError`` /
``InterfaceError``. Those are retried a bounded number of times with a
linear back-off; everything else propagates immediately.
"""

import functools
import logging
import time

from django.conf import settings
from django.db import InterfaceError, OperationalError, close_old_connections

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (OperationalError, InterfaceError)


def with_db_retry(fn, *args, operation_name=None, attempts=None, delay=None, **kwargs):
    """Call ``fn(*args, **kwargs)``, retrying transient DB errors."""
    attempts = attempts or getattr(settings, 'DB_RETRY_ATTEMPTS', 3)
    delay = getattr(settings, 'DB_RETRY_DELAY', 0.5) if delay is None else delay
    name = operation_name or getattr(fn, '__name__', 'db operation')

    for attempt in range(1, attempts + 1):
        try:
            return fn(*args, **kwargs)
        except TRANSIENT_ERRORS as exc:
            if attempt >= attempts:
                logger.error("[db] %s failed after %d attempts: %s", name, attempts, exc)
                raise
            logger.warning("[db] %s failed (attempt %d/%d): %s, retrying", name, attempt, attempts, exc)
            # 丢掉坏掉的连接，下一次会重新建连
            close_old_connections()
            if delay:
                time.sleep(delay * attempt)


def db_retry(fn=None, *, operation_name=None):
    """Decorator form of :func:`with_db_retry`."""

    def decorate(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            return with_db_retry(func, *args, operation_name=operation_name or func.__name__, **kwargs)
        return wrapper

    if fn is not None:
        return decorate(fn)
    return decorate
