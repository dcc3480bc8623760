"""
Short-lived result cache on top of Django's cache framework.

Breakdown results are cached per (employee, window). Any commission write
bumps the namespace generation, which orphans every cached breakdown at
once without needing a key scan on Redis.
"""

import logging

from django.conf import settings
from django.core.cache import cache

logger = logging.getLogger(__name__)


class ResultCache:

    def __init__(self, namespace: str, timeout: int):
        self.namespace = namespace
        self.timeout = timeout

    def _generation_key(self):
        return f"{self.namespace}:generation"

    def _generation(self):
        return cache.get_or_set(self._generation_key(), 1, None)

    def _key(self, key):
        return f"{self.namespace}:{self._generation()}:{key}"

    def get(self, key):
        return cache.get(self._key(key))

    def set(self, key, value, timeout=None):
        cache.set(self._key(key), value, self.timeout if timeout is None else timeout)

    def invalidate(self, key):
        cache.delete(self._key(key))

    def clear(self):
        try:
            cache.incr(self._generation_key())
        except ValueError:
            cache.set(self._generation_key(), 2, None)


def breakdown_key(employee_id=None, window=None) -> str:
    token = window.cache_token() if window is not None else 'all:all'
    return f"commission:breakdown:{employee_id or 'all'}:{token}"


HOSPITALS_KEY = 'hospitals:active'

breakdown_cache = ResultCache('breakdown', getattr(settings, 'BREAKDOWN_CACHE_TTL', 30))
reference_cache = ResultCache('reference', getattr(settings, 'HOSPITALS_CACHE_TTL', 300))


def invalidate_commission_caches():
    """Best effort: a cache outage must never fail a ledger write."""
    try:
        breakdown_cache.clear()
    except Exception as exc:
        logger.warning("[cache] could not invalidate breakdown cache: %s", exc)


def clear_all():
    cache.clear()
