"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and in the auth routes
(to apply per-route limits with @limiter.limit()). A single shared instance
means every route counts against the same in-memory store; separate
instances per module would never trigger.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_rate_limit() -> str:
    """Limit string for credential endpoints, read lazily so tests can override it."""
    return get_settings().login_rate_limit
