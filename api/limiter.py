"""
api/limiter.py -- Shared slowapi rate limiter instance and per-route limits.

Import this in both api/main.py (to mount as middleware) and
api/routes/auth.py (to apply per-route limits with @limiter.limit()).

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.

Limits are callables so they are read from Settings at request time; tests
that override LOGIN_RATE_LIMIT and clear the settings cache see the new value.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_limit() -> str:
    return get_settings().login_rate_limit


def register_limit() -> str:
    return get_settings().register_rate_limit


def refresh_limit() -> str:
    return get_settings().refresh_rate_limit


def resend_limit() -> str:
    return get_settings().resend_rate_limit


def accept_invitation_limit() -> str:
    return get_settings().accept_invitation_rate_limit
