"""
api/limiter.py -- Shared slowapi rate limiter instance.

Imported by api/main.py (mounted as middleware) and by the route modules
(per-route limits with @limiter.limit()). One shared instance means one
counter store; separate instances per module would never trigger.

Route limits here are coarse per-IP brute-force guards on login, verify-code
and password reset. The two-key send-code throttle lives in
verification/limiter.py.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri=get_settings().rate_limit_storage_uri)


def login_limit() -> str:
    return get_settings().login_rate_limit


def verify_code_limit() -> str:
    return get_settings().verify_code_rate_limit


def password_reset_limit() -> str:
    return get_settings().password_reset_rate_limit
