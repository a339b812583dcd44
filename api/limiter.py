"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and
api/routes/v1/auth.py (to apply per-route limits with @limiter.limit()).

A single shared instance means all routes share the same in-memory counter
store. Per-module instances would each keep an isolated counter and the
limits would never trigger.

Limit strings come from Settings (LOGIN_RATE_LIMIT, OTP_RATE_LIMIT) and are
resolved per request, so tests and deployments can tune them via env vars.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_rate_limit() -> str:
    return get_settings().login_rate_limit


def otp_rate_limit() -> str:
    return get_settings().otp_rate_limit
