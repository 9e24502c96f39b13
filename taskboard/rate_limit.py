"""
rate_limit.py — Per-IP throttling for credential endpoints
==========================================================
Login and tenant signup share one slowapi limit, read from
``TASKBOARD_LOGIN_RATE_LIMIT`` each time a request is checked.
"""
from __future__ import annotations

from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import settings

limiter = Limiter(key_func=get_remote_address)


def credential_limit() -> str:
    return settings.login_rate_limit
