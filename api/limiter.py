"""
api/limiter.py -- Shared slowapi rate limiter instance.

Two route classes, both keyed by client address:
  global  application_limits, applied by SlowAPIMiddleware to every route
          (default 200 per 15 minutes)
  auth    one shared_limit scope for every auth-sensitive route, so login,
          register, MFA and reset attempts draw from one budget per address
          (default 8 per 15 minutes)

strategy="moving-window" gives a true sliding window: a request is counted
against the trailing window ending now, not a fixed clock bucket.

Decorator order matters: @router.post(...) must sit ABOVE @auth_limit.
SlowAPIMiddleware skips any route that carries a slowapi decorator and
leaves enforcement to the decorator's wrapper, so the wrapper has to be the
function FastAPI actually registers.

Using a single shared instance ensures all routes share the same in-memory
counter store. Counters are per process; a multi-worker deployment would need
a shared storage_uri (e.g. redis://) to be exact.
"""

from __future__ import annotations

import math
import time

from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from core.config import get_settings

AUTH_SCOPE = "auth"

_settings = get_settings()


def build_limiter(global_limit: str, enabled: bool = True) -> Limiter:
    return Limiter(
        key_func=get_remote_address,
        storage_uri="memory://",
        strategy="moving-window",
        application_limits=[global_limit],
        enabled=enabled,
    )


limiter = build_limiter(_settings.global_rate_limit, enabled=_settings.rate_limit_enabled)

auth_limit = limiter.shared_limit(_settings.auth_rate_limit, scope=AUTH_SCOPE)


def retry_after_seconds(request: Request, default: int = 60) -> int:
    """Seconds until the limit that just rejected request frees a slot.

    slowapi records the evaluated limit on request.state.view_rate_limit as
    (limit_item, key_args) before raising RateLimitExceeded.
    """
    view_limit = getattr(request.state, "view_rate_limit", None)
    active: Limiter | None = getattr(request.app.state, "limiter", None)
    if view_limit is None or active is None:
        return default
    limit_item, key_args = view_limit
    reset_at, _remaining = active.limiter.get_window_stats(limit_item, *key_args)
    return max(1, math.ceil(reset_at - time.time()))
