from __future__ import annotations

import time
from dataclasses import dataclass

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ..observability.logging import get_logger
from ..problem_details import problem_response
from ..settings import settings
from .auth import PUBLIC_PORTAL_PREFIX

log = get_logger("portal_rate_limit")


@dataclass
class _Window:
    started_at: float
    hits: int


def _client_ip(request: Request) -> str:
    # Behind ALB/CloudFront the first X-Forwarded-For hop is the caller.
    forwarded = (request.headers.get("x-forwarded-for") or "").strip()
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else "unknown"


class PortalRateLimitMiddleware(BaseHTTPMiddleware):
    """
    Fixed-window limiter for the public data-call portal.

    Keyed by client IP plus the first 8 characters of the access token so a
    single token cannot be brute-forced from one address. State is per process.
    """

    window_seconds = 60.0

    def __init__(self, app, *, requests_per_minute: int | None = None):
        super().__init__(app)
        rpm = requests_per_minute or int(settings.portal_rate_limit_rpm or 120)
        self.requests_per_minute = max(1, min(6000, rpm))
        self._windows: dict[str, _Window] = {}

    def _key(self, request: Request) -> str:
        token = str(request.query_params.get("token") or "").strip()
        return f"{_client_ip(request)}:{token[:8] or 'none'}"

    async def dispatch(self, request: Request, call_next) -> Response:
        if not request.url.path.startswith(PUBLIC_PORTAL_PREFIX):
            return await call_next(request)

        key = self._key(request)
        now = time.time()
        window = self._windows.get(key)
        if window is None or (now - window.started_at) >= self.window_seconds:
            window = _Window(started_at=now, hits=0)
            self._windows[key] = window

        window.hits += 1
        if window.hits > self.requests_per_minute:
            retry_after = int(max(1.0, self.window_seconds - (now - window.started_at)))
            log.warning("portal_rate_limited", path=request.url.path, retry_after=retry_after)
            resp = problem_response(
                request=request,
                status_code=429,
                detail="Too many requests",
            )
            resp.headers["Retry-After"] = str(retry_after)
            return resp

        return await call_next(request)
