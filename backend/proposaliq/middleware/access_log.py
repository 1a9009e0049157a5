from __future__ import annotations

import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from ..observability.logging import get_logger


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000.0, 2)


def _request_fields(request: Request) -> dict[str, object]:
    user = getattr(request.state, "user", None)
    client = request.client
    return {
        "http_method": request.method.upper(),
        # Path only: portal links carry their access token in the query string.
        "path": request.url.path,
        "client_ip": client.host if client else None,
        "user_sub": getattr(user, "sub", None),
    }


class AccessLogMiddleware(BaseHTTPMiddleware):
    """One `request` line per call; 5xx responses are logged at warning level."""

    def __init__(self, app, *, exclude_paths: set[str] | None = None):
        super().__init__(app)
        self._exclude = frozenset(exclude_paths or ())
        self._log = get_logger("access")

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self._exclude:
            return await call_next(request)

        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            self._log.exception("request_error", duration_ms=_elapsed_ms(start), **_request_fields(request))
            raise

        status_code = int(response.status_code or 0)
        emit = self._log.warning if status_code >= 500 else self._log.info
        emit("request", status_code=status_code, duration_ms=_elapsed_ms(start), **_request_fields(request))
        return response
