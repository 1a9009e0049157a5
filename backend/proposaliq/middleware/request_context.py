from __future__ import annotations

import re
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from ..observability.context import request_id_var

REQUEST_ID_HEADER = "X-Request-Id"

_SAFE_REQUEST_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def resolve_request_id(inbound: str | None) -> str:
    """Keep a caller-supplied id only when it is a short printable token."""
    candidate = str(inbound or "").strip()
    return candidate if _SAFE_REQUEST_ID.match(candidate) else uuid.uuid4().hex


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Binds the request id to request.state and the logging contextvar, and echoes it back."""

    async def dispatch(self, request: Request, call_next):
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        reset_token = request_id_var.set(request_id)
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(reset_token)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
