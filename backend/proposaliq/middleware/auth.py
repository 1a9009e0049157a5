from __future__ import annotations

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from ..auth.cognito import CognitoAuthError, verify_bearer_token
from ..observability.logging import get_logger
from ..problem_details import problem_response

# Portal endpoints authenticate with the data call's opaque access token instead.
PUBLIC_PORTAL_PREFIX = "/api/portal/"


def is_public_path(path: str) -> bool:
    return path == "/" or path.startswith(PUBLIC_PORTAL_PREFIX)


def needs_bearer(request: Request) -> bool:
    path = request.url.path
    if request.method.upper() == "OPTIONS":
        return False
    return path.startswith("/api/") and not is_public_path(path)


def bearer_token(header: str | None) -> str | None:
    scheme, _, token = str(header or "").strip().partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token or " " in token:
        return None
    return token


class AuthMiddleware(BaseHTTPMiddleware):
    """
    Cognito bearer-token check for /api/*; sets request.state.user.

    Registered inside CORSMiddleware so 401 responses still carry CORS headers.
    """

    def __init__(self, app):
        super().__init__(app)
        self._log = get_logger("auth")

    def _deny(self, request: Request, status_code: int, detail: str):
        level = self._log.error if status_code >= 500 else self._log.info
        level("auth_denied", status_code=status_code, path=request.url.path)
        return problem_response(
            request=request,
            status_code=status_code,
            title="Unauthorized" if status_code == 401 else None,
            detail=detail,
        )

    async def dispatch(self, request: Request, call_next):
        if not needs_bearer(request):
            return await call_next(request)

        token = bearer_token(request.headers.get("authorization"))
        if token is None:
            return self._deny(request, 401, "Unauthorized")
        try:
            request.state.user = verify_bearer_token(token)
        except CognitoAuthError as e:
            return self._deny(request, int(e.status_code or 401), str(e))
        return await call_next(request)
