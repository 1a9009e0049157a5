from __future__ import annotations

from .auth import AuthMiddleware
from .request_context import RequestContextMiddleware

__all__ = ["AuthMiddleware", "RequestContextMiddleware"]
