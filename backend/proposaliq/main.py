from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import Response

from .ai.client import AiError, AiNotConfigured
from .db.dynamodb.errors import DdbError, status_code_for
from .middleware.access_log import AccessLogMiddleware
from .middleware.auth import AuthMiddleware
from .middleware.cors import build_allowed_origin_regex, build_allowed_origins
from .middleware.portal_rate_limit import PortalRateLimitMiddleware
from .middleware.request_context import RequestContextMiddleware
from .observability.logging import configure_logging, get_logger
from .problem_details import problem_response
from .routers.data_calls import portal_router as data_call_portal_router
from .routers.data_calls import router as data_calls_router
from .routers.exports import router as exports_router
from .routers.files import router as files_router
from .routers.health import router as health_router
from .routers.kanban import router as kanban_router
from .routers.prompt_experiments import router as prompt_experiments_router
from .routers.proposals import router as proposals_router
from .routers.rag import router as rag_router
from .routers.sample_data import router as sample_data_router
from .settings import settings


def create_app() -> FastAPI:
    configure_logging()
    log = get_logger("startup")

    app = FastAPI(
        title="ProposalIQ Backend",
        version="1.0.0",
        default_response_class=ORJSONResponse,
        # /path and /path/ are distinct; proxies in front of us loop on redirects.
        redirect_slashes=False,
    )

    log.info("app_starting", settings=settings.to_log_safe_dict())

    # Last added is outermost.
    app.add_middleware(AuthMiddleware)
    app.add_middleware(PortalRateLimitMiddleware)
    app.add_middleware(AccessLogMiddleware, exclude_paths={"/"})
    app.add_middleware(
        CORSMiddleware,
        allow_origins=build_allowed_origins(
            frontend_base_url=settings.frontend_base_url,
            frontend_urls=settings.frontend_urls,
        ),
        allow_origin_regex=build_allowed_origin_regex(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With", "X-Request-Id"],
        max_age=3000,
    )
    app.add_middleware(RequestContextMiddleware)

    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(DdbError, _ddb_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(AiError, _ai_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _unhandled_exception_handler)

    app.include_router(health_router)
    app.include_router(proposals_router, prefix="/api/proposals")
    app.include_router(rag_router, prefix="/api/rag")
    app.include_router(files_router, prefix="/api/files")
    app.include_router(exports_router, prefix="/api/exports")
    app.include_router(kanban_router, prefix="/api/kanban")
    app.include_router(data_calls_router, prefix="/api/data-calls")
    app.include_router(data_call_portal_router, prefix="/api/portal")
    app.include_router(sample_data_router, prefix="/api/sample-data")
    app.include_router(prompt_experiments_router, prefix="/api/prompt-experiments")

    return app


def _ddb_error_handler(request: Request, exc: DdbError) -> Response:
    status_code = status_code_for(exc)
    get_logger("storage").warning(
        "storage_error",
        error_type=exc.__class__.__name__,
        status_code=status_code,
        **exc.log_fields(),
    )
    return problem_response(request=request, status_code=status_code, detail=str(exc))


def _ai_error_handler(request: Request, exc: AiError) -> Response:
    get_logger("ai").warning("ai_error", error_type=exc.__class__.__name__, error=str(exc))
    detail = "AI is not configured" if isinstance(exc, AiNotConfigured) else "AI service unavailable"
    return problem_response(request=request, status_code=503, detail=detail)


def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> Response:
    status_code = int(getattr(exc, "status_code", 500) or 500)
    detail = getattr(exc, "detail", None)
    message = str(detail) if detail is not None else None
    if status_code == 404 and not message:
        message = "Route not found"
    return problem_response(request=request, status_code=status_code, detail=message)


def _validation_error_handler(request: Request, exc: RequestValidationError) -> Response:
    errors: list[dict[str, object]] = []
    for e in exc.errors():
        loc = e.get("loc") or ()
        errors.append(
            {
                "path": ".".join(str(x) for x in loc if x != "body"),
                "message": e.get("msg", "Invalid value"),
                "type": e.get("type"),
            }
        )
    return problem_response(
        request=request,
        status_code=422,
        title="Validation Failed",
        detail="Request validation failed",
        errors=errors,
    )


def _unhandled_exception_handler(request: Request, exc: Exception) -> Response:
    user = getattr(getattr(request, "state", None), "user", None)
    get_logger("unhandled").error(
        "unhandled_exception",
        http_method=request.method.upper(),
        path=request.url.path,
        user_sub=getattr(user, "sub", None),
        exc_info=exc,
    )
    return problem_response(
        request=request,
        status_code=500,
        title="Internal Server Error",
        detail=str(exc) or exc.__class__.__name__,
    )


app = create_app()
