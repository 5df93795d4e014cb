import asyncio
import contextlib
import logging
import time
import uuid
from typing import Callable

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.api.routes_analytics import router as analytics_router
from app.api.routes_health import router as health_router
from app.domain.analytics.cache import AnalyticsCache
from app.domain.analytics.invalidation import AnalyticsInvalidationHook
from app.domain.analytics.repository import SqlAlchemyAnalyticsRepository
from app.domain.analytics.service import AnalyticsService
from app.domain.errors import DomainError
from app.infra.db import dispose_engine, get_session_factory
from app.infra.logging import configure_logging
from app.infra.metrics import configure_metrics
from app.jobs.cache_sweeper import run_cache_sweeper
from app.settings import settings

PROBLEM_TYPE_VALIDATION = "https://example.com/problems/validation-error"
PROBLEM_TYPE_DOMAIN = "https://example.com/problems/domain-error"
PROBLEM_TYPE_SERVER = "https://example.com/problems/server-error"

logger = logging.getLogger(__name__)


def problem_details(
    request: Request,
    status: int,
    title: str,
    detail: str,
    errors: list[dict[str, str]] | None = None,
    type_: str = "about:blank",
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    content = {
        "type": type_,
        "title": title,
        "status": status,
        "detail": detail,
        "request_id": getattr(request.state, "request_id", None),
        "errors": errors or [],
    }
    return JSONResponse(status_code=status, content=content, headers=headers)


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        request_logger = logging.getLogger("app.request")
        start = time.time()
        response = await call_next(request)
        latency_ms = int((time.time() - start) * 1000)
        request_logger.info(
            "request",
            extra={
                "extra": {
                    "request_id": getattr(request.state, "request_id", None),
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "latency_ms": latency_ms,
                }
            },
        )
        return response


def build_analytics(app_settings, session_factory) -> tuple[AnalyticsCache, AnalyticsService, AnalyticsInvalidationHook]:
    cache = AnalyticsCache(default_ttl_seconds=app_settings.analytics_cache_default_ttl_seconds)
    repository = SqlAlchemyAnalyticsRepository(session_factory)
    service = AnalyticsService.from_settings(repository, cache, app_settings)
    return cache, service, AnalyticsInvalidationHook(cache)


def create_app(app_settings, session_factory=None) -> FastAPI:
    configure_logging(app_settings.log_level)
    app = FastAPI(title="Transit Booking Analytics", version="1.0.0")

    session_factory = session_factory or get_session_factory()
    cache, service, invalidation = build_analytics(app_settings, session_factory)
    app.state.app_settings = app_settings
    app.state.db_session_factory = session_factory
    app.state.metrics = configure_metrics(app_settings.metrics_enabled)
    app.state.analytics_cache = cache
    app.state.analytics_service = service
    app.state.analytics_invalidation = invalidation
    app.state.cache_sweeper_task = None

    @app.on_event("startup")
    async def start_cache_sweeper() -> None:
        if app_settings.testing:
            return
        app.state.cache_sweeper_task = asyncio.create_task(
            run_cache_sweeper(cache, app_settings.analytics_cache_cleanup_seconds)
        )
        logger.info(
            "analytics_cache_sweeper_started",
            extra={"extra": {"interval_seconds": app_settings.analytics_cache_cleanup_seconds}},
        )

    @app.on_event("shutdown")
    async def stop_cache_sweeper() -> None:
        task = app.state.cache_sweeper_task
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            app.state.cache_sweeper_task = None
        cache.clear()
        await dispose_engine()

    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIdMiddleware)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = []
        for error in exc.errors():
            loc = error.get("loc", [])
            field = ".".join(str(part) for part in loc if part not in {"body", "query", "path"}) or "query"
            errors.append({"field": field, "message": error.get("msg", "Invalid value")})
        return problem_details(
            request=request,
            status=422,
            title="Validation Error",
            detail="Request validation failed",
            errors=errors,
            type_=PROBLEM_TYPE_VALIDATION,
        )

    @app.exception_handler(DomainError)
    async def domain_exception_handler(request: Request, exc: DomainError):
        return problem_details(
            request=request,
            status=400,
            title=exc.title,
            detail=exc.detail,
            errors=exc.errors or [],
            type_=exc.type or PROBLEM_TYPE_DOMAIN,
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return problem_details(
            request=request,
            status=exc.status_code,
            title=exc.detail if isinstance(exc.detail, str) else "HTTP Error",
            detail=exc.detail if isinstance(exc.detail, str) else "Request failed",
            type_=PROBLEM_TYPE_DOMAIN if exc.status_code < 500 else PROBLEM_TYPE_SERVER,
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception(
            "unhandled_exception",
            extra={
                "extra": {
                    "request_id": getattr(request.state, "request_id", None),
                    "path": request.url.path,
                }
            },
        )
        return problem_details(
            request=request,
            status=500,
            title="Internal Server Error",
            detail="Unexpected error",
            type_=PROBLEM_TYPE_SERVER,
        )

    app.include_router(health_router)
    app.include_router(analytics_router)
    return app


app = create_app(settings)
