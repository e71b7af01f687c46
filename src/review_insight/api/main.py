"""FastAPI application factory and entry point.

Creates the application instance, registers all middleware, wires the
slowapi rate limiter and mounts the route routers (including the
FastAPI-Users auth routers).

Usage::

    # Development server (from project root)
    uvicorn review_insight.api.main:app --reload

    # Production (Gunicorn + Uvicorn workers)
    gunicorn review_insight.api.main:app -k uvicorn.workers.UvicornWorker
"""

from __future__ import annotations

import time
import uuid
from typing import Callable

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from review_insight.api.limiter import limiter
from review_insight.api.metrics import (
    get_metrics_response,
    http_request_duration_seconds,
    http_requests_total,
)
from review_insight.config.settings import get_settings
from review_insight.core.error_handler import format_error_response
from review_insight.core.exceptions import AppAnalysisError
from review_insight.core.logging_config import configure_logging, request_id_var

# ---------------------------------------------------------------------------
# Logging configuration. Applied once at import time so that records
# emitted during app construction are captured; the level is re-applied
# inside create_app() once settings are loaded.
# ---------------------------------------------------------------------------

configure_logging("INFO")

logger = structlog.get_logger(__name__)


def _route_path(request: Request) -> str:
    """Return the matched route template so metric labels stay bounded."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:
    """Build and configure the FastAPI application.

    Separated from the module-level ``app`` singleton so that tests can
    call ``create_app()`` with a patched settings environment before the
    singleton is created.

    Returns:
        A fully configured ``FastAPI`` instance.
    """
    settings = get_settings()

    configure_logging(settings.log_level)

    application = FastAPI(
        title=settings.app_name,
        description=(
            "Scrapes App Store and Google Play reviews and turns them into "
            "LLM-generated issue reports and competitor comparisons."
        ),
        version="0.1.0",
        debug=settings.debug,
        redirect_slashes=False,
    )

    # ---- Rate limiting ----------------------------------------------------

    application.state.limiter = limiter
    application.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    application.add_middleware(SlowAPIMiddleware)

    # ---- Middleware --------------------------------------------------------

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,  # required for cookie-based auth
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---- Request logging middleware ----------------------------------------

    @application.middleware("http")
    async def request_logging_middleware(
        request: Request, call_next: Callable
    ) -> Response:
        """Log every request, record HTTP metrics and tag the response.

        Attaches a unique ``request_id`` to the structlog context so that all
        log lines emitted during a request can be correlated, and echoes it
        back in the ``X-Request-ID`` header.
        """
        request_id = str(uuid.uuid4())
        request_id_var.set(request_id)
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        start = time.perf_counter()
        response = None
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error("unhandled_exception", exc_info=exc)
            raise
        finally:
            elapsed = time.perf_counter() - start
            status_code = getattr(response, "status_code", 500)
            log_fn = logger.warning if status_code >= 400 else logger.info
            log_fn(
                "request_complete",
                status_code=status_code,
                elapsed_ms=round(elapsed * 1000, 2),
            )
            if settings.metrics_enabled:
                path = _route_path(request)
                http_requests_total.labels(
                    method=request.method, path=path, status=str(status_code)
                ).inc()
                http_request_duration_seconds.labels(
                    method=request.method, path=path
                ).observe(elapsed)

        response.headers["X-Request-ID"] = request_id
        return response

    # ---- Exception handlers -----------------------------------------------

    @application.exception_handler(AppAnalysisError)
    async def app_analysis_error_handler(
        request: Request, exc: AppAnalysisError
    ) -> JSONResponse:
        """Render catalogued analysis errors in the client error envelope."""
        return format_error_response(exc)

    # ---- Auth routers (FastAPI-Users + OAuth) -----------------------------

    from review_insight.api.routes.auth import auth_router, users_router  # noqa: PLC0415

    application.include_router(auth_router, prefix="/api/auth")
    application.include_router(users_router, prefix="/api/users")

    # ---- Application routers ----------------------------------------------

    from review_insight.api.routes import (  # noqa: PLC0415
        analyze,
        billing,
        browse,
        compare,
        data_sources,
        health as health_routes,
        schedule,
        user,
    )

    application.include_router(health_routes.router)
    application.include_router(analyze.router, prefix="/api/analyze", tags=["analysis"])
    application.include_router(compare.router, prefix="/api/compare", tags=["comparison"])
    application.include_router(browse.router, prefix="/api", tags=["discovery"])
    application.include_router(data_sources.router, prefix="/api", tags=["discovery"])
    application.include_router(schedule.router, prefix="/api", tags=["operations"])
    application.include_router(billing.router, prefix="/api", tags=["billing"])
    application.include_router(user.router, prefix="/api/user", tags=["user"])

    # ---- Lifecycle events -------------------------------------------------

    @application.on_event("startup")
    async def on_startup() -> None:
        """Log application startup information."""
        logger.info(
            "application_startup",
            app_name=settings.app_name,
            debug=settings.debug,
            log_level=settings.log_level,
            subscriptions_enabled=settings.enable_subscriptions,
        )

    @application.on_event("shutdown")
    async def on_shutdown() -> None:
        """Log clean shutdown."""
        logger.info("application_shutdown")

    # ---- Metrics endpoint -------------------------------------------------

    @application.get("/metrics", tags=["system"], include_in_schema=False)
    @limiter.exempt
    async def metrics() -> Response:
        """Expose Prometheus metrics in the text exposition format."""
        body, content_type = get_metrics_response()
        return Response(content=body, media_type=content_type)

    return application


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

app = create_app()
"""The FastAPI application instance.

This is the ASGI callable passed to Uvicorn / Gunicorn.
"""
