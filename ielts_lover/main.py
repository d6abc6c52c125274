"""
Main Application - FastAPI application setup.
"""

import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from ielts_lover.api.admin_routes import router as admin_router
from ielts_lover.api.routes import router
from ielts_lover.config import settings
from ielts_lover.container import build_container
from ielts_lover.db.session import create_engine_from_settings, create_session_factory
from ielts_lover.exceptions import AuthenticationError, ErrorKind, ServiceError
from ielts_lover.observability import get_logger, metrics, setup_logging, setup_tracing
from ielts_lover.observability.tracing import instrument_fastapi, instrument_sqlalchemy
from ielts_lover.services.ai import HttpAIService

# Setup logging before anything else
setup_logging()
logger = get_logger(__name__)

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.INSUFFICIENT_FUNDS: 402,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INVALID_REQUEST: 400,
    ErrorKind.INTERNAL: 500,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan manager.

    Builds the service graph on startup unless one was injected.
    """
    logger.info(
        "application_starting",
        service=settings.api_title,
        version=settings.api_version,
        tracing_enabled=settings.tracing_enabled,
        metrics_enabled=settings.metrics_enabled,
    )

    if getattr(app.state, "container", None) is not None:
        yield
        logger.info("application_shutting_down")
        return

    engine = create_engine_from_settings(settings)
    instrument_sqlalchemy(engine)
    ai_service = HttpAIService(
        base_url=settings.ai_service_url,
        api_key=settings.ai_service_api_key,
        timeout=settings.ai_timeout_seconds,
    )
    app.state.container = build_container(create_session_factory(engine), ai_service, settings)

    yield

    logger.info("application_shutting_down")
    await ai_service.close()
    await engine.dispose()
    logger.info("database_engine_closed")


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=settings.api_description,
    lifespan=lifespan,
)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Map error kinds to status codes."""
    status_code = STATUS_BY_KIND[exc.kind]
    if status_code >= 500:
        metrics.record_error(type(exc).__name__, request.url.path)
        logger.error("service_error", path=request.url.path, error=str(exc))
        detail = "Internal error"
    else:
        detail = str(exc)

    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthenticationError) else None
    return JSONResponse(status_code=status_code, content={"detail": detail}, headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Log validation errors for debugging."""
    sanitized_errors = [
        {"type": error.get("type"), "loc": error.get("loc"), "msg": error.get("msg")}
        for error in exc.errors()
    ]
    logger.warning(
        "validation_error",
        path=request.url.path,
        method=request.method,
        errors=sanitized_errors,
    )
    return JSONResponse(status_code=422, content={"detail": sanitized_errors})


# Setup tracing
setup_tracing()
instrument_fastapi(app)


# Request logging middleware
@app.middleware("http")
async def logging_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Log all HTTP requests with timing."""
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", "unknown")

    endpoint = request.url.path
    method = request.method
    metrics.http_requests_in_progress.labels(endpoint=endpoint, method=method).inc()

    try:
        response = await call_next(request)
        duration = time.time() - start_time
        # Route template keeps label cardinality bounded
        route = request.scope.get("route")
        template = getattr(route, "path", endpoint)

        metrics.record_http_request(template, method, response.status_code, duration)
        logger.info(
            "request_completed",
            method=method,
            path=endpoint,
            status_code=response.status_code,
            duration_seconds=duration,
            request_id=request_id,
        )
        return response
    except Exception as e:
        duration = time.time() - start_time
        metrics.record_http_request(endpoint, method, 500, duration)
        metrics.record_error(type(e).__name__, "http_request")
        logger.error(
            "request_failed",
            method=method,
            path=endpoint,
            error=str(e),
            duration_seconds=duration,
            request_id=request_id,
            exc_info=True,
        )
        raise
    finally:
        metrics.http_requests_in_progress.labels(endpoint=endpoint, method=method).dec()


# Register routes
app.include_router(router)
app.include_router(admin_router)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": settings.api_title,
        "version": settings.api_version,
        "status": "running",
    }


@app.get("/metrics")
async def prometheus_metrics() -> PlainTextResponse:
    """Prometheus scrape endpoint."""
    if not settings.metrics_enabled:
        return PlainTextResponse("metrics disabled", status_code=404)
    return PlainTextResponse(generate_latest(), media_type=CONTENT_TYPE_LATEST)
