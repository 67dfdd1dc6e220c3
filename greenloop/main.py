"""
FastAPI entry point
"""
import logging
import time
import uuid
from contextlib import asynccontextmanager
from fastapi import FastAPI, Response, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration

from greenloop.config import get_settings
from greenloop.database import init_db
from greenloop.exceptions import PointOperationError
from greenloop.routers import points, point_rules
from greenloop.utils.request_context import request_id_ctx_var, RequestIdFilter, JsonFormatter
from greenloop.utils.metrics import REQUEST_COUNT, REQUEST_LATENCY, IN_PROGRESS, get_route_name

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings.validate_secrets()
    await init_db()
    yield


app = FastAPI(
    title="GreenLoop Points API",
    description="Sustainability points ledger for the GreenLoop marketplace",
    version="1.0.0",
    lifespan=lifespan,
)


def _error_response(status_code: int, message, code, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"status": "error", "message": message, "code": code, **extra},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    headers = getattr(exc, "headers", None) or {}
    return _error_response(
        exc.status_code,
        exc.detail,
        headers.get("X-Error-Code", exc.status_code),
    )


@app.exception_handler(PointOperationError)
async def point_error_handler(request: Request, exc: PointOperationError):
    logger.warning("Unhandled point operation error: %s", exc.message)
    return _error_response(exc.status_code, exc.message, exc.error_code)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return _error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation Error",
        422,
        details=jsonable_encoder(exc.errors()),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("Global exception: %s", exc, exc_info=True)
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal Server Error",
        500,
    )


@app.middleware("http")
async def request_context_middleware(request, call_next):
    request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
    request.state.request_id = request_id
    token = request_id_ctx_var.set(request_id)
    response = None
    start = time.perf_counter()
    if settings.metrics_enabled:
        IN_PROGRESS.inc()

    try:
        response = await call_next(request)
        return response
    finally:
        duration = time.perf_counter() - start
        path = get_route_name(request.scope)
        status_code = response.status_code if response else 500
        if settings.metrics_enabled:
            REQUEST_COUNT.labels(request.method, path, str(status_code)).inc()
            REQUEST_LATENCY.labels(request.method, path).observe(duration)
            IN_PROGRESS.dec()
        request_id_ctx_var.reset(token)
        if response is not None:
            response.headers["X-Request-ID"] = request_id


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    expose_headers=["X-Request-ID", "X-Error-Code"],
)

app.include_router(points.router, prefix="/api/v1/points", tags=["points"])
app.include_router(point_rules.router, prefix="/api/v1/point-rules", tags=["point-rules"])


@app.get("/api/v1/health")
async def health_check():
    return {"status": "ok"}


@app.get("/metrics")
async def metrics():
    if not settings.metrics_enabled:
        return Response(status_code=status.HTTP_404_NOT_FOUND)
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


def configure_logging() -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    handler.addFilter(RequestIdFilter())

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.log_level)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers = [handler]
        uvicorn_logger.setLevel(settings.log_level)
        uvicorn_logger.propagate = False


def init_sentry() -> None:
    if settings.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.environment,
            integrations=[FastApiIntegration()],
            traces_sample_rate=settings.sentry_traces_sample_rate,
            profiles_sample_rate=settings.sentry_profiles_sample_rate,
        )


configure_logging()
init_sentry()
