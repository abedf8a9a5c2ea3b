from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from contextlib import asynccontextmanager
from slowapi.errors import RateLimitExceeded
import logging
import time
import uuid

from . import __version__
from .config import settings
from .database import create_tables
from .services.scheduler import start_scheduler, stop_scheduler
from .utils.errors import BookingError
from .utils.logging_config import clear_request_context, set_request_context, setup_logging
from .utils.metrics import record_http_request
from .utils.rate_limiter import limiter

# Import all routers
from .routers import admin, health, me, metrics, provider_webhooks, reservations, units

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    setup_logging(settings.log_level, settings.log_json)

    logger.info(f"Starting marina booking backend {__version__}")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"CORS Origins: {settings.cors_origins}")

    create_tables()

    if settings.scheduler_enabled:
        start_scheduler()
    else:
        logger.warning("SCHEDULER_ENABLED=false, sweeps must be run by worker.py")

    yield

    logger.info("Shutting down marina booking backend...")
    stop_scheduler()


# Create FastAPI app
app = FastAPI(
    title="Marina Booking API",
    description="Lodging reservations with hold-based capacity and provider sync",
    version=__version__,
    lifespan=lifespan
)

# Rate limiter state
app.state.limiter = limiter


# ================================
# CORS MIDDLEWARE - MUST BE FIRST!
# ================================
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "X-Correlation-ID"],
)


# Security Headers Middleware
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


# Request ID Middleware
class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        correlation_id = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))
        request.state.request_id = request_id
        request.state.correlation_id = correlation_id
        set_request_context(request_id)

        start = time.time()
        try:
            response = await call_next(request)
        finally:
            clear_request_context()

        route = request.scope.get("route")
        record_http_request(
            request.method,
            getattr(route, "path", "unmatched"),
            response.status_code,
            time.time() - start
        )
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Correlation-ID"] = correlation_id
        return response


# Add other middleware AFTER CORS
app.add_middleware(RequestIdMiddleware)
app.add_middleware(SecurityHeadersMiddleware)


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    if exc.status_code >= 500:
        logger.error(f"[{getattr(request.state, 'request_id', '-')}] {exc!r}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ())[1:]) or None
    content = {
        "code": "invalid_argument",
        "message": first.get("msg", "Invalid request"),
        "errors": [
            {"loc": [str(part) for part in error.get("loc", ())], "msg": error.get("msg")}
            for error in errors
        ],
    }
    if field:
        content["field"] = field
    return JSONResponse(status_code=422, content=content)


# Rate limit handler
@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content={"code": "resource_exhausted", "message": "Too many requests, try again later"}
    )


# Include routers
app.include_router(reservations.router)
app.include_router(me.router)
app.include_router(units.router)
app.include_router(admin.router)
app.include_router(provider_webhooks.router)
app.include_router(health.router)
app.include_router(metrics.router)


@app.get("")
@app.get("/")
async def root():
    return {
        "message": "Marina Booking API",
        "version": __version__,
        "docs": "/docs",
        "status": "running"
    }
