"""FastAPI application entry point"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from app.core import otel
from app.core.config import settings
from app.core.errors import InvalidRequestError, UnlockError
from app.core.logging import setup_logging
from app.core.security import (
    SESSION_COOKIE, allowed_origins, check_rate_limit, get_client_identifier,
    log_api_access, validate_origin_referer
)
from app.db import redis as redis_store
from app.db.session import engine, init_db

# Import routers
from app.api import payments, surveys

setup_logging()

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("security")

# Called by Stripe or by anonymous respondents; no Origin check applies
PUBLIC_PATH_PREFIXES = (
    "/api/stripe/webhook",
    "/api/public/",
    "/metrics",
    "/health",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    if otel.initialize_otel():
        if otel.setup_otel_logging():
            logger.info(f"OpenTelemetry fully initialized, exporting to {settings.OTEL_EXPORTER_OTLP_ENDPOINT}")
        else:
            logger.warning("OpenTelemetry metrics/traces initialized but logging setup failed")
        otel.instrument_httpx()
        otel.instrument_sqlalchemy(engine)
    else:
        logger.info("OpenTelemetry not configured - running without distributed tracing")

    logger.info("Initializing database...")
    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    logger.info("Testing Redis connection...")
    try:
        redis_store.get_redis_client().ping()
        logger.info("Redis connection successful")
    except Exception as e:
        logger.error(f"Redis connection failed: {e}")
        raise

    yield

    logger.info("Shutting down...")


# Create FastAPI app
app = FastAPI(
    title="Survey Unlock Backend",
    description="Anonymous surveys with one-time paid unlock of responses",
    version="1.0.0",
    lifespan=lifespan
)

otel.instrument_fastapi(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(payments.router)
app.include_router(payments.stripe_router)  # Separate router for /api/stripe
app.include_router(surveys.router)
app.include_router(surveys.public_router)  # Separate router for /api/public/surveys


@app.middleware("http")
async def security_middleware(request: Request, call_next):
    """Rate limiting, Origin/Referer checks and API access logging

    Never reads the request body: the Stripe webhook needs the raw bytes.
    """
    path = request.url.path
    session_id = request.cookies.get(SESSION_COOKIE)
    status_code = 500
    error = None

    try:
        is_public_endpoint = path.startswith(PUBLIC_PATH_PREFIXES)
        is_state_changing = request.method in ["POST", "PATCH", "DELETE", "PUT"]

        # Rate limiting (Stripe retries on its own schedule)
        if path != "/api/stripe/webhook":
            identifier = get_client_identifier(request, session_id)
            if not check_rate_limit(identifier, strict=is_state_changing):
                status_code = 429
                error = "Rate limit exceeded"
                security_logger.warning(f"Rate limit exceeded - Identifier: {identifier}, Path: {path}")
                return JSONResponse(
                    status_code=429,
                    content={"error": "Rate limit exceeded. Please try again later.", "code": "RATE_LIMITED"}
                )

        # Origin/Referer validation
        if not is_public_endpoint and is_state_changing and not validate_origin_referer(request):
            status_code = 403
            error = "Invalid origin or referer"
            security_logger.warning(f"Origin/Referer validation failed - Path: {path}")
            return JSONResponse(
                status_code=403,
                content={"error": "Invalid origin or referer", "code": "FORBIDDEN"}
            )

        response = await call_next(request)
        status_code = response.status_code
        return response
    except Exception as e:
        error = str(e)
        security_logger.error(f"Security middleware error: {error}", exc_info=True)
        raise
    finally:
        log_api_access(request, session_id, status_code, error)


@app.exception_handler(UnlockError)
async def unlock_error_handler(request: Request, exc: UnlockError):
    """Render domain errors as {"error", "code"} with their mapped status"""
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.code} on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    error = InvalidRequestError("Invalid request body")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "code": "INTERNAL"}
    )


# Prometheus metrics endpoint
@app.get("/metrics")
def metrics_endpoint():
    """Prometheus metrics endpoint"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Health check endpoint
@app.get("/health")
def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}
