"""Main FastAPI application."""
import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from digipay.api.admin import router as admin_router
from digipay.api.market import router as market_router
from digipay.api.messages import router as messages_router
from digipay.api.users import router as users_router
from digipay.api.wallet import router as wallet_router
from digipay.domain.common.errors import (
    AuthorizationError as DomainAuthorizationError,
    ConflictError as DomainConflictError,
    ExternalServiceError,
    NotFoundError as DomainNotFoundError,
    ValidationError as DomainValidationError,
)
from digipay.infra.db import base as db_base
from digipay.infra.messaging.redis_bus import redis_bus
from digipay.settings import settings

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Schema is owned by Alembic; only check connectivity here
    if db_base.engine is not None:
        try:
            async with db_base.engine.connect():
                pass
        except Exception as e:
            logger.warning(f"Could not connect to database during startup: {e}")

    try:
        await redis_bus.connect()
    except Exception as e:
        # Trade events are a side channel; the API works without Redis
        logger.warning(f"Could not connect to Redis during startup: {e}")

    yield

    try:
        await redis_bus.disconnect()
        if db_base.engine is not None:
            await db_base.engine.dispose()
    except asyncio.CancelledError:
        logger.info("Lifespan shutdown cancelled (e.g. Ctrl+C); cleanup attempted.")
        raise


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to log all requests and responses."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        logger.info(f"📥 [SERVER REQUEST] {request.method} {request.url.path}")
        logger.debug(f"   Query params: {dict(request.query_params)}")
        if request.headers:
            # Don't log authorization header fully
            headers = dict(request.headers)
            if 'authorization' in headers:
                auth_header = headers['authorization']
                if auth_header.startswith('Bearer '):
                    token = auth_header[7:]
                    headers['authorization'] = f'Bearer {token[:20]}...' if len(token) > 20 else 'Bearer ***'
            logger.debug(f"   Headers: {headers}")

        response = await call_next(request)

        process_time = time.time() - start_time
        logger.info(f"📤 [SERVER RESPONSE] {request.method} {request.url.path} - {response.status_code} ({process_time:.3f}s)")
        return response


# Add logging middleware AFTER CORS (CORS must be first)
app.add_middleware(LoggingMiddleware)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle validation errors with detailed logging."""
    logger.error(f"❌ [VALIDATION ERROR] {request.method} {request.url.path}")

    if hasattr(exc, 'body') and exc.body:
        try:
            body_str = exc.body.decode('utf-8') if isinstance(exc.body, bytes) else str(exc.body)
            logger.error(f"   Request body: {body_str}")
        except Exception as e:
            logger.error(f"   Could not decode request body: {e}")

    errors = exc.errors()
    logger.error(f"   Validation errors ({len(errors)}):")
    for i, error in enumerate(errors, 1):
        logger.error(f"   Error {i}: {json.dumps(error, indent=2, default=str)}")

    return JSONResponse(
        status_code=422,
        content={"detail": json.loads(json.dumps(errors, default=str))},
    )


# Domain error handlers: map domain exceptions to correct HTTP status

@app.exception_handler(DomainNotFoundError)
async def domain_not_found_handler(request: Request, exc: DomainNotFoundError):
    """Return 404 when a resource is not found."""
    return JSONResponse(
        status_code=404,
        content={"detail": str(exc)},
    )


@app.exception_handler(DomainAuthorizationError)
async def domain_authorization_handler(request: Request, exc: DomainAuthorizationError):
    """Return 403 when the user is not authorized."""
    return JSONResponse(
        status_code=403,
        content={"detail": exc.message},
    )


@app.exception_handler(DomainValidationError)
async def domain_validation_handler(request: Request, exc: DomainValidationError):
    """Return 400 for domain validation errors (bad amount, out of range, insufficient funds...)."""
    return JSONResponse(
        status_code=400,
        content={"detail": exc.message, "error": type(exc).__name__},
    )


@app.exception_handler(DomainConflictError)
async def domain_conflict_handler(request: Request, exc: DomainConflictError):
    """Return 409 for conflict and invalid-state errors."""
    return JSONResponse(
        status_code=409,
        content={"detail": exc.message, "error": type(exc).__name__},
    )


@app.exception_handler(ExternalServiceError)
async def external_service_handler(request: Request, exc: ExternalServiceError):
    """Return 502 with a generic retryable message; details stay in the log."""
    logger.error(f"❌ [EXTERNAL] {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=502,
        content={"detail": "Upstream service unavailable, please retry"},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"❌ [SERVER ERROR] {request.method} {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# Health check (root and under /v1 so GET /v1/health works when Nginx proxies with /v1 prefix)
@app.get("/health")
@app.get(f"{settings.api_v1_prefix}/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "version": settings.app_version}


@app.get("/ready")
async def readiness():
    """Readiness endpoint: run all checks and return 200 if ready, 503 otherwise."""
    from digipay.readiness import is_ready, run_all_checks_async
    checks = await run_all_checks_async()
    ready, summary = is_ready(checks)
    if ready:
        return {"ready": True, "checks": summary}
    return JSONResponse(
        status_code=503,
        content={"ready": False, "checks": summary},
    )


# API v1 routes
app.include_router(users_router, prefix=settings.api_v1_prefix)
app.include_router(market_router, prefix=settings.api_v1_prefix)
app.include_router(messages_router, prefix=settings.api_v1_prefix)
app.include_router(wallet_router, prefix=settings.api_v1_prefix)
app.include_router(admin_router, prefix=settings.api_v1_prefix)
