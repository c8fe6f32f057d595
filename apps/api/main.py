"""
FastAPI application entry point.

This module sets up the FastAPI application with all middleware,
routers, and configuration for production use.
"""
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from routers import care_circle, care_circle_shared
from core.config import settings
from core.database import check_db_connection
from core.logging import setup_logging
from core.exceptions import APIException
from core.rate_limit import RateLimitMiddleware
from core.security_headers import SecurityHeadersMiddleware
import logging
import time

# Setup logging first
setup_logging()
logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"

# Initialize Sentry for error tracking (production)
if settings.SENTRY_DSN:
    try:
        import sentry_sdk
        from sentry_sdk.integrations.fastapi import FastApiIntegration
        from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
        from sentry_sdk.integrations.redis import RedisIntegration

        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENVIRONMENT,
            traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
            profiles_sample_rate=settings.SENTRY_PROFILES_SAMPLE_RATE,
            integrations=[
                FastApiIntegration(transaction_style="endpoint"),
                SqlalchemyIntegration(),
                RedisIntegration(),
            ],
            # Don't send PII
            send_default_pii=False,
            before_send=lambda event, hint: _filter_sensitive_data(event),
        )
        logger.info(f"Sentry initialized for environment: {settings.ENVIRONMENT}")
    except ImportError:
        logger.warning("sentry-sdk not installed, error tracking disabled")
    except Exception as e:
        logger.error(f"Failed to initialize Sentry: {e}")


def _filter_sensitive_data(event):
    """Filter sensitive data before sending to Sentry."""
    request = event.get("request") or {}
    headers = request.get("headers")
    if isinstance(headers, dict):
        headers.pop("authorization", None)
        headers.pop("cookie", None)
    # Invite tokens travel in the path of the public routes.
    url = request.get("url")
    if isinstance(url, str) and "/care-circle/" in url:
        for marker in ("/invite/", "/accept/", "/decline/"):
            if marker in url:
                request["url"] = url.split(marker)[0] + marker + "[redacted]"
    return event


# Create FastAPI app
app = FastAPI(
    title="Care Circle API",
    description="Consent-based sharing of wellness data with trusted people",
    version=API_VERSION,
    docs_url="/docs" if (settings.DEBUG or settings.EXPOSE_API_DOCS) else None,
    redoc_url="/redoc" if (settings.DEBUG or settings.EXPOSE_API_DOCS) else None,
)

# CORS configuration
if settings.CORS_ORIGINS:
    allowed_origins = [origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()]
    allow_origin_regex = None
else:
    allowed_origins = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    allow_origin_regex = None
    if settings.ENVIRONMENT != "production":
        allow_origin_regex = r"^http://(localhost|127\.0\.0\.1|10\.\d+\.\d+\.\d+|192\.168\.\d+\.\d+)(:\d+)?$"
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_origin_regex=allow_origin_regex,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Security headers middleware (first in chain)
app.add_middleware(SecurityHeadersMiddleware)

# Rate limiting middleware (after CORS and security headers)
if settings.RATE_LIMIT_ENABLED:
    app.add_middleware(
        RateLimitMiddleware,
        default_limit=settings.RATE_LIMIT_PER_MINUTE,
        window=60  # 1 minute window
    )


def _loggable_path(path: str) -> str:
    """Request path with any invite token cut off."""
    for marker in ("/care-circle/invite/", "/care-circle/accept/", "/care-circle/decline/"):
        if path.startswith(marker):
            return marker + "{token}"
    return path


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all requests with timing information."""
    start_time = time.time()
    path = _loggable_path(request.url.path)

    logger.info(
        f"Request: {request.method} {path}",
        extra={
            "extra_fields": {
                "method": request.method,
                "path": path,
                "client_ip": request.client.host if request.client else None,
            }
        }
    )

    try:
        response = await call_next(request)
        process_time = time.time() - start_time

        logger.info(
            f"Response: {request.method} {path} - {response.status_code}",
            extra={
                "extra_fields": {
                    "method": request.method,
                    "path": path,
                    "status_code": response.status_code,
                    "process_time_ms": round(process_time * 1000, 2),
                }
            }
        )

        # Add timing header
        response.headers["X-Process-Time"] = str(process_time)
        return response
    except Exception as e:
        logger.error(
            f"Request failed: {request.method} {path}",
            exc_info=True,
            extra={
                "extra_fields": {
                    "method": request.method,
                    "path": path,
                    "error": str(e),
                }
            }
        )
        raise


@app.exception_handler(APIException)
async def api_exception_handler(request: Request, exc: APIException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "error_code": exc.error_code},
        headers=exc.headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed input is a 400 like every other validation failure."""
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": "Invalid request",
            "error_code": "VALIDATION_ERROR",
            "errors": jsonable_encoder(exc.errors()),
        },
    )


# Error handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors."""
    logger.error(
        f"Unhandled exception: {exc}",
        exc_info=True,
        extra={
            "extra_fields": {
                "method": request.method,
                "path": _loggable_path(request.url.path),
            }
        }
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


@app.get("/health")
async def health():
    """
    Simple health check for load balancers and uptime monitors.

    Returns:
        - 200: Core systems operational
        - 503: Critical dependency unavailable
    """
    db_healthy = check_db_connection()

    if not db_healthy:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "unhealthy",
                "database": "unavailable",
            }
        )

    return {
        "status": "healthy",
        "version": API_VERSION,
        "timestamp": time.time(),
    }


@app.get("/ping")
async def ping():
    """
    Minimal ping endpoint for uptime monitors.
    No dependencies checked - just confirms the API is responding.
    """
    return {"pong": True}


app.include_router(care_circle.router)
app.include_router(care_circle_shared.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.API_RELOAD,
    )
