"""
Security Headers Middleware

Adds standard hardening headers to every response. Shared-data responses
carry a patient's wellness data, so they are also marked non-cacheable.
"""
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from core.config import settings


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Headers added:
    - X-Content-Type-Options: Prevents MIME type sniffing
    - X-Frame-Options: Prevents clickjacking
    - Referrer-Policy: Invite tokens live in URLs; never leak them cross-origin
    - Cache-Control: no-store on Care Circle routes
    - Strict-Transport-Security / Content-Security-Policy: production only
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"

        if request.url.path.startswith("/care-circle"):
            response.headers["Cache-Control"] = "no-store"

        if not settings.DEBUG:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
            response.headers["Content-Security-Policy"] = (
                "default-src 'none'; frame-ancestors 'none';"
            )

        return response
