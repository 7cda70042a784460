"""Security headers middleware.

Learn: The API only ever serves JSON and CSV, so the content policy can be
locked down completely: nothing may be framed, scripted, or embedded.
Auth responses carry tokens and are never cached.
HSTS is only sent on HTTPS connections.
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

API_CSP = "default-src 'none'; frame-ancestors 'none'"
NO_STORE_PREFIX = "/api/v1/auth"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next) -> Response:
        response: Response = await call_next(request)
        headers = response.headers
        headers["X-Content-Type-Options"] = "nosniff"
        headers["X-Frame-Options"] = "DENY"
        headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        headers["Cross-Origin-Resource-Policy"] = "same-site"
        # Swagger UI needs scripts; everything else is data.
        if not request.url.path.startswith(("/docs", "/redoc")):
            headers["Content-Security-Policy"] = API_CSP
        if request.url.path.startswith(NO_STORE_PREFIX):
            headers["Cache-Control"] = "no-store"
        if request.url.scheme == "https":
            headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response
