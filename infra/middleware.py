# infra/middleware.py
"""
Security and performance middleware for the Split API
"""

import time
import logging
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses"""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        response.headers.update({
            "Strict-Transport-Security": "max-age=31536000; includeSubDomains; preload",
            "X-Content-Type-Options": "nosniff",
            "X-Frame-Options": "DENY",
            "Referrer-Policy": "strict-origin-when-cross-origin",
            "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none';"
        })

        return response

class TimingMiddleware(BaseHTTPMiddleware):
    """Server-Timing header plus one log line per request"""

    def __init__(self, app, slow_request_ms: float = 1000):
        super().__init__(app)
        self.slow_request_ms = slow_request_ms

    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            process_time = (time.perf_counter() - start_time) * 1000
            logger.error(f"Request failed: {request.method} {request.url.path} - {process_time:.1f}ms - {e}")
            raise

        process_time = (time.perf_counter() - start_time) * 1000
        response.headers["Server-Timing"] = f"app;dur={process_time:.1f}"

        if process_time > self.slow_request_ms:
            logger.warning(f"Slow request: {request.method} {request.url.path} took {process_time:.1f}ms")
        else:
            logger.info(f"Request: {request.method} {request.url.path} - {process_time:.1f}ms")

        return response

# ingest paths apply their own per-IP / per-key limits
RATE_LIMIT_EXEMPT_PREFIXES = ("/health", "/tasks/", "/api/track/", "/api/tracking/", "/api/crawler-events")

class RateLimitMiddleware(BaseHTTPMiddleware):
    """Fixed one-minute window per client IP"""

    def __init__(self, app, requests_per_minute: int = 120, exempt_prefixes: tuple = RATE_LIMIT_EXEMPT_PREFIXES):
        super().__init__(app)
        self.requests_per_minute = requests_per_minute
        self.exempt_prefixes = exempt_prefixes
        self.request_counts = {}
        self.window_start = time.time()

    async def dispatch(self, request: Request, call_next):
        if request.url.path.startswith(self.exempt_prefixes):
            return await call_next(request)

        now = time.time()
        client_ip = request.client.host if request.client else "unknown"

        if now - self.window_start > 60:
            self.request_counts.clear()
            self.window_start = now

        count = self.request_counts.get(client_ip, 0)
        if count >= self.requests_per_minute:
            logger.warning(f"Rate limit exceeded for IP: {client_ip}")
            return JSONResponse({"detail": "Too Many Requests"}, status_code=429)

        self.request_counts[client_ip] = count + 1

        return await call_next(request)
