"""
API Middleware

- Request logging with a bound request id
- Per-client rate limiting
- Security headers
"""

import asyncio
import time
import uuid
from collections import defaultdict, deque
from typing import Callable, Deque, Dict, Iterable

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware

logger = structlog.get_logger(__name__)

REQUEST_COUNT = Counter(
    "nanoassist_http_requests_total",
    "HTTP requests served",
    ["method", "status"],
)

REQUEST_LATENCY = Histogram(
    "nanoassist_http_request_seconds",
    "HTTP request latency",
    ["method"],
)

# Probes and scrapes are not worth a log line each
QUIET_PATHS = ("/metrics", "/api/v1/health/live", "/api/v1/health/ready")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log each request with its duration and echo the request id"""
    
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        quiet = request.url.path.startswith(QUIET_PATHS)
        
        structlog.contextvars.bind_contextvars(request_id=request_id)
        try:
            if not quiet:
                logger.info("Request started", method=request.method, path=request.url.path)
            
            response = await call_next(request)
            
            elapsed = time.perf_counter() - start_time
            REQUEST_COUNT.labels(method=request.method, status=str(response.status_code)).inc()
            REQUEST_LATENCY.labels(method=request.method).observe(elapsed)
            
            if not quiet:
                logger.info(
                    "Request completed",
                    status_code=response.status_code,
                    duration_ms=round(elapsed * 1000, 2),
                )
        finally:
            structlog.contextvars.unbind_contextvars("request_id")
        
        response.headers["X-Response-Time"] = f"{elapsed * 1000:.2f}ms"
        response.headers["X-Request-ID"] = request_id
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Sliding-window rate limiter kept in process memory.
    
    Good enough for the single-worker dashboard server.
    """
    
    def __init__(
        self,
        app,
        max_requests: int = 100,
        window_seconds: int = 60,
        exempt_paths: Iterable[str] = QUIET_PATHS,
    ):
        super().__init__(app)
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.exempt_paths = tuple(exempt_paths)
        self._requests: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = asyncio.Lock()
    
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path.startswith(self.exempt_paths):
            return await call_next(request)
        
        client_id = request.client.host if request.client else "unknown"
        now = time.monotonic()
        
        async with self._lock:
            hits = self._requests[client_id]
            while hits and now - hits[0] >= self.window_seconds:
                hits.popleft()
            
            if len(hits) >= self.max_requests:
                logger.warning("Rate limit exceeded", client=client_id, requests=len(hits))
                return JSONResponse(
                    {"detail": "Rate limit exceeded"},
                    status_code=429,
                    headers={
                        "Retry-After": str(self.window_seconds),
                        "X-RateLimit-Limit": str(self.max_requests),
                        "X-RateLimit-Remaining": "0",
                    },
                )
            
            hits.append(now)
            remaining = self.max_requests - len(hits)
        
        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self.max_requests)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses"""
    
    HEADERS = {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
        "Referrer-Policy": "strict-origin-when-cross-origin",
        "Cache-Control": "no-store",
    }
    
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        for name, value in self.HEADERS.items():
            response.headers.setdefault(name, value)
        return response
