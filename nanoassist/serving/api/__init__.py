"""
API Module
"""
from .middleware import RateLimitMiddleware, RequestLoggingMiddleware, SecurityHeadersMiddleware

__all__ = [
    "RateLimitMiddleware",
    "RequestLoggingMiddleware",
    "SecurityHeadersMiddleware",
]
