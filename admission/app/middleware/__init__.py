"""Middleware package for the admission service."""

from admission.app.middleware.auth import require_admin
from admission.app.middleware.rate_limit import (
    RateLimit,
    RateLimitHeadersMiddleware,
    RateLimitInterceptor,
    RateLimitMiddleware,
    install_rate_limiting,
)
from admission.app.middleware.request_id import RequestIdMiddleware, get_request_id

__all__ = [
    "require_admin",
    "RateLimit",
    "RateLimitHeadersMiddleware",
    "RateLimitInterceptor",
    "RateLimitMiddleware",
    "install_rate_limiting",
    "RequestIdMiddleware",
    "get_request_id",
]
