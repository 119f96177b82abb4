"""Middleware registration."""

from fastapi import FastAPI

from runcoin.config import Settings
from runcoin.middleware.cors import setup_cors
from runcoin.middleware.error_handler import setup_error_handlers
from runcoin.middleware.logging import setup_logging
from runcoin.middleware.rate_limit import RateLimitMiddleware
from runcoin.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register all middleware in the correct order.

    Starlette runs middleware in reverse-add order (last added = outermost),
    so CORS wraps the 429 responses produced by the rate limiter.
    """
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(
        RateLimitMiddleware,
        requests_per_window=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
