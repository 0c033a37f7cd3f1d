"""HTTP middleware for cross-cutting concerns."""

from hiring_pipeline.middleware.cors import setup_cors
from hiring_pipeline.middleware.logging import LoggingMiddleware
from hiring_pipeline.middleware.rate_limit import limiter, setup_rate_limiting
from hiring_pipeline.middleware.request_id import RequestIDMiddleware

__all__ = [
    "RequestIDMiddleware",
    "LoggingMiddleware",
    "setup_cors",
    "setup_rate_limiting",
    "limiter",
]
