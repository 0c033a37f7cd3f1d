"""Rate limiting keyed by tenant."""

from fastapi import FastAPI
from slowapi import (
    Limiter,
    _rate_limit_exceeded_handler,  # type: ignore[reportPrivateUsage]
)
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.requests import Request


def company_or_remote_address(request: Request) -> str:
    """Rate limit key: the caller's company when known, else the client IP."""
    company_id = request.headers.get("X-Company-ID")
    if company_id:
        return f"company:{company_id}"
    return get_remote_address(request)


limiter = Limiter(key_func=company_or_remote_address)


def setup_rate_limiting(app: FastAPI) -> Limiter:
    """
    Attach the shared limiter to the application.

    Returns:
        Limiter instance used by route decorators
    """
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)  # type: ignore[reportUnknownMemberType]  # FastAPI handler
    return limiter
