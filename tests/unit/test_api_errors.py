"""Tests for API error handling."""

import asyncpg
import pytest
from fastapi import FastAPI, HTTPException
from httpx import ASGITransport, AsyncClient
from pydantic import BaseModel

from hiring_pipeline.api.errors import setup_exception_handlers
from hiring_pipeline.core.errors import (
    AuthorizationError,
    ConflictError,
    DatabaseError,
    NotFoundError,
    ValidationError,
    service_boundary,
)
from hiring_pipeline.middleware.request_id import RequestIDMiddleware


class SampleInput(BaseModel):
    """Sample input model for validation."""

    name: str
    position: int


def build_app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(RequestIDMiddleware)
    setup_exception_handlers(app)
    return app


async def call(app: FastAPI, path: str = "/test"):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        return await client.get(path)


@pytest.mark.asyncio
async def test_http_exception_standardized():
    """HTTPException returns standardized error format."""
    app = build_app()

    @app.get("/test")
    async def test_route():
        raise HTTPException(status_code=401, detail="Missing caller identity headers")

    response = await call(app)

    assert response.status_code == 401
    data = response.json()
    assert data["error"]["code"] == "HTTP_401"
    assert data["error"]["message"] == "Missing caller identity headers"
    assert "request_id" in data["error"]


@pytest.mark.asyncio
async def test_request_validation_error_standardized():
    """Pydantic validation errors return standardized format."""
    app = build_app()

    @app.post("/test")
    async def test_route(data: SampleInput):
        return {"status": "ok"}

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post("/test", json={"name": "Interview"})  # Missing position

    assert response.status_code == 422
    data = response.json()
    assert data["error"]["code"] == "VALIDATION_ERROR"
    assert data["error"]["details"][0]["loc"] == ["body", "position"]


@pytest.mark.asyncio
async def test_error_includes_request_id():
    """All errors include request_id from RequestIDMiddleware."""
    app = build_app()

    @app.get("/test")
    async def test_route():
        raise HTTPException(status_code=400, detail="Bad request")

    response = await call(app)

    assert response.headers.get("X-Request-ID") is not None
    assert response.headers["X-Request-ID"] == response.json()["error"]["request_id"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("error", "status_code", "code"),
    [
        (NotFoundError("Job"), 404, "NOT_FOUND"),
        (AuthorizationError(), 403, "AUTHORIZATION_ERROR"),
        (ConflictError("Candidate already applied to this job"), 409, "CONFLICT"),
        (DatabaseError("Connection failed"), 500, "DATABASE_ERROR"),
    ],
)
async def test_domain_error_status_mapping(error, status_code, code):
    """Domain error codes map to HTTP statuses."""
    app = build_app()

    @app.get("/test")
    async def test_route():
        raise error

    response = await call(app)

    assert response.status_code == status_code
    data = response.json()
    assert data["error"]["code"] == code
    assert data["error"]["message"] == error.message


@pytest.mark.asyncio
async def test_validation_error_always_carries_fields(monkeypatch):
    """Field-level messages are returned even when details are hidden."""
    from hiring_pipeline.core import config

    monkeypatch.setattr(config.settings, "expose_error_details", False)
    app = build_app()

    @app.get("/test")
    async def test_route():
        raise ValidationError({"threshold_days": ["must be a positive integer"]})

    response = await call(app)

    assert response.status_code == 422
    assert response.json()["error"]["details"] == {
        "fields": {"threshold_days": ["must be a positive integer"]}
    }


@pytest.mark.asyncio
async def test_error_details_exposed_when_configured(monkeypatch):
    """Error context included when expose_error_details=True."""
    from hiring_pipeline.core import config

    monkeypatch.setattr(config.settings, "expose_error_details", True)
    app = build_app()

    @app.get("/test")
    async def test_route():
        raise NotFoundError("Stage", context={"stage_id": "abc-123"})

    response = await call(app)

    data = response.json()
    assert response.status_code == 404
    assert data["error"]["message"] == "Stage not found"
    assert data["error"]["details"] == {"stage_id": "abc-123"}


@pytest.mark.asyncio
async def test_error_details_hidden_when_configured(monkeypatch):
    """Error context omitted when expose_error_details=False."""
    from hiring_pipeline.core import config

    monkeypatch.setattr(config.settings, "expose_error_details", False)
    app = build_app()

    @app.get("/test")
    async def test_route():
        raise NotFoundError("Stage", context={"stage_id": "abc-123"})

    response = await call(app)

    assert response.status_code == 404
    assert "details" not in response.json()["error"]


@pytest.mark.asyncio
async def test_decorator_converts_asyncpg_to_database_error():
    """@service_boundary converts asyncpg errors to DatabaseError."""

    @service_boundary
    async def failing_db_operation():
        raise asyncpg.PostgresError("Connection timeout")  # type: ignore[attr-defined]

    with pytest.raises(DatabaseError) as exc_info:
        await failing_db_operation()

    assert "Connection timeout" in str(exc_info.value)
    assert exc_info.value.context["function"] == "failing_db_operation"


@pytest.mark.asyncio
async def test_decorator_passes_through_domain_errors():
    """@service_boundary doesn't wrap existing domain errors."""

    @service_boundary
    async def already_domain_error():
        raise ConflictError("Mandatory stage 'Offer' cannot be deleted")

    with pytest.raises(ConflictError):
        await already_domain_error()


def test_unexpected_error_handler_registered():
    """The catch-all handler is registered for unexpected exceptions."""
    from hiring_pipeline.api.errors import general_exception_handler

    app = build_app()

    assert app.exception_handlers[Exception] is general_exception_handler


@pytest.mark.asyncio
async def test_unexpected_error_returns_opaque_500():
    """Unexpected exceptions do not leak their message."""
    import json
    from unittest.mock import MagicMock

    from hiring_pipeline.api.errors import general_exception_handler

    request = MagicMock()
    request.state.request_id = "req-7"

    response = await general_exception_handler(request, RuntimeError("pool exhausted"))

    assert response.status_code == 500
    assert json.loads(response.body) == {
        "error": {
            "code": "INTERNAL_ERROR",
            "message": "An unexpected error occurred",
            "request_id": "req-7",
        }
    }
