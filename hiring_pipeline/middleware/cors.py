"""CORS middleware configuration."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from hiring_pipeline.core.config import settings

IDENTITY_HEADERS = ["X-User-ID", "X-User-Role", "X-Company-ID"]


def setup_cors(app: FastAPI) -> None:
    """Allow the configured frontend origins to call the API."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.frontend_urls,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Content-Type", "X-Request-ID", *IDENTITY_HEADERS],
        expose_headers=["X-Request-ID"],
    )
