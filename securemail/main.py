"""
FastAPI application entrypoint for the mail client bridge API.
"""

from __future__ import annotations

from fastapi import FastAPI

from securemail.api.routes import router as api_router
from securemail.core.config import get_settings
from securemail.core.logging import configure_logging


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Secure Mail Client Core",
        version="0.1.0",
        description="Local bridge API for provider sessions and hardware token keys.",
    )
    app.include_router(api_router, prefix="/api")
    return app


app = create_app()

__all__ = ["app", "create_app"]
