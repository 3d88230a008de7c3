from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI

from forumsession.api.error_handling import register_exception_handlers
from forumsession.api.routes import router
from forumsession.config import Settings, get_settings
from forumsession.logging import get_logger, set_correlation_id

logger = get_logger(__name__)

__version__ = "0.1.0"


def create_app(
    settings: Optional[Settings] = None,
    *,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """Build the same-origin app serving the session cookie endpoints."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_client = http_client is None
        app.state.http_client = http_client or httpx.AsyncClient(
            timeout=settings.http_timeout_seconds
        )
        logger.info("session_app_started", env=settings.app_env.value)
        yield
        if owns_client:
            await app.state.http_client.aclose()
        logger.info("session_app_stopped")

    app = FastAPI(title="Forum Session", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    register_exception_handlers(app)
    app.include_router(router)

    @app.middleware("http")
    async def add_correlation_id(request, call_next):
        """Tag logs with the caller's X-Request-ID, or a fresh id."""
        correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
        response = await call_next(request)
        response.headers["X-Request-ID"] = correlation_id
        return response

    return app


app = create_app()
