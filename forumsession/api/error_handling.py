from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from forumsession.api.schemas import SessionResult
from forumsession.logging import get_logger
from forumsession.service.errors import ServiceError

logger = get_logger(__name__)


def _error_response(status_code: int, message: str) -> JSONResponse:
    body = SessionResult(success=False, message=message)
    return JSONResponse(status_code=status_code, content=body.model_dump())


def register_exception_handlers(app: FastAPI) -> None:
    """Render session-layer errors as ``{"success": false, "message": ...}``."""

    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        log_fn = logger.error if exc.status_code >= 500 else logger.warning
        log_fn(
            "service_error",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            error_code=exc.error_code,
            message=exc.message,
        )
        return _error_response(exc.status_code, exc.message)
