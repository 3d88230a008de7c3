from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from forumsession.api.schemas import ServerAuthResponse, SessionResult
from forumsession.config import Settings
from forumsession.logging import get_logger
from forumsession.service.errors import ValidationError
from forumsession.service.server_auth import resolve_server_auth

logger = get_logger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _settings(request: Request) -> Settings:
    return request.app.state.settings


def _session_response(settings: Settings, value: str, max_age: int) -> JSONResponse:
    response = JSONResponse(SessionResult(success=True).model_dump(exclude_none=True))
    response.set_cookie(
        settings.auth_cookie_name,
        value,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        max_age=max_age,
        path="/",
    )
    return response


@router.post("/session", response_model=SessionResult)
async def set_session_cookie(request: Request):
    """Mirror the client's bearer token into the HttpOnly session cookie."""
    try:
        payload = await request.json()
    except ValueError:
        raise ValidationError("Invalid request payload")

    token = payload.get("token") if isinstance(payload, dict) else None
    if not token or not isinstance(token, str):
        raise ValidationError("Token is required")

    settings = _settings(request)
    logger.info("session_cookie_set")
    return _session_response(settings, token, settings.auth_cookie_max_age)


@router.delete("/session", response_model=SessionResult)
async def clear_session_cookie(request: Request):
    logger.info("session_cookie_cleared")
    return _session_response(_settings(request), "", 0)


@router.get("/state", response_model=ServerAuthResponse)
async def server_auth_state(request: Request) -> ServerAuthResponse:
    """Resolve the cookie identity for the server-rendered page seed."""
    settings = _settings(request)
    state = await resolve_server_auth(
        request.cookies.get(settings.auth_cookie_name),
        request.app.state.http_client,
        settings.server_api_base,
    )
    return ServerAuthResponse(
        token=state.token,
        user=state.user.model_dump(mode="json") if state.user is not None else None,
    )
