from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field


class SessionResult(BaseModel):
    """Body of every cookie endpoint response."""

    success: bool
    message: Optional[str] = None


class ServerAuthResponse(BaseModel):
    """Seed handed to the page bootstrap by the server renderer."""

    token: Optional[str] = None
    user: Optional[dict[str, Any]] = Field(default=None)
