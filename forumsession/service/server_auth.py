from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import httpx
from pydantic import ValidationError

from forumsession.logging import get_logger
from forumsession.storage.models import UserRecord

logger = get_logger(__name__)


@dataclass(frozen=True)
class ServerAuthState:
    """Identity resolved by the server renderer from the mirror cookie."""

    token: Optional[str] = None
    user: Optional[UserRecord] = None


async def resolve_server_auth(
    token: Optional[str], client: httpx.AsyncClient, api_base: str
) -> ServerAuthState:
    """Resolve the cookie token to a user so the page can be seeded.

    Any failure yields an empty state; the client-side bootstrap then falls
    back to its own sources.
    """
    if not token:
        return ServerAuthState()
    try:
        response = await client.get(
            f"{api_base.rstrip('/')}/auth/me",
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
                "Cache-Control": "no-store",
            },
        )
        if response.is_error:
            logger.info("server_auth_rejected", status_code=response.status_code)
            return ServerAuthState()
        user = UserRecord.model_validate(response.json())
    except (httpx.HTTPError, ValueError, ValidationError) as exc:
        logger.error("server_auth_failed", error=str(exc))
        return ServerAuthState()
    return ServerAuthState(token=token, user=user)
