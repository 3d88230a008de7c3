from __future__ import annotations

import httpx

from forumsession.logging import get_logger

logger = get_logger(__name__)


class CookieMirror:
    """Best-effort copy of the bearer token into the same-origin session cookie.

    Lets a later server-rendered navigation see the identity before any client
    code runs. Failures are logged and reported through the boolean result only.
    """

    def __init__(self, client: httpx.AsyncClient, session_endpoint: str) -> None:
        self.client = client
        self.session_endpoint = session_endpoint

    async def set_cookie(self, token: str) -> bool:
        return await self._send("POST", json={"token": token})

    async def clear_cookie(self) -> bool:
        return await self._send("DELETE")

    async def _send(self, method: str, **kwargs) -> bool:
        try:
            response = await self.client.request(
                method,
                self.session_endpoint,
                headers={"Accept": "application/json"},
                **kwargs,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "cookie_mirror_failed",
                method=method,
                status_code=exc.response.status_code,
            )
            return False
        except httpx.HTTPError as exc:
            logger.warning("cookie_mirror_failed", method=method, error=str(exc))
            return False
        logger.debug("cookie_mirror_synced", method=method)
        return True
