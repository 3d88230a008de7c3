from __future__ import annotations

import asyncio
from typing import Optional, Tuple

import httpx
from pydantic import ValidationError

from forumsession.logging import get_logger
from forumsession.storage.models import UserRecord

logger = get_logger(__name__)


class IdentityFetcher:
    """Exchange a bearer token for the canonical user record.

    At most one ``/auth/me`` request is outstanding at a time. Callers that
    arrive while it is pending await the same result, whatever token they
    passed; the slot is released once the request settles.

    A ``None`` result means the token is unusable (non-2xx response, transport
    error or malformed body). The fetcher never raises for those cases and
    never mutates session state itself.
    """

    def __init__(self, client: httpx.AsyncClient, api_base: str) -> None:
        self.client = client
        self.api_base = api_base.rstrip("/")
        self._in_flight: Optional[Tuple[str, asyncio.Task]] = None
        self.request_count = 0

    @property
    def in_flight_token(self) -> Optional[str]:
        return self._in_flight[0] if self._in_flight else None

    async def fetch_user(self, token: Optional[str]) -> Optional[UserRecord]:
        if not token:
            return None

        if self._in_flight is not None:
            pending_token, task = self._in_flight
            if pending_token != token:
                logger.debug("identity_fetch_joined_other_token")
            return await asyncio.shield(task)

        task = asyncio.ensure_future(self._run(token))
        self._in_flight = (token, task)
        return await asyncio.shield(task)

    async def _run(self, token: str) -> Optional[UserRecord]:
        try:
            return await self._request(token)
        finally:
            self._in_flight = None

    async def _request(self, token: str) -> Optional[UserRecord]:
        self.request_count += 1
        try:
            response = await self.client.get(
                f"{self.api_base}/auth/me",
                headers={
                    "Authorization": f"Bearer {token}",
                    "Accept": "application/json",
                },
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "identity_fetch_rejected", status_code=exc.response.status_code
            )
            return None
        except httpx.HTTPError as exc:
            logger.error("identity_fetch_error", error=str(exc))
            return None

        try:
            user = UserRecord.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            logger.error("identity_fetch_malformed", error=str(exc))
            return None
        logger.info("identity_fetch_success", user_id=str(user.id))
        return user
