from __future__ import annotations

import json
from typing import Callable, Optional, Protocol

from pydantic import ValidationError

from forumsession.logging import get_logger
from forumsession.storage.errors import StorageUnavailable
from forumsession.storage.models import StorageChange, UserRecord

logger = get_logger(__name__)

TOKEN_KEY = "auth_token"
USER_KEY = "auth_user"
MANAGED_KEYS = frozenset({TOKEN_KEY, USER_KEY})


class StorageArea(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...

    def subscribe(
        self, listener: Callable[[StorageChange], None]
    ) -> Callable[[], None]: ...


def encode_user(user: UserRecord) -> str:
    return json.dumps(user.model_dump(mode="json"), separators=(",", ":"))


def decode_user(raw: Optional[str]) -> Optional[UserRecord]:
    """Parse a stored user snapshot; malformed snapshots are treated as absent."""
    if raw is None:
        return None
    try:
        return UserRecord.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError, TypeError) as exc:
        logger.warning("stored_user_malformed", error=str(exc))
        return None


class SessionStorage:
    """Persistent token and user snapshot for one page.

    Wraps a synchronous per-origin store. Failures of the underlying store are
    logged and never raised: the in-memory session stays authoritative for the
    rest of the page's lifetime.
    """

    def __init__(self, area: StorageArea) -> None:
        self.area = area

    def read(self, key: str) -> Optional[str]:
        try:
            return self.area.get(key)
        except StorageUnavailable as exc:
            logger.warning("storage_read_failed", key=key, error=exc.message)
            return None

    def write(self, key: str, value: Optional[str]) -> bool:
        """Write ``value`` under ``key``; ``None`` removes the key."""
        try:
            if value is None:
                self.area.delete(key)
            else:
                self.area.set(key, value)
        except StorageUnavailable as exc:
            logger.warning("storage_write_failed", key=key, error=exc.message)
            return False
        return True

    def read_token(self) -> Optional[str]:
        return self.read(TOKEN_KEY) or None

    def write_token(self, token: Optional[str]) -> bool:
        return self.write(TOKEN_KEY, token)

    def read_user(self) -> Optional[UserRecord]:
        return decode_user(self.read(USER_KEY))

    def write_user(self, user: Optional[UserRecord]) -> bool:
        return self.write(USER_KEY, encode_user(user) if user is not None else None)

    def subscribe(
        self, handler: Callable[[StorageChange], None]
    ) -> Callable[[], None]:
        """Forward changes of the managed keys made by other pages."""

        def _filtered(change: StorageChange) -> None:
            if change.key in MANAGED_KEYS:
                handler(change)

        return self.area.subscribe(_filtered)
