from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict


class UserRecord(BaseModel):
    """Denormalized profile snapshot returned by ``/auth/me``."""

    id: Union[int, str]
    name: str = ""
    email: Optional[str] = None
    mobile: Optional[str] = None
    image_url: Optional[str] = None
    score: Optional[int] = None
    online: Optional[bool] = None
    login_notification_enabled: Optional[bool] = None

    model_config = ConfigDict(extra="allow")


class SessionState(str, Enum):
    BOOTSTRAPPING = "bootstrapping"
    GUEST = "guest"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True)
class SessionSnapshot:
    token: Optional[str]
    user: Optional[UserRecord]
    is_loading: bool

    @property
    def is_authenticated(self) -> bool:
        return self.token is not None and self.user is not None

    @property
    def state(self) -> SessionState:
        if self.token is None:
            return SessionState.BOOTSTRAPPING if self.is_loading else SessionState.GUEST
        if self.user is None:
            return SessionState.AUTHENTICATING
        return SessionState.AUTHENTICATED


@dataclass(frozen=True)
class StorageChange:
    """Notification that another page changed a shared key."""

    key: str
    old_value: Optional[str]
    new_value: Optional[str]
