from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, ClassVar, Dict, List, Optional, Union

from forumsession.logging import get_logger
from forumsession.storage.models import UserRecord

logger = get_logger(__name__)

Handler = Callable[[Any], None]


class AuthEvent(str, Enum):
    """Event names reserved by the session subsystem."""

    TOKEN_CHANGED = "token-changed"
    LOGIN = "login"
    LOGOUT = "logout"


@dataclass(frozen=True)
class TokenChanged:
    name: ClassVar[AuthEvent] = AuthEvent.TOKEN_CHANGED
    token: Optional[str]

    def detail(self) -> Dict[str, Any]:
        return {"token": self.token}


@dataclass(frozen=True)
class LoggedIn:
    name: ClassVar[AuthEvent] = AuthEvent.LOGIN
    user: UserRecord

    def detail(self) -> Dict[str, Any]:
        return {"user": self.user}


@dataclass(frozen=True)
class LoggedOut:
    name: ClassVar[AuthEvent] = AuthEvent.LOGOUT

    def detail(self) -> Dict[str, Any]:
        return {}


SessionEvent = Union[TokenChanged, LoggedIn, LoggedOut]


class EventBus:
    """Synchronous in-page publish/subscribe channel.

    Any string name may be used; the session subsystem publishes its own
    events through :meth:`emit`. A handler that raises is logged and skipped;
    the publisher never sees the exception.
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, List[Handler]] = {}

    def subscribe(self, name: Union[str, AuthEvent], handler: Handler) -> Callable[[], None]:
        key = _event_key(name)
        self._handlers.setdefault(key, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(key)
            if handlers and handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def publish(self, name: Union[str, AuthEvent], detail: Any = None) -> None:
        key = _event_key(name)
        for handler in list(self._handlers.get(key, ())):
            try:
                handler(detail)
            except Exception as exc:
                logger.error("event_handler_failed", event_name=key, error=str(exc))

    def emit(self, event: SessionEvent) -> None:
        self.publish(event.name, event.detail())

    def handler_count(self, name: Union[str, AuthEvent]) -> int:
        return len(self._handlers.get(_event_key(name), ()))


def _event_key(name: Union[str, AuthEvent]) -> str:
    return name.value if isinstance(name, AuthEvent) else name
