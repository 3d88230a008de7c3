from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Optional

from forumsession.service.state_machine import SessionStateMachine
from forumsession.storage.models import SessionSnapshot, SessionState, UserRecord


class SessionFacade:
    """Read/write surface of the session handed to the rest of the page."""

    def __init__(self, machine: SessionStateMachine) -> None:
        self._machine = machine

    @property
    def snapshot(self) -> SessionSnapshot:
        return self._machine.snapshot()

    @property
    def user(self) -> Optional[UserRecord]:
        return self._machine.user

    @property
    def token(self) -> Optional[str]:
        return self._machine.token

    @property
    def is_authenticated(self) -> bool:
        return self._machine.is_authenticated

    @property
    def is_loading(self) -> bool:
        return self._machine.is_loading

    @property
    def state(self) -> SessionState:
        return self._machine.state

    async def login(self, intended_url: Optional[str] = None) -> str:
        return await self._machine.login(intended_url)

    async def logout(self) -> None:
        await self._machine.logout()

    def update_user(self, partial: Mapping[str, Any]) -> Optional[UserRecord]:
        return self._machine.update_user(partial)

    async def fetch_user(self) -> Optional[UserRecord]:
        return await self._machine.refresh_user()

    def can(self, permission: str, resource: Any = None) -> bool:
        """Ownership check: only the owner of ``resource`` may act on it.

        ``permission`` is accepted for call-site readability; ownership is the
        only rule applied.
        """
        user = self._machine.user
        if not self._machine.is_authenticated or user is None:
            return False
        owner_id = _owner_id(resource)
        if owner_id is None:
            return False
        return str(owner_id) == str(user.id)

    def get_initials(self, name: Optional[str] = None) -> str:
        user = self._machine.user
        name_to_use = name or (user.name if user is not None else None)
        if not name_to_use or not name_to_use.strip():
            return "?"
        return "".join(word[0] for word in name_to_use.split()[:2]).upper()


def _owner_id(resource: Any) -> Any:
    """Return ``resource.owner.id`` (or ``resource.user.id``), if present."""
    if resource is None:
        return None
    for attr in ("owner", "user"):
        owner = _lookup(resource, attr)
        if owner is not None:
            owner_id = _lookup(owner, "id")
            if owner_id is not None:
                return owner_id
    return None


def _lookup(obj: Any, name: str) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)
