from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Optional, Union

import httpx

from forumsession.config import Settings, StorageBackend, get_settings
from forumsession.logging import get_logger
from forumsession.service.cookie_mirror import CookieMirror
from forumsession.service.events import EventBus
from forumsession.service.facade import SessionFacade
from forumsession.service.identity import IdentityFetcher
from forumsession.service.navigation import PageLocation
from forumsession.service.state_machine import SessionStateMachine
from forumsession.storage.memory import MemoryOrigin, MemoryStorageArea
from forumsession.storage.models import UserRecord
from forumsession.storage.persistent import SessionStorage, StorageArea
from forumsession.storage.redis_store import RedisStorageArea

logger = get_logger(__name__)


@dataclass
class PageSession:
    """Everything one open page owns: its session machine and collaborators.

    Built once per page by :func:`open_page` and passed by reference to the
    code that needs it.
    """

    machine: SessionStateMachine
    facade: SessionFacade
    bus: EventBus
    storage: SessionStorage
    location: PageLocation
    client: httpx.AsyncClient
    page_id: str
    _owns_client: bool = field(default=False, repr=False)
    _owned_area: Optional[Union[MemoryStorageArea, RedisStorageArea]] = field(
        default=None, repr=False
    )

    async def close(self) -> None:
        await self.machine.close()
        if isinstance(self._owned_area, RedisStorageArea):
            await self._owned_area.close()
        elif self._owned_area is not None:
            self._owned_area.close()
        if self._owns_client:
            await self.client.aclose()
        logger.info("page_session_closed", page_id=self.page_id)


def build_storage_area(
    settings: Settings, origin: Optional[MemoryOrigin] = None
) -> Union[MemoryStorageArea, RedisStorageArea]:
    if settings.storage_backend == StorageBackend.REDIS:
        return RedisStorageArea(settings.redis_url, namespace=settings.storage_namespace)
    return (origin or MemoryOrigin()).attach()


async def open_page(
    href: str,
    *,
    settings: Optional[Settings] = None,
    origin: Optional[MemoryOrigin] = None,
    area: Optional[StorageArea] = None,
    client: Optional[httpx.AsyncClient] = None,
    initial_token: Optional[str] = None,
    initial_user: Optional[UserRecord] = None,
    bootstrap: bool = True,
) -> PageSession:
    """Wire up and (by default) bootstrap the session for one page load."""
    settings = settings or get_settings()
    page_id = uuid.uuid4().hex

    owned_area: Optional[Union[MemoryStorageArea, RedisStorageArea]] = None
    if area is None:
        area = owned_area = build_storage_area(settings, origin)
        if isinstance(area, RedisStorageArea):
            await area.start()

    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)

    storage = SessionStorage(area)
    bus = EventBus()
    location = PageLocation(href)
    machine = SessionStateMachine(
        storage=storage,
        bus=bus,
        fetcher=IdentityFetcher(client, settings.api_base_url),
        mirror=CookieMirror(client, settings.session_endpoint),
        location=location,
        client=client,
        api_base=settings.api_base_url,
        revalidate_stored_session=settings.revalidate_stored_session,
        page_id=page_id,
    )
    page = PageSession(
        machine=machine,
        facade=SessionFacade(machine),
        bus=bus,
        storage=storage,
        location=location,
        client=client,
        page_id=page_id,
        _owns_client=owns_client,
        _owned_area=owned_area,
    )
    logger.info("page_session_opened", page_id=page_id, backend=settings.storage_backend.value)
    if bootstrap:
        await machine.bootstrap(initial_token=initial_token, initial_user=initial_user)
    return page
