from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Set

import httpx

from forumsession.logging import get_logger
from forumsession.service.cookie_mirror import CookieMirror
from forumsession.service.errors import RedirectNegotiationError
from forumsession.service.events import (
    AuthEvent,
    EventBus,
    LoggedIn,
    LoggedOut,
    TokenChanged,
)
from forumsession.service.identity import IdentityFetcher
from forumsession.service.navigation import PageLocation, strip_token, token_from_url
from forumsession.storage.models import (
    SessionSnapshot,
    SessionState,
    StorageChange,
    UserRecord,
)
from forumsession.storage.persistent import (
    TOKEN_KEY,
    USER_KEY,
    SessionStorage,
    decode_user,
)

logger = get_logger(__name__)


class SessionStateMachine:
    """Owner of the page's session record.

    Reconciles the four sources that can change the session: bootstrap inputs
    (URL token, server seed, stored values), explicit ``login``/``logout``,
    cross-tab storage notifications and events published on the page bus by
    other components. It is the only writer of :class:`SessionStorage` and the
    only publisher of the reserved session events; for every transition the
    store is written before anything is published.

    ``login``/``logout`` events fire only when the authenticated boolean
    crosses its boundary, tracked by ``_was_authenticated`` rather than by
    whether an event already went out.
    """

    def __init__(
        self,
        *,
        storage: SessionStorage,
        bus: EventBus,
        fetcher: IdentityFetcher,
        mirror: CookieMirror,
        location: PageLocation,
        client: httpx.AsyncClient,
        api_base: str,
        revalidate_stored_session: bool = False,
        page_id: Optional[str] = None,
    ) -> None:
        self.storage = storage
        self.bus = bus
        self.fetcher = fetcher
        self.mirror = mirror
        self.location = location
        self.client = client
        self.api_base = api_base.rstrip("/")
        self.revalidate_stored_session = revalidate_stored_session
        self.page_id = page_id
        self.logger = logger.bind(page_id=page_id) if page_id else logger

        self._token: Optional[str] = None
        self._user: Optional[UserRecord] = None
        self._is_loading = True
        self._was_authenticated = False
        self._bootstrapped = False
        self._background: Set[asyncio.Future] = set()
        self._unsubscribers: List[Callable[[], None]] = [
            storage.subscribe(self._on_storage_change),
            bus.subscribe(AuthEvent.LOGOUT, self._on_logout_event),
            bus.subscribe(AuthEvent.TOKEN_CHANGED, self._on_token_event),
        ]

    # -- read surface -------------------------------------------------------

    @property
    def token(self) -> Optional[str]:
        return self._token

    @property
    def user(self) -> Optional[UserRecord]:
        return self._user

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def is_authenticated(self) -> bool:
        return self._token is not None and self._user is not None

    @property
    def state(self) -> SessionState:
        return self.snapshot().state

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(token=self._token, user=self._user, is_loading=self._is_loading)

    # -- bootstrap ----------------------------------------------------------

    async def bootstrap(
        self,
        initial_token: Optional[str] = None,
        initial_user: Optional[UserRecord] = None,
    ) -> SessionSnapshot:
        """Build the initial session; only the first call has any effect.

        Precedence: token in the URL, then the server-rendered seed, then the
        persistent store. A token with a matching user snapshot is adopted
        without a network call; a bare token is resolved through ``/auth/me``.
        """
        if self._bootstrapped:
            return self.snapshot()
        self._bootstrapped = True
        source = "none"
        try:
            url_token = self._capture_url_token()
            if url_token:
                source = "url"
                self._set_token(url_token)
                await self._authenticate(url_token)
            elif initial_token:
                source = "server_seed"
                if initial_user is not None:
                    self._adopt(initial_token, initial_user, persist=True)
                else:
                    self._set_token(initial_token, publish=False, mirror=False)
                    await self._authenticate(initial_token)
            else:
                stored_token = self.storage.read_token()
                if stored_token:
                    source = "storage"
                    stored_user = self.storage.read_user()
                    if stored_user is not None:
                        self._adopt(stored_token, stored_user, persist=False)
                        if self.revalidate_stored_session:
                            self._spawn(self._authenticate(stored_token))
                    else:
                        self._token = stored_token
                        await self._authenticate(stored_token)
        finally:
            self._is_loading = False
        self.logger.info("session_bootstrapped", source=source, state=self.state.value)
        return self.snapshot()

    def _capture_url_token(self) -> Optional[str]:
        href = self.location.href
        token = token_from_url(href)
        if token:
            # Keep the credential out of history and referrer headers
            self.location.replace_state(strip_token(href))
        return token

    # -- explicit operations ------------------------------------------------

    async def login(self, intended_url: Optional[str] = None) -> str:
        """Ask the backend for the provider redirect and navigate to it.

        Local state is left alone: the session is re-established when the
        redirect comes back with a token in the URL.
        """
        target = intended_url or self.location.href
        try:
            response = await self.client.post(
                f"{self.api_base}/auth/redirect",
                json={"intended_url": target},
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            self.logger.error("login_redirect_rejected", status_code=exc.response.status_code)
            raise RedirectNegotiationError(
                "Failed to get redirect URL",
                detail={"status_code": exc.response.status_code},
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            self.logger.error("login_redirect_failed", error=str(exc))
            raise RedirectNegotiationError("Failed to get redirect URL") from exc

        redirect_url = payload.get("redirect_url") if isinstance(payload, dict) else None
        if not isinstance(redirect_url, str) or not redirect_url:
            self.logger.error("login_redirect_missing_url")
            raise RedirectNegotiationError("Login redirect response missing redirect_url")
        self.location.assign(redirect_url)
        return redirect_url

    async def logout(self) -> None:
        """End the session locally no matter what the backend answers.

        A transport failure of the remote call is re-raised as
        :class:`RedirectNegotiationError` after the local state is cleared.
        """
        token = self._token
        failure: Optional[httpx.HTTPError] = None
        if token:
            try:
                response = await self.client.post(
                    f"{self.api_base}/auth/logout",
                    headers={
                        "Authorization": f"Bearer {token}",
                        "Accept": "application/json",
                    },
                )
                if response.is_error:
                    self.logger.warning("logout_remote_rejected", status_code=response.status_code)
            except httpx.HTTPError as exc:
                self.logger.error("logout_remote_failed", error=str(exc))
                failure = exc

        self._become_guest("logout")
        cleaned = strip_token(self.location.href)
        if cleaned != self.location.href:
            self.location.replace_state(cleaned)

        if failure is not None:
            raise RedirectNegotiationError("Remote logout failed") from failure

    def update_user(self, partial: Mapping[str, Any]) -> Optional[UserRecord]:
        """Merge ``partial`` into the current snapshot and persist it."""
        if self._user is None:
            self.logger.debug("update_user_without_session")
            return None
        merged = {**self._user.model_dump(), **dict(partial)}
        updated = UserRecord.model_validate(merged)
        self._set_user(updated)
        return updated

    async def refresh_user(self) -> Optional[UserRecord]:
        """Resolve the current token again; shares any outstanding fetch."""
        if not self._token:
            return None
        return await self._authenticate(self._token)

    # -- transitions --------------------------------------------------------

    async def _authenticate(self, token: str) -> Optional[UserRecord]:
        user = await self.fetcher.fetch_user(token)
        if self._token != token:
            self.logger.info("identity_fetch_discarded", reason="token_changed")
            return None
        if user is None:
            self._become_guest("identity_rejected")
            return None
        self._set_user(user)
        return user

    def _adopt(self, token: str, user: UserRecord, *, persist: bool) -> None:
        self._token = token
        self._user = user
        self._was_authenticated = True
        if persist:
            self.storage.write_token(token)
            self.storage.write_user(user)

    def _set_token(
        self,
        token: str,
        *,
        persist: bool = True,
        publish: bool = True,
        mirror: bool = True,
    ) -> None:
        previous = self._token
        self._token = token
        if persist:
            self.storage.write_token(token)
        if publish and token != previous:
            self.bus.emit(TokenChanged(token))
        if mirror:
            self._spawn(self.mirror.set_cookie(token))

    def _set_user(self, user: UserRecord, *, persist: bool = True) -> None:
        self._user = user
        if persist:
            self.storage.write_user(user)
        now_authenticated = self.is_authenticated
        crossed = now_authenticated and not self._was_authenticated
        # Flip before publishing; login handlers may update the user
        self._was_authenticated = now_authenticated
        if crossed:
            self.bus.emit(LoggedIn(user))

    def _become_guest(
        self,
        reason: str,
        *,
        publish_token: bool = True,
        publish_logout: bool = True,
        mirror: bool = True,
    ) -> None:
        previous_token = self._token
        had_session = previous_token is not None or self._user is not None
        self._token = None
        self._user = None
        self._was_authenticated = False
        self.storage.write_token(None)
        self.storage.write_user(None)

        if previous_token is not None:
            if publish_token:
                self.bus.emit(TokenChanged(None))
            if mirror:
                self._spawn(self.mirror.clear_cookie())
        if publish_logout and had_session:
            self.bus.emit(LoggedOut())
        if had_session:
            self.logger.info("session_cleared", reason=reason)

    # -- external notifications ---------------------------------------------

    def _on_storage_change(self, change: StorageChange) -> None:
        if change.key == TOKEN_KEY:
            new_token = change.new_value or None
            if new_token == self._token:
                return
            if new_token is None:
                # The page that removed the token already cleared the cookie
                self._become_guest("storage_cleared", mirror=False)
                return
            self.logger.info("session_token_changed_elsewhere", token=new_token)
            self._user = None
            self._set_token(new_token, persist=False, mirror=False)
            self._spawn(self._authenticate(new_token))
        elif change.key == USER_KEY:
            # Removal is driven by the token key
            if change.new_value is None or self._token is None:
                return
            user = decode_user(change.new_value)
            if user is not None:
                self._set_user(user, persist=False)

    def _on_logout_event(self, detail: Any) -> None:
        if self._token is None and self._user is None:
            return
        self._become_guest("logout_event", publish_logout=False)

    def _on_token_event(self, detail: Any) -> None:
        token = detail.get("token") if isinstance(detail, Mapping) else None
        token = token or None
        if token == self._token:
            return
        if token is None:
            self._become_guest("token_event", publish_token=False)
            return
        self._user = None
        self._set_token(token, publish=False)
        self._spawn(self._authenticate(token))

    # -- background work ----------------------------------------------------

    def _spawn(self, awaitable: Awaitable[Any]) -> None:
        try:
            task = asyncio.ensure_future(awaitable, loop=asyncio.get_running_loop())
        except RuntimeError:
            self.logger.warning("session_background_task_dropped")
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            return
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Future) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.logger.error("session_background_task_failed", error=str(exc))

    async def wait_idle(self) -> None:
        """Wait for scheduled fetches and cookie mirror calls to settle."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        await self.wait_idle()
