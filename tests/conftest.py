import asyncio
import inspect
import json
import os
import sys
from pathlib import Path
from typing import Dict, List, Optional, Tuple

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("LOG_JSON", "false")

import httpx  # noqa: E402
import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from forumsession.config import Settings, reset_settings_cache  # noqa: E402
from forumsession.service.runtime import open_page  # noqa: E402
from forumsession.storage.memory import MemoryOrigin  # noqa: E402

API_BASE = "http://api.test/api"
SESSION_ENDPOINT = "http://app.test/session"
PAGE_URL = "http://app.test/questions/42"


class FakeBackend:
    """In-process stand-in for the forum API and the same-origin cookie endpoint."""

    def __init__(self) -> None:
        self.users: Dict[str, dict] = {}
        self.calls: List[Tuple[str, str]] = []
        self.requests: List[httpx.Request] = []
        self.me_gate: Optional[asyncio.Event] = None
        self.me_status: Optional[int] = None
        self.fail_logout = False
        self.fail_session = False
        self.redirect_status = 200
        self.redirect_url = "https://accounts.example/authorize?state=xyz"

    def count(self, method: str, path: str) -> int:
        return self.calls.count((method, path))

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append((request.method, request.url.path))
        self.requests.append(request)
        path = request.url.path

        if path == "/api/auth/me":
            if self.me_gate is not None:
                await self.me_gate.wait()
            if self.me_status is not None:
                return httpx.Response(self.me_status, json={"message": "forced"})
            token = request.headers.get("Authorization", "").removeprefix("Bearer ")
            user = self.users.get(token)
            if user is None:
                return httpx.Response(401, json={"message": "Unauthenticated."})
            return httpx.Response(200, json=user)

        if path == "/api/auth/redirect":
            if self.redirect_status != 200:
                return httpx.Response(self.redirect_status, json={"message": "nope"})
            return httpx.Response(200, json={"redirect_url": self.redirect_url})

        if path == "/api/auth/logout":
            if self.fail_logout:
                raise httpx.ConnectError("backend unreachable", request=request)
            return httpx.Response(204)

        if path == "/session":
            if self.fail_session:
                raise httpx.ConnectError("app server unreachable", request=request)
            return httpx.Response(200, json={"success": True})

        return httpx.Response(404)

    def json_body(self, method: str, path: str) -> Optional[dict]:
        for request in self.requests:
            if request.method == method and request.url.path == path:
                return json.loads(request.content or b"null")
        return None


@pytest.fixture(autouse=True)
def reset_settings():
    reset_settings_cache()
    yield
    reset_settings_cache()


@pytest.fixture
def settings():
    return Settings(
        api_base_url=API_BASE,
        session_endpoint=SESSION_ENDPOINT,
        app_env="test",
    )


@pytest.fixture
def backend():
    backend = FakeBackend()
    backend.users["token-ada"] = {
        "id": 7,
        "name": "Ada Lovelace",
        "email": "ada@example.com",
        "score": 120,
        "login_notification_enabled": True,
    }
    backend.users["token-alan"] = {"id": 9, "name": "Alan Turing", "score": 80}
    return backend


@pytest.fixture
def http_client(backend):
    return httpx.AsyncClient(transport=httpx.MockTransport(backend.handler))


@pytest.fixture
def origin():
    return MemoryOrigin()


@pytest.fixture
def make_page(settings, origin, http_client):
    """Open a page (one tab) attached to the shared origin."""

    async def _make_page(href: str = PAGE_URL, **kwargs):
        kwargs.setdefault("settings", settings)
        kwargs.setdefault("origin", origin)
        kwargs.setdefault("client", http_client)
        return await open_page(href, **kwargs)

    return _make_page


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
