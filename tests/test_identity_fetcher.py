"""Identity fetch: single-slot deduplication and soft failure."""

import asyncio

import httpx

from forumsession.service.identity import IdentityFetcher

API_BASE = "http://api.test/api"


def make_fetcher(http_client):
    return IdentityFetcher(http_client, API_BASE)


class TestDeduplication:
    async def test_concurrent_calls_share_one_request(self, backend, http_client):
        fetcher = make_fetcher(http_client)
        backend.me_gate = asyncio.Event()

        pending = asyncio.gather(*(fetcher.fetch_user("token-ada") for _ in range(5)))
        for _ in range(3):
            await asyncio.sleep(0)
        assert fetcher.in_flight_token == "token-ada"
        backend.me_gate.set()
        results = await pending

        assert backend.count("GET", "/api/auth/me") == 1
        assert all(result is results[0] for result in results)
        assert results[0].name == "Ada Lovelace"
        assert fetcher.in_flight_token is None

    async def test_outstanding_request_is_shared_across_tokens(self, backend, http_client):
        fetcher = make_fetcher(http_client)
        backend.me_gate = asyncio.Event()

        first = asyncio.ensure_future(fetcher.fetch_user("token-ada"))
        await asyncio.sleep(0)
        second = asyncio.ensure_future(fetcher.fetch_user("token-alan"))
        await asyncio.sleep(0)
        backend.me_gate.set()

        assert (await first) is (await second)
        assert backend.count("GET", "/api/auth/me") == 1

    async def test_slot_released_after_settling(self, backend, http_client):
        fetcher = make_fetcher(http_client)

        await fetcher.fetch_user("token-ada")
        await fetcher.fetch_user("token-ada")

        assert backend.count("GET", "/api/auth/me") == 2
        assert fetcher.request_count == 2

    async def test_cancelled_caller_does_not_cancel_shared_request(
        self, backend, http_client
    ):
        fetcher = make_fetcher(http_client)
        backend.me_gate = asyncio.Event()

        impatient = asyncio.ensure_future(fetcher.fetch_user("token-ada"))
        patient = asyncio.ensure_future(fetcher.fetch_user("token-ada"))
        await asyncio.sleep(0)
        impatient.cancel()
        await asyncio.sleep(0)
        backend.me_gate.set()

        user = await patient
        assert user is not None and user.id == 7
        assert impatient.cancelled()


class TestSoftFailure:
    async def test_rejected_token_returns_none(self, backend, http_client):
        fetcher = make_fetcher(http_client)

        assert await fetcher.fetch_user("token-unknown") is None

    async def test_server_error_returns_none(self, backend, http_client):
        backend.me_status = 500
        fetcher = make_fetcher(http_client)

        assert await fetcher.fetch_user("token-ada") is None

    async def test_transport_error_returns_none_and_frees_slot(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            raise httpx.ConnectError("down", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        fetcher = make_fetcher(client)

        assert await fetcher.fetch_user("token-ada") is None
        assert fetcher.in_flight_token is None
        assert await fetcher.fetch_user("token-ada") is None
        assert len(attempts) == 2

    async def test_malformed_body_returns_none(self):
        def handler(request):
            return httpx.Response(200, content=b"<html>maintenance</html>")

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))

        assert await make_fetcher(client).fetch_user("token-ada") is None

    async def test_body_without_id_returns_none(self):
        def handler(request):
            return httpx.Response(200, json={"name": "Nobody"})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))

        assert await make_fetcher(client).fetch_user("token-ada") is None

    async def test_missing_token_makes_no_request(self, backend, http_client):
        fetcher = make_fetcher(http_client)

        assert await fetcher.fetch_user(None) is None
        assert backend.calls == []

    async def test_sends_bearer_header(self, backend, http_client):
        await make_fetcher(http_client).fetch_user("token-alan")

        request = backend.requests[0]
        assert request.headers["Authorization"] == "Bearer token-alan"
        assert request.headers["Accept"] == "application/json"
