import asyncio

import httpx
import pytest

from tourneyhub.client import ApiClient, ApiError, QueryCache, TourneyClient
from tourneyhub.client.api import HTML_ERROR_MESSAGE, error_from_response
from tourneyhub.client.tags import mutation_tags, route_tags, tags_for_key


pytestmark = pytest.mark.anyio


class CountingFetcher:
    def __init__(self, responses):
        self.responses = responses
        self.calls = []

    async def __call__(self, key):
        self.calls.append(key)
        value = self.responses[key]
        if isinstance(value, Exception):
            raise value
        return value() if callable(value) else value


def test_query_keys_map_to_tags():
    assert tags_for_key("/api/tournaments") == {"tournaments"}
    assert tags_for_key("/api/tournaments?status=live") == {"tournaments"}
    assert tags_for_key("/api/tournaments/5") == {"tournaments", "tournament:5"}
    assert tags_for_key("/api/registrations/counts") == {"registration-counts"}
    assert tags_for_key("/api/teams/7/members") == {"teams", "team:7"}
    assert tags_for_key("/api/unknown") == frozenset()


def test_mutation_and_route_tags():
    assert mutation_tags("register", tournament_id=3) == {
        "tournaments",
        "tournament:3",
        "registration-counts",
        "my-registrations",
    }
    assert "tournament:3" not in mutation_tags("register")
    assert route_tags("/tournaments/42") == route_tags("/tournaments/:id")
    assert route_tags("/nowhere") == frozenset()
    with pytest.raises(KeyError):
        mutation_tags("explode")


async def test_get_caches_until_invalidated():
    fetcher = CountingFetcher({"/api/tournaments": [{"id": 1}]})
    cache = QueryCache(fetcher)

    assert await cache.get("/api/tournaments") == [{"id": 1}]
    assert await cache.get("/api/tournaments") == [{"id": 1}]
    assert fetcher.calls == ["/api/tournaments"]

    await cache.get("/api/tournaments", force=True)
    assert len(fetcher.calls) == 2


async def test_concurrent_gets_share_one_request():
    gate = asyncio.Event()

    async def slow(key):
        await gate.wait()
        return {"key": key}

    calls = []

    async def fetcher(key):
        calls.append(key)
        return await slow(key)

    cache = QueryCache(fetcher)
    first = asyncio.ensure_future(cache.get("/api/teams/my"))
    second = asyncio.ensure_future(cache.get("/api/teams/my"))
    await asyncio.sleep(0)
    gate.set()

    assert await first == await second == {"key": "/api/teams/my"}
    assert calls == ["/api/teams/my"]


async def test_invalidate_refetches_only_affected_entries():
    counts = iter([{"1": 0}, {"1": 1}])
    fetcher = CountingFetcher(
        {
            "/api/registrations/counts": lambda: next(counts),
            "/api/notifications": [],
            "/api/teams/my": [],
        }
    )
    cache = QueryCache(fetcher)
    for key in ("/api/registrations/counts", "/api/notifications", "/api/teams/my"):
        await cache.get(key)
    fetcher.calls.clear()

    marked = cache.invalidate(mutation_tags("register", tournament_id=1))
    await cache.settle()

    assert marked == ["/api/registrations/counts"]
    assert fetcher.calls == ["/api/registrations/counts"]
    assert cache.peek("/api/registrations/counts") == {"1": 1}
    assert cache.entry("/api/registrations/counts").stale is False


async def test_failed_refetch_keeps_previous_data():
    state = {"fail": False}

    async def fetcher(key):
        if state["fail"]:
            raise ApiError(503, "Service unavailable")
        return ["cached"]

    cache = QueryCache(fetcher)
    await cache.get("/api/tournaments")
    state["fail"] = True

    cache.invalidate({"tournaments"}, refetch=False)
    outcome = await cache.refetch_stale()

    assert outcome == {"/api/tournaments": False}
    entry = cache.entry("/api/tournaments")
    assert entry.data == ["cached"]
    assert entry.stale is True
    assert isinstance(entry.error, ApiError)


async def test_refetch_failures_are_independent():
    async def fetcher(key):
        if key == "/api/notifications":
            raise ApiError(500, "boom")
        return {"count": 2}

    cache = QueryCache(fetcher)
    cache.set("/api/notifications", [{"id": 1}])
    cache.set("/api/notifications/count", {"count": 1})

    cache.invalidate(mutation_tags("mark_all_read"), refetch=False)
    outcome = await cache.refetch_stale()

    assert outcome == {"/api/notifications": False, "/api/notifications/count": True}
    assert cache.peek("/api/notifications") == [{"id": 1}]
    assert cache.peek("/api/notifications/count") == {"count": 2}


async def test_clear_discards_refetch_that_finishes_later():
    gate = asyncio.Event()
    calls = []

    async def fetcher(key):
        calls.append(key)
        await gate.wait()
        return {"user": "alice-private"}

    cache = QueryCache(fetcher)
    cache.set("/api/registrations/user", {"user": "alice"})

    cache.invalidate(tags_for_key("/api/registrations/user"))
    while not calls:
        await asyncio.sleep(0)
    assert calls == ["/api/registrations/user"]

    cache.clear()
    gate.set()
    await cache.settle()
    await asyncio.sleep(0)

    assert cache.keys() == []


async def test_get_in_flight_during_clear_is_not_stored():
    gate = asyncio.Event()

    async def fetcher(key):
        await gate.wait()
        return ["old session"]

    cache = QueryCache(fetcher)
    pending = asyncio.ensure_future(cache.get("/api/teams/my"))
    await asyncio.sleep(0)

    cache.clear()
    gate.set()

    assert await pending == ["old session"]
    assert "/api/teams/my" not in cache


async def test_optimistic_update_rolls_back():
    cache = QueryCache(CountingFetcher({}))
    cache.set("/api/registrations/counts", {"4": 1})

    pending = cache.optimistic("/api/registrations/counts", lambda c: {**c, "4": c["4"] + 1})
    assert cache.peek("/api/registrations/counts") == {"4": 2}

    assert pending.rollback() is True
    assert cache.peek("/api/registrations/counts") == {"4": 1}
    assert pending.rollback() is False


async def test_rollback_does_not_clobber_newer_data():
    cache = QueryCache(CountingFetcher({}))
    cache.set("/api/notifications/count", {"count": 3})

    pending = cache.optimistic("/api/notifications/count", lambda c: {"count": 0})
    cache.set("/api/notifications/count", {"count": 5})

    assert pending.rollback() is False
    assert cache.peek("/api/notifications/count") == {"count": 5}


async def test_optimistic_on_missing_entry_is_removed_on_rollback():
    cache = QueryCache(CountingFetcher({}))

    pending = cache.optimistic("/api/registrations/counts", lambda c: {"9": 1})
    assert "/api/registrations/counts" in cache

    pending.rollback()
    assert "/api/registrations/counts" not in cache


def test_error_message_from_json_text_and_html():
    request = httpx.Request("GET", "http://test/api")

    detail = error_from_response(
        httpx.Response(409, json={"detail": "Tournament is already full.", "code": "tournament_full"}, request=request)
    )
    assert detail.status_code == 409
    assert detail.message == "Tournament is already full."
    assert detail.code == "tournament_full"

    message = error_from_response(httpx.Response(400, json={"message": "bad input"}, request=request))
    assert message.message == "bad input"

    plain = error_from_response(httpx.Response(500, text="upstream exploded", request=request))
    assert plain.message == "upstream exploded"

    html = error_from_response(
        httpx.Response(502, text="<!DOCTYPE html><html><body>Bad Gateway</body></html>", request=request)
    )
    assert html.message == HTML_ERROR_MESSAGE


async def test_api_client_on_401_modes():
    def handler(request):
        return httpx.Response(401, json={"detail": "Not authenticated"})

    async with ApiClient("http://test", transport=httpx.MockTransport(handler)) as api:
        assert await api.get("/api/auth/me", on_401="return_none") is None
        with pytest.raises(ApiError) as excinfo:
            await api.get("/api/auth/me")
    assert excinfo.value.status_code == 401


async def test_api_client_sends_bearer_token():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(204)

    async with ApiClient("http://test", token="abc", transport=httpx.MockTransport(handler)) as api:
        assert await api.delete("/api/registrations/1") is None
    assert seen["auth"] == "Bearer abc"


async def test_failed_register_rolls_back_optimistic_count():
    def handler(request):
        if request.url.path == "/api/registrations/counts":
            return httpx.Response(200, json={"7": 3})
        if request.url.path == "/api/tournaments/7/register":
            return httpx.Response(409, json={"detail": "Tournament is already full.", "code": "tournament_full"})
        return httpx.Response(404, json={"detail": "Not Found"})

    client = TourneyClient.create("http://test", token="t", transport=httpx.MockTransport(handler))
    async with client:
        assert await client.registration_counts() == {"7": 3}
        with pytest.raises(ApiError) as excinfo:
            await client.register(7, team_id=1)
        assert excinfo.value.code == "tournament_full"
        assert client.cache.peek("/api/registrations/counts") == {"7": 3}


async def test_successful_register_refetches_counts():
    counts = {"7": 0}
    requests = []

    def handler(request):
        requests.append((request.method, request.url.path))
        if request.url.path == "/api/registrations/counts":
            return httpx.Response(200, json=dict(counts))
        if request.url.path == "/api/tournaments/7/register":
            counts["7"] += 1
            return httpx.Response(201, json={"id": 1, "slot": 1, "tournament_id": 7, "team_id": 1})
        if request.url.path == "/api/notifications":
            return httpx.Response(200, json=[])
        return httpx.Response(404, json={"detail": "Not Found"})

    client = TourneyClient.create("http://test", token="t", transport=httpx.MockTransport(handler))
    async with client:
        await client.registration_counts()
        await client.notifications()
        requests.clear()

        created = await client.register(7, team_id=1)
        await client.cache.settle()

        assert created["slot"] == 1
        assert client.cache.peek("/api/registrations/counts") == {"7": 1}
        assert ("GET", "/api/notifications") not in requests
        assert ("GET", "/api/registrations/counts") in requests
