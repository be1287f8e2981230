import json

import httpx
import pytest

from edufall.models.database import Database
from edufall.services.profile_store import (
    DatabaseProfileStore,
    HttpProfileStore,
    ProfileStoreError,
)


class ProfileService:
    """In-process stand-in for the remote profile service."""

    def __init__(self):
        self.profiles = {"p1": {"username": "Ann", "total_xp": 120}}
        self.requests = []
        self.fail_with = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with:
            return httpx.Response(self.fail_with)
        player_id = request.url.path.rsplit("/", 1)[-1]
        if request.method == "GET":
            if player_id not in self.profiles:
                return httpx.Response(404)
            return httpx.Response(200, json=self.profiles[player_id])
        if request.method == "PUT":
            self.profiles[player_id] = json.loads(request.content)
            return httpx.Response(204)
        return httpx.Response(405)


@pytest.fixture
def service():
    return ProfileService()


@pytest.fixture
async def http_store(service):
    store = HttpProfileStore("https://profiles.example/api/", token="secret",
                             transport=httpx.MockTransport(service))
    yield store
    await store.close()


class TestHttpProfileStore:
    async def test_load_existing(self, http_store, service):
        profile = await http_store.load("p1")

        assert profile == {"username": "Ann", "total_xp": 120}
        request = service.requests[0]
        assert request.url == "https://profiles.example/api/profiles/p1"
        assert request.headers["Authorization"] == "Bearer secret"

    async def test_missing_profile_is_none(self, http_store):
        assert await http_store.load("nobody") is None

    async def test_save_puts_json(self, http_store, service):
        assert await http_store.save("p2", {"username": "Bob", "total_xp": 0})
        assert service.profiles["p2"]["username"] == "Bob"
        assert service.requests[-1].method == "PUT"

    @pytest.mark.parametrize("status", [500, 503])
    async def test_server_errors_raise(self, http_store, service, status):
        service.fail_with = status
        with pytest.raises(ProfileStoreError):
            await http_store.load("p1")
        with pytest.raises(ProfileStoreError):
            await http_store.save("p1", {"username": "Ann"})

    async def test_transport_errors_raise(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        store = HttpProfileStore("https://profiles.example", transport=httpx.MockTransport(refuse))
        with pytest.raises(ProfileStoreError):
            await store.load("p1")
        await store.close()

    async def test_timeouts_raise(self):
        def slow(request):
            raise httpx.ReadTimeout("too slow", request=request)

        store = HttpProfileStore("https://profiles.example", transport=httpx.MockTransport(slow))
        with pytest.raises(ProfileStoreError, match="Timed out"):
            await store.save("p1", {})
        await store.close()

    async def test_invalid_json_raises(self):
        store = HttpProfileStore(
            "https://profiles.example",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, content=b"not json")),
        )
        with pytest.raises(ProfileStoreError):
            await store.load("p1")
        await store.close()


class TestDatabaseProfileStore:
    async def test_round_trip(self):
        database = Database("sqlite+aiosqlite://")
        await database.connect()
        store = DatabaseProfileStore(database)

        assert await store.load("p1") is None
        await store.save("p1", {"username": "Ann", "total_xp": 5})
        assert await store.load("p1") == {"username": "Ann", "total_xp": 5}
        await database.disconnect()

    async def test_disconnected_database_raises(self):
        store = DatabaseProfileStore(Database("sqlite+aiosqlite://"))
        with pytest.raises(ProfileStoreError):
            await store.load("p1")
