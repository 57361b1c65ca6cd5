import json
import uuid
from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio

from dandi.keys.store import KeyNotFoundError, StoreError, generate_api_key
from dandi.keys.supabase import SupabaseKeyStore

API_KEY = "service-role-key"


class FakePostgrest:
    """In-memory stand-in for the ``/rest/v1/api_keys`` endpoint."""

    def __init__(self):
        self.rows: list[dict] = []
        self.requests: list[httpx.Request] = []
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def _match(self, request: httpx.Request) -> list[dict]:
        target = request.url.params.get("id", "")
        key_id = target.removeprefix("eq.")
        return [row for row in self.rows if row["id"] == key_id]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path != "/rest/v1/api_keys":
            return httpx.Response(404, json={"message": "not found"})

        if request.method == "GET":
            rows = sorted(self.rows, key=lambda r: r["created_at"], reverse=True)
            return httpx.Response(200, json=rows)

        if request.method == "POST":
            created = []
            for row in json.loads(request.content):
                if any(existing["key"] == row["key"] for existing in self.rows):
                    return httpx.Response(409, json={"code": "23505"})
                self._clock += timedelta(seconds=1)
                row = {
                    "id": str(uuid.uuid4()),
                    "created_at": self._clock.isoformat(),
                    **row,
                }
                self.rows.append(row)
                created.append(row)
            return httpx.Response(201, json=created)

        if request.method == "PATCH":
            matched = self._match(request)
            for row in matched:
                row.update(json.loads(request.content))
            return httpx.Response(200, json=matched)

        if request.method == "DELETE":
            for row in self._match(request):
                self.rows.remove(row)
            return httpx.Response(204)

        return httpx.Response(405)


@pytest.fixture
def postgrest():
    return FakePostgrest()


@pytest_asyncio.fixture
async def store(postgrest):
    store = SupabaseKeyStore(
        url="https://example.supabase.co/",
        api_key=API_KEY,
        transport=httpx.MockTransport(postgrest),
    )
    await store.initialize()
    yield store
    await store.close()


async def test_requests_carry_credentials(store, postgrest):
    await store.list_all()

    request = postgrest.requests[0]
    assert request.headers["apikey"] == API_KEY
    assert request.headers["authorization"] == f"Bearer {API_KEY}"
    assert request.url.params["order"] == "created_at.desc"


async def test_insert_and_list(store, postgrest):
    first = await store.insert("first", generate_api_key(), 500)
    second = await store.insert("second", generate_api_key(), None)

    assert first.id
    assert first.monthly_limit == 500
    assert first.usage == 0
    assert postgrest.requests[0].headers["prefer"] == "return=representation"

    records = await store.list_all()
    assert [r.id for r in records] == [second.id, first.id]


async def test_insert_rejected_raises_store_error(store):
    key = generate_api_key()
    await store.insert("one", key, None)

    with pytest.raises(StoreError):
        await store.insert("two", key, None)


async def test_update_usage(store):
    record = await store.insert("test", generate_api_key(), None)

    await store.update(record.id, {"usage": 42})
    updated = await store.update(record.id, {"usage": 5})

    assert updated.usage == 5
    assert (await store.list_all())[0].usage == 5


async def test_update_missing_raises_not_found(store):
    with pytest.raises(KeyNotFoundError):
        await store.update("missing", {"usage": 1})


async def test_delete(store):
    record = await store.insert("test", generate_api_key(), None)

    await store.delete(record.id)
    await store.delete("missing")

    assert await store.list_all() == []


async def test_unreachable_store_raises_store_error():
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    store = SupabaseKeyStore(
        url="https://example.supabase.co",
        api_key=API_KEY,
        transport=httpx.MockTransport(refuse),
    )
    await store.initialize()
    try:
        with pytest.raises(StoreError):
            await store.list_all()
        with pytest.raises(StoreError):
            await store.delete("any")
    finally:
        await store.close()


async def test_server_error_raises_store_error():
    store = SupabaseKeyStore(
        url="https://example.supabase.co",
        api_key=API_KEY,
        transport=httpx.MockTransport(lambda request: httpx.Response(500, text="boom")),
    )
    await store.initialize()
    try:
        with pytest.raises(StoreError) as excinfo:
            await store.list_all()
    finally:
        await store.close()

    assert not isinstance(excinfo.value, KeyNotFoundError)
