from typing import Any

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from dandi.keys.store import ApiKeyRecord, KeyStore, SqliteKeyStore, StoreError
from dandi.main import create_app


class FailingKeyStore(KeyStore):
    def __init__(self, error: Exception | None = None) -> None:
        self._error = error or StoreError("connection refused")

    async def initialize(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def list_all(self) -> list[ApiKeyRecord]:
        raise self._error

    async def insert(self, name, key, monthly_limit, usage=0) -> ApiKeyRecord:
        raise self._error

    async def update(self, key_id: str, fields: dict[str, Any]) -> ApiKeyRecord:
        raise self._error

    async def delete(self, key_id: str) -> None:
        raise self._error


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    monkeypatch.setenv("DANDI_CONFIG", str(tmp_path / "missing.yaml"))
    for var in (
        "DANDI_HOST",
        "DANDI_PORT",
        "DANDI_LOG_LEVEL",
        "DANDI_WORKERS",
        "DANDI_STORE_BACKEND",
        "DANDI_KEY_STORE_DIR",
        "DANDI_KEY_PREFIX",
        "SUPABASE_URL",
        "SUPABASE_KEY",
        "SUPABASE_TABLE",
        "DANDI_STORE_TIMEOUT",
    ):
        monkeypatch.delenv(var, raising=False)


@pytest_asyncio.fixture
async def sqlite_store(tmp_path):
    store = SqliteKeyStore(db_path=tmp_path / "keys" / "keys.db")
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def client(tmp_path):
    app = create_app(key_store=SqliteKeyStore(db_path=tmp_path / "api" / "keys.db"))
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def failing_client():
    app = create_app(key_store=FailingKeyStore())
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def broken_client():
    app = create_app(key_store=FailingKeyStore(RuntimeError("bug")))
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
