from __future__ import annotations

import logging
from typing import Any

import httpx

from dandi.keys.store import ApiKeyRecord, KeyNotFoundError, KeyStore, StoreError

logger = logging.getLogger("dandi.keys")

_RETURN_REPRESENTATION = {"Prefer": "return=representation"}


class SupabaseKeyStore(KeyStore):
    """Key store backed by a hosted Postgres table exposed through PostgREST.

    ``url`` is the project URL (``https://<ref>.supabase.co``); rows live in
    ``/rest/v1/<table>``. Every call is a single request with no retries.
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        table: str = "api_keys",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url.rstrip("/")
        self._api_key = api_key
        self._table = table
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def initialize(self) -> None:
        self._client = httpx.AsyncClient(
            base_url=f"{self._url}/rest/v1",
            headers={
                "apikey": self._api_key,
                "Authorization": f"Bearer {self._api_key}",
                "Accept": "application/json",
            },
            timeout=self._timeout,
            transport=self._transport,
        )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        params: dict[str, str] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        if self._client is None:
            raise StoreError("Key store is not initialized")

        try:
            response = await self._client.request(
                method,
                f"/{self._table}",
                params=params,
                json=json,
                headers=headers,
            )
        except httpx.HTTPError as exc:
            raise StoreError(f"{method} /{self._table} failed: {exc}") from exc

        if response.status_code >= 400:
            raise StoreError(
                f"{method} /{self._table} returned {response.status_code}: {response.text}"
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise StoreError(f"{method} /{self._table} returned invalid JSON") from exc

    async def list_all(self) -> list[ApiKeyRecord]:
        rows = await self._request(
            "GET", params={"select": "*", "order": "created_at.desc"}
        )
        return [ApiKeyRecord.from_row(row) for row in rows or []]

    async def insert(
        self,
        name: str,
        key: str,
        monthly_limit: int | float | None,
        usage: int | float = 0,
    ) -> ApiKeyRecord:
        rows = await self._request(
            "POST",
            json=[
                {
                    "name": name,
                    "key": key,
                    "monthly_limit": monthly_limit,
                    "usage": usage,
                }
            ],
            headers=_RETURN_REPRESENTATION,
        )
        if not rows:
            raise StoreError("Insert returned no rows")
        return ApiKeyRecord.from_row(rows[0])

    async def update(self, key_id: str, fields: dict[str, Any]) -> ApiKeyRecord:
        rows = await self._request(
            "PATCH",
            params={"id": f"eq.{key_id}"},
            json=fields,
            headers=_RETURN_REPRESENTATION,
        )
        if not rows:
            raise KeyNotFoundError(key_id)
        if len(rows) > 1:
            logger.warning("Update of '%s' matched %d rows", key_id, len(rows))
        return ApiKeyRecord.from_row(rows[0])

    async def delete(self, key_id: str) -> None:
        await self._request("DELETE", params={"id": f"eq.{key_id}"})
