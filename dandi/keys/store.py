from __future__ import annotations

import secrets
import sqlite3
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite

DEFAULT_KEY_PREFIX = "Dandi"
_TOKEN_BYTES = 32


def generate_api_key(prefix: str = DEFAULT_KEY_PREFIX) -> str:
    return f"{prefix}-{secrets.token_hex(_TOKEN_BYTES)}"


class StoreError(Exception):
    """The backing store is unreachable or rejected the operation."""


class KeyNotFoundError(StoreError):
    def __init__(self, key_id: str):
        super().__init__(f"API key '{key_id}' not found")
        self.key_id = key_id


@dataclass
class ApiKeyRecord:
    id: str
    name: str
    key: str
    monthly_limit: int | float | None
    usage: int | float
    created_at: str

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> ApiKeyRecord:
        return cls(
            id=str(row["id"]),
            name=row["name"],
            key=row["key"],
            monthly_limit=row.get("monthly_limit"),
            usage=row.get("usage") or 0,
            created_at=str(row["created_at"]),
        )


class KeyStore(ABC):
    @abstractmethod
    async def initialize(self) -> None: ...

    @abstractmethod
    async def close(self) -> None: ...

    @abstractmethod
    async def list_all(self) -> list[ApiKeyRecord]: ...

    @abstractmethod
    async def insert(
        self,
        name: str,
        key: str,
        monthly_limit: int | float | None,
        usage: int | float = 0,
    ) -> ApiKeyRecord: ...

    @abstractmethod
    async def update(self, key_id: str, fields: dict[str, Any]) -> ApiKeyRecord: ...

    @abstractmethod
    async def delete(self, key_id: str) -> None: ...


_UPDATABLE_COLUMNS = ("name", "monthly_limit", "usage")


class SqliteKeyStore(KeyStore):
    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._db = await aiosqlite.connect(str(self._db_path))
            self._db.row_factory = aiosqlite.Row
            await self._db.execute(
                """CREATE TABLE IF NOT EXISTS api_keys (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    key TEXT UNIQUE NOT NULL,
                    monthly_limit NUMERIC,
                    usage NUMERIC NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                )"""
            )
            await self._db.commit()
        except (OSError, sqlite3.Error) as exc:
            raise StoreError(f"Failed to open key store at {self._db_path}") from exc

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StoreError("Key store is not initialized")
        return self._db

    async def _get(self, key_id: str) -> ApiKeyRecord | None:
        async with self._conn().execute(
            "SELECT * FROM api_keys WHERE id = ?", (key_id,)
        ) as cursor:
            row = await cursor.fetchone()
            if row is None:
                return None
            return ApiKeyRecord.from_row(dict(row))

    async def list_all(self) -> list[ApiKeyRecord]:
        db = self._conn()
        try:
            async with db.execute(
                "SELECT * FROM api_keys ORDER BY created_at DESC, rowid DESC"
            ) as cursor:
                rows = await cursor.fetchall()
                return [ApiKeyRecord.from_row(dict(row)) for row in rows]
        except sqlite3.Error as exc:
            raise StoreError("Failed to list API keys") from exc

    async def insert(
        self,
        name: str,
        key: str,
        monthly_limit: int | float | None,
        usage: int | float = 0,
    ) -> ApiKeyRecord:
        record = ApiKeyRecord(
            id=uuid.uuid4().hex,
            name=name,
            key=key,
            monthly_limit=monthly_limit,
            usage=usage,
            created_at=datetime.now(timezone.utc).isoformat(),
        )

        db = self._conn()
        try:
            await db.execute(
                "INSERT INTO api_keys (id, name, key, monthly_limit, usage, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    record.id,
                    record.name,
                    record.key,
                    record.monthly_limit,
                    record.usage,
                    record.created_at,
                ),
            )
            await db.commit()
        except sqlite3.Error as exc:
            await db.rollback()
            raise StoreError("Failed to insert API key") from exc

        return record

    async def update(self, key_id: str, fields: dict[str, Any]) -> ApiKeyRecord:
        unknown = set(fields) - set(_UPDATABLE_COLUMNS)
        if unknown:
            raise StoreError(f"Cannot update columns: {', '.join(sorted(unknown))}")

        db = self._conn()
        if fields:
            assignments = ", ".join(f"{column} = ?" for column in fields)
            try:
                cursor = await db.execute(
                    f"UPDATE api_keys SET {assignments} WHERE id = ?",
                    (*fields.values(), key_id),
                )
                await db.commit()
            except sqlite3.Error as exc:
                await db.rollback()
                raise StoreError(f"Failed to update API key '{key_id}'") from exc
            if cursor.rowcount == 0:
                raise KeyNotFoundError(key_id)

        try:
            record = await self._get(key_id)
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to read API key '{key_id}'") from exc
        if record is None:
            raise KeyNotFoundError(key_id)
        return record

    async def delete(self, key_id: str) -> None:
        db = self._conn()
        try:
            await db.execute("DELETE FROM api_keys WHERE id = ?", (key_id,))
            await db.commit()
        except sqlite3.Error as exc:
            await db.rollback()
            raise StoreError(f"Failed to delete API key '{key_id}'") from exc
