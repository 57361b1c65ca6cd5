import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, Query, Request

from dandi.keys.store import ApiKeyRecord, KeyStore, StoreError, generate_api_key
from dandi.schemas.errors import (
    CreateKeyError,
    DeleteKeyError,
    ListKeysError,
    UpdateKeyUsageError,
)
from dandi.schemas.keys import (
    KeyCreateRequest,
    KeyDeleteResponse,
    KeyObject,
    KeyUsageUpdateRequest,
)

logger = logging.getLogger("dandi.routes")

router = APIRouter()


def get_key_store(request: Request) -> KeyStore:
    return request.app.state.key_store


def _to_object(record: ApiKeyRecord) -> KeyObject:
    return KeyObject(**asdict(record))


@router.get("/keys")
async def list_keys(key_store: KeyStore = Depends(get_key_store)) -> list[KeyObject]:
    try:
        records = await key_store.list_all()
    except StoreError:
        logger.exception("Failed to list API keys")
        raise ListKeysError()
    return [_to_object(r) for r in records]


@router.post("/keys")
async def create_key(
    request: Request,
    body: KeyCreateRequest,
    key_store: KeyStore = Depends(get_key_store),
) -> KeyObject:
    prefix = request.app.state.config.key_prefix
    try:
        record = await key_store.insert(
            name=body.name,
            key=generate_api_key(prefix),
            monthly_limit=body.limit or None,
            usage=0,
        )
    except StoreError:
        logger.exception("Failed to create API key '%s'", body.name)
        raise CreateKeyError()
    logger.info("Created API key '%s' (%s)", record.name, record.id)
    return _to_object(record)


@router.delete("/keys")
async def delete_key(
    key_id: str = Query(alias="id"),
    key_store: KeyStore = Depends(get_key_store),
) -> KeyDeleteResponse:
    try:
        await key_store.delete(key_id)
    except StoreError:
        logger.exception("Failed to delete API key '%s'", key_id)
        raise DeleteKeyError()
    logger.info("Deleted API key %s", key_id)
    return KeyDeleteResponse(success=True)


@router.patch("/keys")
async def update_key_usage(
    body: KeyUsageUpdateRequest,
    key_store: KeyStore = Depends(get_key_store),
) -> KeyObject:
    try:
        record = await key_store.update(body.id, {"usage": body.usage})
    except StoreError:
        logger.exception("Failed to update usage of API key '%s'", body.id)
        raise UpdateKeyUsageError()
    return _to_object(record)
