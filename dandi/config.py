from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel

from dandi.keys.store import DEFAULT_KEY_PREFIX, KeyStore, SqliteKeyStore
from dandi.keys.supabase import SupabaseKeyStore


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "info"
    workers: int = 1


class SupabaseConfig(BaseModel):
    url: str | None = None
    key: str | None = None
    table: str = "api_keys"
    timeout: float = 10.0


class DandiConfig(BaseModel):
    server: ServerConfig = ServerConfig()
    store_backend: str = "sqlite"
    key_store_dir: str = "/var/lib/dandi"
    key_prefix: str = DEFAULT_KEY_PREFIX
    supabase: SupabaseConfig = SupabaseConfig()


def load_config() -> DandiConfig:
    config_path = Path(os.environ.get("DANDI_CONFIG", "/etc/dandi/config.yaml"))

    data: dict = {}
    if config_path.is_file():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

    env_overrides: dict[str, tuple[list[str], type]] = {
        "DANDI_HOST": (["server", "host"], str),
        "DANDI_PORT": (["server", "port"], int),
        "DANDI_LOG_LEVEL": (["server", "log_level"], str),
        "DANDI_WORKERS": (["server", "workers"], int),
        "DANDI_STORE_BACKEND": (["store_backend"], str),
        "DANDI_KEY_STORE_DIR": (["key_store_dir"], str),
        "DANDI_KEY_PREFIX": (["key_prefix"], str),
        "SUPABASE_URL": (["supabase", "url"], str),
        "SUPABASE_KEY": (["supabase", "key"], str),
        "SUPABASE_TABLE": (["supabase", "table"], str),
        "DANDI_STORE_TIMEOUT": (["supabase", "timeout"], float),
    }

    for env_var, (key_path, cast) in env_overrides.items():
        value = os.environ.get(env_var)
        if value is None:
            continue

        target = data
        for key in key_path[:-1]:
            if key not in target:
                target[key] = {}
            target = target[key]
        target[key_path[-1]] = cast(value)

    return DandiConfig(**data)


def build_key_store(config: DandiConfig) -> KeyStore:
    backend = config.store_backend.lower()

    if backend == "sqlite":
        return SqliteKeyStore(db_path=Path(config.key_store_dir) / "keys.db")

    if backend == "supabase":
        if not config.supabase.url or not config.supabase.key:
            raise ValueError("Supabase backend requires SUPABASE_URL and SUPABASE_KEY")
        return SupabaseKeyStore(
            url=config.supabase.url,
            api_key=config.supabase.key,
            table=config.supabase.table,
            timeout=config.supabase.timeout,
        )

    raise ValueError(f"Unknown store backend: {config.store_backend!r}")
