"""Tenant-scoped key-value adapters.

The service does not own a storage engine. Every adapter exposes the same
small contract (``get``/``put``/``list_keys`` on JSON-serialisable values)
bound to exactly one tenant, and every adapter gives read-your-writes
consistency to the caller that performed the write.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Protocol

from redis.asyncio import Redis
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pulsewatch.core.config import Settings, get_settings
from pulsewatch.core.errors import ConfigError
from pulsewatch.domain.models import TenantKeyValue
from pulsewatch.persistence.db import get_sessionmaker
from pulsewatch.persistence.guards import require_tenant_id, tenant_predicate


logger = logging.getLogger(__name__)


class TenantKeyValueStore(Protocol):
    tenant_id: str

    async def get(self, key: str) -> Any | None: ...

    async def put(self, key: str, value: Any) -> None: ...

    async def list_keys(self, prefix: str = "") -> list[str]: ...


class KeyValueBackend(Protocol):
    def for_tenant(self, tenant_id: str) -> TenantKeyValueStore: ...

    async def close(self) -> None: ...


def _encode(value: Any) -> str:
    # Reject non-JSON values at write time instead of on a later read.
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


class InMemoryKeyValueStore:
    def __init__(self, tenant_id: str, data: dict[str, str]) -> None:
        self.tenant_id = tenant_id
        self._data = data

    # Values are stored encoded so callers never alias stored objects.
    async def get(self, key: str) -> Any | None:
        raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    async def put(self, key: str, value: Any) -> None:
        self._data[key] = _encode(value)

    async def list_keys(self, prefix: str = "") -> list[str]:
        return sorted(key for key in self._data if key.startswith(prefix))


class InMemoryKeyValueBackend:
    """Process-local backend for tests and single-process development."""

    def __init__(self) -> None:
        self._tenants: dict[str, dict[str, str]] = {}

    def for_tenant(self, tenant_id: str) -> InMemoryKeyValueStore:
        tenant_id = require_tenant_id(tenant_id)
        data = self._tenants.setdefault(tenant_id, {})
        return InMemoryKeyValueStore(tenant_id, data)

    async def close(self) -> None:
        return None


class SqlKeyValueStore:
    def __init__(self, tenant_id: str, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.tenant_id = tenant_id
        self._session_factory = session_factory

    async def get(self, key: str) -> Any | None:
        async with self._session_factory() as session:
            row = await session.get(TenantKeyValue, (self.tenant_id, key))
            return None if row is None else row.value

    async def put(self, key: str, value: Any) -> None:
        _encode(value)
        # One short transaction per write; commit before returning for read-your-writes.
        async with self._session_factory() as session:
            await session.merge(TenantKeyValue(tenant_id=self.tenant_id, key=key, value=value))
            await session.commit()

    async def list_keys(self, prefix: str = "") -> list[str]:
        async with self._session_factory() as session:
            rows = await session.execute(
                select(TenantKeyValue.key)
                .where(tenant_predicate(TenantKeyValue, self.tenant_id))
                .where(TenantKeyValue.key.startswith(prefix, autoescape=True))
                .order_by(TenantKeyValue.key)
            )
            return [str(key) for key in rows.scalars().all()]


class SqlKeyValueBackend:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    def for_tenant(self, tenant_id: str) -> SqlKeyValueStore:
        return SqlKeyValueStore(require_tenant_id(tenant_id), self._session_factory)

    async def close(self) -> None:
        return None


def _glob_escape(value: str) -> str:
    # Escape Redis MATCH metacharacters so prefixes are matched literally.
    return "".join(f"\\{char}" if char in "*?[]\\" else char for char in value)


class RedisKeyValueStore:
    def __init__(self, tenant_id: str, redis: Redis, prefix: str) -> None:
        self.tenant_id = tenant_id
        self._redis = redis
        self._namespace = f"{prefix}:{tenant_id}:"

    async def get(self, key: str) -> Any | None:
        raw = await self._redis.get(self._namespace + key)
        if raw is None:
            return None
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8")
        return json.loads(raw)

    async def put(self, key: str, value: Any) -> None:
        await self._redis.set(self._namespace + key, _encode(value))

    async def list_keys(self, prefix: str = "") -> list[str]:
        pattern = _glob_escape(self._namespace + prefix) + "*"
        keys: list[str] = []
        async for raw_key in self._redis.scan_iter(match=pattern):
            key = raw_key.decode("utf-8") if isinstance(raw_key, (bytes, bytearray)) else str(raw_key)
            keys.append(key[len(self._namespace):])
        return sorted(keys)


class RedisKeyValueBackend:
    def __init__(self, redis: Redis, prefix: str) -> None:
        self._redis = redis
        self._prefix = prefix

    def for_tenant(self, tenant_id: str) -> RedisKeyValueStore:
        return RedisKeyValueStore(require_tenant_id(tenant_id), self._redis, self._prefix)

    async def close(self) -> None:
        await self._redis.aclose()


def build_backend(settings: Settings | None = None) -> KeyValueBackend:
    # Select the adapter from settings; unknown names are an operator error.
    settings = settings or get_settings()
    name = settings.store_backend.strip().lower()
    logger.info("kv_backend_selected backend=%s", name)
    if name == "memory":
        return InMemoryKeyValueBackend()
    if name == "sql":
        return SqlKeyValueBackend(get_sessionmaker(settings.database_url))
    if name == "redis":
        redis = Redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
        return RedisKeyValueBackend(redis, settings.redis_prefix)
    raise ConfigError(f"Unknown store backend: {settings.store_backend!r}")
