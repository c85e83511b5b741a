from __future__ import annotations

import asyncio
from collections import OrderedDict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
import logging
from typing import AsyncIterator

from pulsewatch.persistence.guards import require_tenant_id
from pulsewatch.persistence.kv import KeyValueBackend
from pulsewatch.persistence.repos.clients import ClientRecordStore
from pulsewatch.persistence.repos.facts import FactsLog


logger = logging.getLogger(__name__)


@dataclass
class TenantContext:
    # Everything one request needs for one tenant; nothing here is shared across tenants.
    tenant_id: str
    store: ClientRecordStore
    facts: FactsLog
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    leases: int = 0

    @property
    def in_use(self) -> bool:
        return self.leases > 0 or self.lock.locked()


class TenantRegistry:
    """Builds tenant contexts on first access and keeps the most recent ones.

    The per-tenant lock lives on the context, so a context must not be
    dropped while a request holds it: eviction skips leased or locked
    contexts and never drops the one just created.

    Evicting a context only drops the in-memory handle and lock: tenant data
    stays in the backend.
    """

    def __init__(self, backend: KeyValueBackend, *, max_tenants: int = 1024) -> None:
        self._backend = backend
        self._max_tenants = max(1, max_tenants)
        self._contexts: OrderedDict[str, TenantContext] = OrderedDict()

    def __len__(self) -> int:
        return len(self._contexts)

    def get(self, tenant_id: str) -> TenantContext:
        tenant_id = require_tenant_id(tenant_id)
        context = self._contexts.get(tenant_id)
        if context is not None:
            self._contexts.move_to_end(tenant_id)
            return context
        kv = self._backend.for_tenant(tenant_id)
        context = TenantContext(tenant_id=tenant_id, store=ClientRecordStore(kv), facts=FactsLog(kv))
        self._contexts[tenant_id] = context
        self._evict()
        return context

    def _evict(self) -> None:
        overflow = len(self._contexts) - self._max_tenants
        if overflow <= 0:
            return
        for tenant_id in list(self._contexts)[:-1]:
            if overflow <= 0:
                break
            if self._contexts[tenant_id].in_use:
                continue
            del self._contexts[tenant_id]
            overflow -= 1
            logger.debug("tenant_context_evicted tenant=%s", tenant_id)

    @asynccontextmanager
    async def lease(self, tenant_id: str) -> AsyncIterator[TenantContext]:
        # Pin the context for the duration of a request.
        context = self.get(tenant_id)
        context.leases += 1
        try:
            yield context
        finally:
            context.leases -= 1

    async def close(self) -> None:
        self._contexts.clear()
        await self._backend.close()
