from __future__ import annotations

from pulsewatch.domain.records import ClientRecord, TenantConfig
from pulsewatch.domain.state import HealthState, parse_state
from pulsewatch.persistence.kv import TenantKeyValueStore


CONFIG_KEY = "config"
INDEX_KEY = "clients:index"
_RECORD_PREFIX = "client:"
_STATE_PREFIX = "state:"


def record_key(client_id: str) -> str:
    return f"{_RECORD_PREFIX}{client_id}"


def state_key(client_id: str) -> str:
    return f"{_STATE_PREFIX}{client_id}"


class ClientRecordStore:
    """Client records, the first-seen index, last-known states and tenant config.

    Every method is scoped to the tenant the underlying key-value store is
    bound to. Records are overwritten, never merged, and never deleted.
    """

    def __init__(self, kv: TenantKeyValueStore) -> None:
        self._kv = kv

    @property
    def tenant_id(self) -> str:
        return self._kv.tenant_id

    async def put_record(self, record: ClientRecord) -> None:
        # Write the record before the index so an indexed id always has a record.
        await self._kv.put(record_key(record.id), record.model_dump(mode="json"))
        index = await self.list_ids()
        if record.id not in index:
            index.append(record.id)
            await self._kv.put(INDEX_KEY, index)

    async def get_record(self, client_id: str) -> ClientRecord | None:
        raw = await self._kv.get(record_key(client_id))
        if raw is None:
            return None
        return ClientRecord.model_validate(raw)

    async def list_ids(self) -> list[str]:
        raw = await self._kv.get(INDEX_KEY)
        if not isinstance(raw, list):
            return []
        return [str(client_id) for client_id in raw]

    async def get_config(self) -> TenantConfig:
        raw = await self._kv.get(CONFIG_KEY)
        if not isinstance(raw, dict):
            return TenantConfig()
        return TenantConfig.model_validate(raw)

    async def put_config(self, config: TenantConfig) -> None:
        await self._kv.put(CONFIG_KEY, config.model_dump(mode="json"))

    async def get_last_state(self, client_id: str) -> HealthState | None:
        return parse_state(await self._kv.get(state_key(client_id)))

    async def put_last_state(self, client_id: str, state: HealthState) -> None:
        await self._kv.put(state_key(client_id), state.value)
