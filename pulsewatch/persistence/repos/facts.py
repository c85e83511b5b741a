from __future__ import annotations

from pulsewatch.core.errors import MissingFieldError
from pulsewatch.domain.records import Fact, JSONValue
from pulsewatch.persistence.kv import TenantKeyValueStore


FACTS_KEY = "facts"
# Keep only the most recent facts; older entries are dropped silently.
MAX_FACTS = 200


class FactsLog:
    def __init__(self, kv: TenantKeyValueStore, *, max_entries: int = MAX_FACTS) -> None:
        self._kv = kv
        self._max_entries = max_entries

    async def record(
        self,
        *,
        source: str | None,
        type: str | None,
        entity: str | None,
        meta: JSONValue = None,
        ts: int,
    ) -> Fact:
        fields = {"source": source, "type": type, "entity": entity}
        missing = [name for name, value in fields.items() if not (value or "").strip()]
        if missing:
            raise MissingFieldError(f"Missing required fact fields: {', '.join(missing)}")
        fact = Fact(
            ts=ts,
            source=source.strip(),
            type=type.strip(),
            entity=entity.strip(),
            meta=meta,
        )
        existing = await self._kv.get(FACTS_KEY)
        items = existing if isinstance(existing, list) else []
        items.insert(0, fact.model_dump(mode="json"))
        await self._kv.put(FACTS_KEY, items[: self._max_entries])
        return fact

    async def list_all(self) -> list[Fact]:
        raw = await self._kv.get(FACTS_KEY)
        if not isinstance(raw, list):
            return []
        return [Fact.model_validate(item) for item in raw]
