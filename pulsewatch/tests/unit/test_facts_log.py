from __future__ import annotations

import pytest

from pulsewatch.core.errors import MissingFieldError
from pulsewatch.persistence.kv import InMemoryKeyValueBackend
from pulsewatch.persistence.repos.facts import MAX_FACTS, FactsLog


def _log() -> FactsLog:
    return FactsLog(InMemoryKeyValueBackend().for_tenant("acme"))


@pytest.mark.asyncio
async def test_facts_are_newest_first() -> None:
    log = _log()
    await log.record(source="deploy", type="release", entity="api", ts=1)
    await log.record(source="deploy", type="release", entity="worker", ts=2, meta={"sha": "abc"})
    items = await log.list_all()
    assert [item.entity for item in items] == ["worker", "api"]
    assert items[0].meta == {"sha": "abc"}


@pytest.mark.asyncio
async def test_log_is_capped_at_most_recent_entries() -> None:
    log = _log()
    for ts in range(MAX_FACTS + 5):
        await log.record(source="cron", type="tick", entity=f"e{ts}", ts=ts)
    items = await log.list_all()
    assert len(items) == MAX_FACTS
    assert items[0].ts == MAX_FACTS + 4
    assert items[-1].ts == 5


@pytest.mark.asyncio
async def test_blank_fields_are_rejected_and_nothing_is_written() -> None:
    log = _log()
    with pytest.raises(MissingFieldError) as excinfo:
        await log.record(source="deploy", type="  ", entity=None, ts=1)
    assert "type" in excinfo.value.message
    assert "entity" in excinfo.value.message
    assert await log.list_all() == []


@pytest.mark.asyncio
async def test_fields_are_trimmed() -> None:
    fact = await _log().record(source=" deploy ", type="release", entity=" api", ts=7)
    assert (fact.source, fact.entity, fact.ts) == ("deploy", "api", 7)
