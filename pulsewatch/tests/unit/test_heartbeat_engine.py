from __future__ import annotations

import asyncio

import httpx
import pytest

from pulsewatch.core.errors import (
    BadSignatureError,
    ConfigError,
    InvalidConfigError,
    MissingFieldError,
    MissingIdError,
    MissingSignatureFieldError,
    NotFoundError,
    UnauthorizedError,
)
from pulsewatch.domain.records import ClientRecord, Tier
from pulsewatch.domain.state import HealthState
from pulsewatch.persistence.kv import InMemoryKeyValueBackend
from pulsewatch.services.alerts import AlertDispatcher
from pulsewatch.services.heartbeat import HeartbeatEngine
from pulsewatch.services.signatures import build_ping_signature
from pulsewatch.services.telemetry import counters_snapshot
from pulsewatch.services.tenants import TenantRegistry
from pulsewatch.tests.utils.clock import FakeClock
from pulsewatch.tests.utils.engine import SIGNING_SECRET, WEBHOOK_URL, build_engine
from pulsewatch.tests.utils.webhooks import WebhookRecorder


def _signed(tenant_id: str, client_id: str, now_ms: int) -> dict[str, str]:
    timestamp = str(now_ms)
    return {
        "timestamp": timestamp,
        "signature": build_ping_signature(SIGNING_SECRET, tenant_id, client_id, timestamp),
    }


@pytest.mark.asyncio
async def test_unsigned_ping_on_free_tier_is_accepted_unverified() -> None:
    clock = FakeClock()
    engine, _dispatcher, registry = build_engine(clock=clock, recorder=WebhookRecorder())
    ctx = registry.get("acme")

    result = await engine.ingest_ping(ctx, " worker-1 ", source_ip="10.0.0.1", user_agent="agent/1", meta={"v": 1})

    assert result.state == HealthState.OK
    assert result.record.id == "worker-1"
    assert result.record.verified is False
    assert result.record.last_seen == clock.now_ms
    assert result.previous_state is None
    assert result.alerted is False
    assert counters_snapshot()["pings_accepted_total"] == 1


@pytest.mark.asyncio
async def test_signed_ping_on_free_tier_is_marked_verified() -> None:
    clock = FakeClock()
    engine, _dispatcher, registry = build_engine(clock=clock, recorder=WebhookRecorder())
    ctx = registry.get("acme")

    result = await engine.ingest_ping(ctx, "worker-1", **_signed("acme", "worker-1", clock.now_ms))

    assert result.record.verified is True


@pytest.mark.asyncio
async def test_free_tier_rejects_bad_or_partial_signatures() -> None:
    clock = FakeClock()
    engine, _dispatcher, registry = build_engine(clock=clock, recorder=WebhookRecorder())
    ctx = registry.get("acme")

    with pytest.raises(BadSignatureError):
        await engine.ingest_ping(ctx, "worker-1", timestamp=str(clock.now_ms), signature="00" * 32)
    with pytest.raises(MissingSignatureFieldError):
        await engine.ingest_ping(ctx, "worker-1", timestamp=str(clock.now_ms))

    assert await ctx.store.get_record("worker-1") is None
    assert counters_snapshot()["pings_rejected_total"] == 2


@pytest.mark.asyncio
async def test_blank_id_is_rejected() -> None:
    engine, _dispatcher, registry = build_engine(clock=FakeClock(), recorder=WebhookRecorder())
    with pytest.raises(MissingIdError):
        await engine.ingest_ping(registry.get("acme"), "   ")


@pytest.mark.asyncio
async def test_premium_requires_signature() -> None:
    clock = FakeClock()
    engine, _dispatcher, registry = build_engine(clock=clock, recorder=WebhookRecorder())
    ctx = registry.get("acme")
    await engine.set_config(ctx, tier="premium", alert_webhook_url=None)

    with pytest.raises(UnauthorizedError):
        await engine.ingest_ping(ctx, "worker-1")

    result = await engine.ingest_ping(ctx, "worker-1", **_signed("acme", "worker-1", clock.now_ms))
    assert result.record.verified is True


@pytest.mark.asyncio
async def test_signature_attempt_without_host_secret_is_config_error() -> None:
    clock = FakeClock()
    engine, _dispatcher, registry = build_engine(clock=clock, recorder=WebhookRecorder(), signing_secret=None)
    ctx = registry.get("acme")

    # Unsigned free pings do not need the host secret.
    await engine.ingest_ping(ctx, "worker-1")
    with pytest.raises(ConfigError):
        await engine.ingest_ping(ctx, "worker-1", timestamp=str(clock.now_ms), signature="ab")


@pytest.mark.asyncio
async def test_status_decays_without_new_pings() -> None:
    clock = FakeClock()
    engine, _dispatcher, registry = build_engine(clock=clock, recorder=WebhookRecorder())
    ctx = registry.get("acme")
    await engine.ingest_ping(ctx, "worker-1")

    clock.advance(59_999)
    assert (await engine.get_status(ctx, "worker-1")).state == HealthState.OK
    clock.advance(1)
    status = await engine.get_status(ctx, "worker-1")
    assert status.state == HealthState.WARN
    assert status.age_ms == 60_000
    clock.advance(240_000)
    assert (await engine.get_status(ctx, "worker-1")).state == HealthState.DOWN


@pytest.mark.asyncio
async def test_status_errors() -> None:
    engine, _dispatcher, registry = build_engine(clock=FakeClock(), recorder=WebhookRecorder())
    ctx = registry.get("acme")
    with pytest.raises(MissingIdError):
        await engine.get_status(ctx, "")
    with pytest.raises(NotFoundError):
        await engine.get_status(ctx, "ghost")


@pytest.mark.asyncio
async def test_status_age_is_clamped_when_clock_runs_backwards() -> None:
    clock = FakeClock()
    engine, _dispatcher, registry = build_engine(clock=clock, recorder=WebhookRecorder())
    ctx = registry.get("acme")
    await engine.ingest_ping(ctx, "worker-1")
    clock.advance(-5_000)
    status = await engine.get_status(ctx, "worker-1")
    assert status.age_ms == 0
    assert status.state == HealthState.OK


@pytest.mark.asyncio
async def test_listing_orders_freshest_first_with_stable_ties() -> None:
    clock = FakeClock()
    engine, _dispatcher, registry = build_engine(clock=clock, recorder=WebhookRecorder())
    ctx = registry.get("acme")
    await engine.ingest_ping(ctx, "old")
    clock.advance(70_000)
    await engine.ingest_ping(ctx, "tie-a")
    await engine.ingest_ping(ctx, "tie-b")
    clock.advance(1_000)

    result = await engine.list_clients(ctx)

    assert [status.record.id for status in result.clients] == ["tie-a", "tie-b", "old"]
    assert [status.state for status in result.clients] == [HealthState.OK, HealthState.OK, HealthState.WARN]
    assert result.tier == Tier.FREE
    assert result.generated_at == clock.now_ms
    assert result.alerts_sent == 0


@pytest.mark.asyncio
async def test_free_listing_never_alerts_or_touches_cached_state() -> None:
    clock = FakeClock()
    recorder = WebhookRecorder()
    engine, dispatcher, registry = build_engine(clock=clock, recorder=recorder)
    ctx = registry.get("acme")
    await engine.set_config(ctx, tier="free", alert_webhook_url=WEBHOOK_URL)
    await engine.ingest_ping(ctx, "worker-1")
    clock.advance(120_000)

    await engine.list_clients(ctx)
    await dispatcher.drain()

    assert recorder.requests == []
    assert await ctx.store.get_last_state("worker-1") == HealthState.OK


@pytest.mark.asyncio
async def test_premium_decay_alerts_once_per_transition() -> None:
    clock = FakeClock()
    recorder = WebhookRecorder()
    engine, dispatcher, registry = build_engine(clock=clock, recorder=recorder)
    ctx = registry.get("acme")
    await engine.set_config(ctx, tier="premium", alert_webhook_url=WEBHOOK_URL)
    await engine.ingest_ping(ctx, "worker-1", **_signed("acme", "worker-1", clock.now_ms))

    clock.advance(61_000)
    first = await engine.list_clients(ctx)
    second = await engine.list_clients(ctx)
    await dispatcher.drain()

    assert first.alerts_sent == 1
    assert second.alerts_sent == 0
    assert recorder.transitions() == [("worker-1", "OK", "WARN")]
    payload = recorder.payloads[0]
    assert payload["event"] == "heartbeat.transition"
    assert payload["tenant"] == "acme"
    assert payload["age_ms"] == 61_000
    assert payload["ts"] == clock.now_ms

    clock.advance(240_000)
    await engine.list_clients(ctx)
    await dispatcher.drain()
    assert recorder.transitions()[-1] == ("worker-1", "WARN", "DOWN")


@pytest.mark.asyncio
async def test_premium_listing_seeds_cache_silently() -> None:
    clock = FakeClock()
    recorder = WebhookRecorder()
    engine, dispatcher, registry = build_engine(clock=clock, recorder=recorder)
    ctx = registry.get("acme")
    await engine.set_config(ctx, tier="premium", alert_webhook_url=WEBHOOK_URL)
    # A record with no cached state, e.g. written before alerts were configured.
    await ctx.store.put_record(ClientRecord(id="worker-1", last_seen=clock.now_ms - 120_000))

    result = await engine.list_clients(ctx)
    await dispatcher.drain()

    assert result.alerts_sent == 0
    assert recorder.requests == []
    assert await ctx.store.get_last_state("worker-1") == HealthState.WARN


@pytest.mark.asyncio
async def test_ping_after_outage_sends_recovery_alert() -> None:
    clock = FakeClock()
    recorder = WebhookRecorder()
    engine, dispatcher, registry = build_engine(clock=clock, recorder=recorder)
    ctx = registry.get("acme")
    await engine.set_config(ctx, tier="premium", alert_webhook_url=WEBHOOK_URL)
    await engine.ingest_ping(ctx, "worker-1", **_signed("acme", "worker-1", clock.now_ms))
    clock.advance(400_000)
    await engine.get_status(ctx, "worker-1")

    result = await engine.ingest_ping(ctx, "worker-1", **_signed("acme", "worker-1", clock.now_ms))
    await dispatcher.drain()

    assert result.previous_state == HealthState.DOWN
    assert result.alerted is True
    assert recorder.transitions() == [("worker-1", "DOWN", "OK")]
    assert recorder.payloads[0]["age_ms"] == 0


@pytest.mark.asyncio
async def test_status_lookup_never_alerts() -> None:
    clock = FakeClock()
    recorder = WebhookRecorder()
    engine, dispatcher, registry = build_engine(clock=clock, recorder=recorder)
    ctx = registry.get("acme")
    await engine.set_config(ctx, tier="premium", alert_webhook_url=WEBHOOK_URL)
    await engine.ingest_ping(ctx, "worker-1", **_signed("acme", "worker-1", clock.now_ms))
    clock.advance(90_000)

    await engine.get_status(ctx, "worker-1")
    # The lookup refreshed the cache, so the listing sees no change either.
    result = await engine.list_clients(ctx)
    await dispatcher.drain()

    assert result.alerts_sent == 0
    assert recorder.requests == []


@pytest.mark.asyncio
async def test_set_config_normalizes_input() -> None:
    clock = FakeClock()
    engine, _dispatcher, registry = build_engine(clock=clock, recorder=WebhookRecorder())
    ctx = registry.get("acme")

    config = await engine.set_config(ctx, tier="PLATINUM", alert_webhook_url="   ")
    assert config.tier == Tier.FREE
    assert config.alert_webhook_url is None
    assert config.updated_at == clock.now_ms

    config = await engine.set_config(ctx, tier=" Premium ", alert_webhook_url=WEBHOOK_URL)
    assert config.tier == Tier.PREMIUM
    assert (await engine.get_config(ctx)).alert_webhook_url == WEBHOOK_URL

    with pytest.raises(InvalidConfigError):
        await engine.set_config(ctx, tier="premium", alert_webhook_url="not a url")


@pytest.mark.asyncio
async def test_facts_are_stamped_with_engine_clock() -> None:
    clock = FakeClock()
    engine, _dispatcher, registry = build_engine(clock=clock, recorder=WebhookRecorder())
    ctx = registry.get("acme")

    fact = await engine.record_fact(ctx, source="deploy", type="release", entity="api")
    assert fact.ts == clock.now_ms
    assert await engine.list_facts(ctx) == [fact]
    with pytest.raises(MissingFieldError):
        await engine.record_fact(ctx, source="", type="release", entity="api")


@pytest.mark.asyncio
async def test_tenants_are_isolated() -> None:
    engine, _dispatcher, registry = build_engine(clock=FakeClock(), recorder=WebhookRecorder())
    await engine.ingest_ping(registry.get("acme"), "worker-1")

    other = await engine.list_clients(registry.get("globex"))
    assert other.clients == []
    with pytest.raises(NotFoundError):
        await engine.get_status(registry.get("globex"), "worker-1")


class _StalledWebhook:
    """Webhook that hangs until released, then answers 500."""

    def __init__(self) -> None:
        self.release = asyncio.Event()
        self.calls = 0
        self.transport = httpx.MockTransport(self._handle)

    async def _handle(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        await self.release.wait()
        return httpx.Response(500)


@pytest.mark.asyncio
async def test_stalled_failing_webhook_never_blocks_or_fails_requests() -> None:
    clock = FakeClock()
    webhook = _StalledWebhook()
    dispatcher = AlertDispatcher(timeout_ms=60_000, signing_secret=None, transport=webhook.transport)
    registry = TenantRegistry(InMemoryKeyValueBackend())
    engine = HeartbeatEngine(dispatcher=dispatcher, signing_secret=SIGNING_SECRET, clock=clock)
    ctx = registry.get("acme")
    await engine.set_config(ctx, tier="premium", alert_webhook_url=WEBHOOK_URL)
    await engine.ingest_ping(ctx, "worker-1", **_signed("acme", "worker-1", clock.now_ms))

    clock.advance(61_000)
    listing = await asyncio.wait_for(engine.list_clients(ctx), timeout=1.0)
    assert listing.alerts_sent == 1
    assert dispatcher.pending == 1
    assert not ctx.lock.locked()

    # The tenant stays usable while the first delivery is still hanging.
    clock.advance(400_000)
    result = await asyncio.wait_for(
        engine.ingest_ping(ctx, "worker-1", **_signed("acme", "worker-1", clock.now_ms)),
        timeout=1.0,
    )
    assert result.alerted is True
    assert result.state == HealthState.OK

    webhook.release.set()
    await dispatcher.drain()
    assert dispatcher.pending == 0
    assert webhook.calls == 2
    assert counters_snapshot()["alerts_failed_total"] == 2
    assert (await engine.get_status(ctx, "worker-1")).state == HealthState.OK


@pytest.mark.asyncio
async def test_back_to_back_listings_are_identical() -> None:
    clock = FakeClock()
    recorder = WebhookRecorder()
    engine, dispatcher, registry = build_engine(clock=clock, recorder=recorder)
    ctx = registry.get("acme")
    await engine.set_config(ctx, tier="premium", alert_webhook_url=WEBHOOK_URL)
    for client_id in ("a", "b", "c"):
        await engine.ingest_ping(ctx, client_id, **_signed("acme", client_id, clock.now_ms))
        clock.advance(45_000)

    first = await engine.list_clients(ctx)
    second = await engine.list_clients(ctx)
    await dispatcher.drain()

    def _view(result):
        return [(status.record.id, status.state, status.age_ms) for status in result.clients]

    assert _view(first) == _view(second)
    assert _view(first) == [
        ("c", HealthState.OK, 45_000),
        ("b", HealthState.WARN, 90_000),
        ("a", HealthState.WARN, 135_000),
    ]
    assert first.clients == second.clients
    assert (first.alerts_sent, second.alerts_sent) == (2, 0)
