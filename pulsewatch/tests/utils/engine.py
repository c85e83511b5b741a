from __future__ import annotations

from pulsewatch.persistence.kv import InMemoryKeyValueBackend, KeyValueBackend
from pulsewatch.services.alerts import AlertDispatcher
from pulsewatch.services.heartbeat import HeartbeatEngine
from pulsewatch.services.tenants import TenantRegistry
from pulsewatch.tests.utils.clock import FakeClock
from pulsewatch.tests.utils.webhooks import WebhookRecorder


SIGNING_SECRET = "test-signing-secret"
WEBHOOK_URL = "https://hooks.example.test/pulse"


def build_engine(
    *,
    clock: FakeClock,
    recorder: WebhookRecorder,
    signing_secret: str | None = SIGNING_SECRET,
    backend: KeyValueBackend | None = None,
) -> tuple[HeartbeatEngine, AlertDispatcher, TenantRegistry]:
    # Wire an engine against an in-memory backend and a recording webhook transport.
    dispatcher = AlertDispatcher(timeout_ms=1000, signing_secret=None, transport=recorder.transport)
    registry = TenantRegistry(backend or InMemoryKeyValueBackend(), max_tenants=16)
    engine = HeartbeatEngine(dispatcher=dispatcher, signing_secret=signing_secret, clock=clock)
    return engine, dispatcher, registry
