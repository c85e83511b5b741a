from __future__ import annotations

import pytest

from pulsewatch.core.config import get_settings
from pulsewatch.services.telemetry import reset_telemetry


@pytest.fixture(autouse=True)
def isolate_settings_and_telemetry(monkeypatch: pytest.MonkeyPatch) -> None:
    # Keep env-driven settings and in-process counters from leaking between tests.
    for name in (
        "STORE_BACKEND",
        "HEARTBEAT_SIGNING_SECRET",
        "ADMIN_TOKEN",
        "ALERT_SIGNING_SECRET",
        "DEFAULT_TENANT",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    reset_telemetry()
    yield
    get_settings.cache_clear()
    reset_telemetry()
