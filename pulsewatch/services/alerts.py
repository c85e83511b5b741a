from __future__ import annotations

import asyncio
from dataclasses import dataclass
import hashlib
import hmac
import json
import logging
import time
from typing import Any

import httpx

from pulsewatch.core.config import get_settings
from pulsewatch.core.errors import TransientDeliveryError
from pulsewatch.domain.state import HealthState
from pulsewatch.services.telemetry import increment_counter, record_external_call


logger = logging.getLogger(__name__)

TRANSITION_EVENT = "heartbeat.transition"
_INTEGRATION = "alert.webhook"


@dataclass(frozen=True)
class WebhookDeliveryResult:
    # Summarize one delivery attempt for logs and tests; never returned to request callers.
    sent: bool
    status_code: int | None
    message: str


def build_alert_signature(secret: str, payload: bytes) -> str:
    # Sign the exact body bytes so receivers can verify before parsing.
    return "sha256=" + hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def transition_payload(
    *,
    tenant_id: str,
    client_id: str,
    from_state: HealthState,
    to_state: HealthState,
    age_ms: int,
    ts: int,
) -> dict[str, Any]:
    return {
        "event": TRANSITION_EVENT,
        "tenant": tenant_id,
        "id": client_id,
        "from": from_state.value,
        "to": to_state.value,
        "age_ms": age_ms,
        "ts": ts,
    }


class AlertDispatcher:
    """Fire-and-forget webhook delivery.

    ``dispatch`` schedules delivery on the running event loop and returns at
    once; the triggering request never waits for the webhook. Failures are
    logged and counted, never raised, and never retried.
    """

    def __init__(
        self,
        *,
        timeout_ms: int | None = None,
        signing_secret: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        timeout_ms = timeout_ms if timeout_ms is not None else settings.alert_webhook_timeout_ms
        self._timeout_s = timeout_ms / 1000.0
        self._signing_secret = signing_secret if signing_secret is not None else settings.alert_signing_secret
        self._transport = transport
        self._tasks: set[asyncio.Task[WebhookDeliveryResult]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def dispatch(self, url: str, payload: dict[str, Any]) -> asyncio.Task[WebhookDeliveryResult] | None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("alert_dispatch_skipped reason=no_running_loop url=%s", url)
            return None
        task = loop.create_task(self.deliver(url, payload))
        # Hold a strong reference until completion so the task is not garbage collected.
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        increment_counter("alerts_dispatched_total")
        return task

    async def deliver(self, url: str, payload: dict[str, Any]) -> WebhookDeliveryResult:
        start = time.monotonic()
        try:
            status_code = await self._post(url, payload)
        except TransientDeliveryError as exc:
            self._record(start, success=False)
            logger.warning(
                "alert_delivery_failed url=%s event=%s id=%s reason=%s",
                url,
                payload.get("event"),
                payload.get("id"),
                exc.message,
            )
            return WebhookDeliveryResult(sent=False, status_code=None, message=exc.message)
        except Exception as exc:  # noqa: BLE001 - alert failures are non-fatal
            self._record(start, success=False)
            logger.warning("alert_delivery_error url=%s", url, exc_info=exc)
            return WebhookDeliveryResult(sent=False, status_code=None, message=str(exc))
        self._record(start, success=True)
        logger.info(
            "alert_delivered url=%s id=%s from=%s to=%s status=%s",
            url,
            payload.get("id"),
            payload.get("from"),
            payload.get("to"),
            status_code,
        )
        return WebhookDeliveryResult(sent=True, status_code=status_code, message="Webhook delivered successfully")

    async def _post(self, url: str, payload: dict[str, Any]) -> int:
        body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "X-Pulsewatch-Event": str(payload.get("event") or TRANSITION_EVENT),
        }
        if self._signing_secret:
            headers["X-Pulsewatch-Signature"] = build_alert_signature(self._signing_secret, body)
        try:
            async with httpx.AsyncClient(timeout=self._timeout_s, transport=self._transport) as client:
                response = await client.post(url, content=body, headers=headers)
        except httpx.HTTPError as exc:
            raise TransientDeliveryError(f"{type(exc).__name__}: {exc}") from exc
        if response.status_code >= 400:
            raise TransientDeliveryError(f"Webhook responded with status {response.status_code}")
        return response.status_code

    def _record(self, start: float, *, success: bool) -> None:
        record_external_call(
            integration=_INTEGRATION,
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=success,
        )
        if not success:
            increment_counter("alerts_failed_total")

    async def drain(self) -> None:
        # Wait for in-flight deliveries; used on shutdown and by tests.
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
