"""Heartbeat state engine.

Pings overwrite a client's record and always classify OK. Status and
listing calls recompute state from wall-clock age, so clients decay
OK -> WARN -> DOWN without any new ping. ``LastKnownState`` is only a cache
used to detect transitions for premium webhook alerts:

* a ping alerts on recovery (prior state present and not OK);
* a listing alerts on any change against the cached state and seeds it
  silently when absent;
* a single-client status lookup refreshes the cache and never alerts.

Each tenant operation runs under the tenant's lock. Alerts are collected
while the lock is held and handed to the dispatcher after it is released.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Callable

from pydantic import HttpUrl, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from pulsewatch.core.errors import (
    InvalidConfigError,
    MissingIdError,
    NotFoundError,
    UnauthorizedError,
    VerificationError,
)
from pulsewatch.domain.records import (
    ClientListResult,
    ClientRecord,
    ClientStatus,
    Fact,
    JSONValue,
    PingResult,
    TenantConfig,
    Tier,
)
from pulsewatch.domain.state import classify
from pulsewatch.services.alerts import AlertDispatcher, transition_payload
from pulsewatch.services.signatures import verify_ping_signature
from pulsewatch.services.telemetry import increment_counter
from pulsewatch.services.tenants import TenantContext


logger = logging.getLogger(__name__)

Clock = Callable[[], int]

_WEBHOOK_URL = TypeAdapter(HttpUrl)


def system_clock_ms() -> int:
    return int(time.time() * 1000)


def _present(value: str | None) -> bool:
    return bool(value and value.strip())


def normalize_webhook_url(value: str | None) -> str | None:
    # Blank clears the webhook; anything else must be an absolute http(s) URL.
    if value is None or not value.strip():
        return None
    candidate = value.strip()
    try:
        _WEBHOOK_URL.validate_python(candidate)
    except PydanticValidationError as exc:
        raise InvalidConfigError(f"alert_webhook_url is not a valid http(s) URL: {candidate!r}") from exc
    return candidate


class HeartbeatEngine:
    def __init__(
        self,
        *,
        dispatcher: AlertDispatcher,
        signing_secret: str | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._signing_secret = signing_secret
        self._clock = clock or system_clock_ms

    def _verify(
        self,
        ctx: TenantContext,
        client_id: str,
        config: TenantConfig,
        timestamp: str | None,
        signature: str | None,
        now: int,
    ) -> bool:
        # Premium requires a signature; free accepts unsigned pings but verifies any attempt.
        if config.tier == Tier.PREMIUM:
            if not (_present(timestamp) and _present(signature)):
                raise UnauthorizedError("premium requires timestamp and signature")
        elif not _present(timestamp) and not _present(signature):
            return False
        verify_ping_signature(
            self._signing_secret,
            ctx.tenant_id,
            client_id,
            timestamp,
            signature,
            now_ms=now,
        )
        return True

    async def ingest_ping(
        self,
        ctx: TenantContext,
        client_id: str | None,
        *,
        timestamp: str | None = None,
        signature: str | None = None,
        source_ip: str | None = None,
        user_agent: str | None = None,
        meta: JSONValue = None,
    ) -> PingResult:
        client_id = (client_id or "").strip()
        if not client_id:
            raise MissingIdError("id is required")

        alert: dict[str, Any] | None = None
        async with ctx.lock:
            config = await ctx.store.get_config()
            now = self._clock()
            try:
                verified = self._verify(ctx, client_id, config, timestamp, signature, now)
            except (UnauthorizedError, VerificationError) as exc:
                increment_counter("pings_rejected_total")
                logger.info(
                    "ping_rejected tenant=%s id=%s tier=%s code=%s",
                    ctx.tenant_id,
                    client_id,
                    config.tier.value,
                    exc.code,
                )
                raise

            record = ClientRecord(
                id=client_id,
                last_seen=now,
                source_ip=source_ip,
                user_agent=user_agent,
                meta=meta,
                verified=verified,
            )
            await ctx.store.put_record(record)

            previous = await ctx.store.get_last_state(client_id)
            state = classify(0)
            if previous is not None and previous != state and config.alerts_enabled:
                alert = transition_payload(
                    tenant_id=ctx.tenant_id,
                    client_id=client_id,
                    from_state=previous,
                    to_state=state,
                    age_ms=0,
                    ts=now,
                )
            await ctx.store.put_last_state(client_id, state)

        increment_counter("pings_accepted_total")
        if alert is not None:
            logger.info(
                "client_recovered tenant=%s id=%s from=%s",
                ctx.tenant_id,
                client_id,
                alert["from"],
            )
            self._dispatcher.dispatch(config.alert_webhook_url, alert)
        return PingResult(record=record, state=state, previous_state=previous, alerted=alert is not None)

    async def get_status(self, ctx: TenantContext, client_id: str | None) -> ClientStatus:
        client_id = (client_id or "").strip()
        if not client_id:
            raise MissingIdError("id is required")
        async with ctx.lock:
            record = await ctx.store.get_record(client_id)
            if record is None:
                raise NotFoundError(f"Unknown client id: {client_id}")
            age_ms = max(0, self._clock() - record.last_seen)
            state = classify(age_ms)
            await ctx.store.put_last_state(client_id, state)
        return ClientStatus(record=record, state=state, age_ms=age_ms)

    async def list_clients(self, ctx: TenantContext) -> ClientListResult:
        alerts: list[dict[str, Any]] = []
        async with ctx.lock:
            config = await ctx.store.get_config()
            now = self._clock()
            statuses: list[ClientStatus] = []
            for client_id in await ctx.store.list_ids():
                record = await ctx.store.get_record(client_id)
                if record is None:
                    continue
                age_ms = max(0, now - record.last_seen)
                statuses.append(ClientStatus(record=record, state=classify(age_ms), age_ms=age_ms))
            # Stable sort keeps first-seen order among equal ages.
            statuses.sort(key=lambda status: status.age_ms)

            if config.alerts_enabled:
                for status in statuses:
                    prior = await ctx.store.get_last_state(status.record.id)
                    if prior == status.state:
                        continue
                    await ctx.store.put_last_state(status.record.id, status.state)
                    if prior is None:
                        continue
                    alerts.append(
                        transition_payload(
                            tenant_id=ctx.tenant_id,
                            client_id=status.record.id,
                            from_state=prior,
                            to_state=status.state,
                            age_ms=status.age_ms,
                            ts=now,
                        )
                    )

        for payload in alerts:
            logger.info(
                "client_state_changed tenant=%s id=%s from=%s to=%s",
                ctx.tenant_id,
                payload["id"],
                payload["from"],
                payload["to"],
            )
            self._dispatcher.dispatch(config.alert_webhook_url, payload)
        return ClientListResult(
            tenant_id=ctx.tenant_id,
            tier=config.tier,
            generated_at=now,
            clients=statuses,
            alerts_sent=len(alerts),
        )

    async def get_config(self, ctx: TenantContext) -> TenantConfig:
        return await ctx.store.get_config()

    async def set_config(
        self,
        ctx: TenantContext,
        *,
        tier: str | Tier | None,
        alert_webhook_url: str | None,
    ) -> TenantConfig:
        config = TenantConfig(
            tier=Tier.parse(tier),
            alert_webhook_url=normalize_webhook_url(alert_webhook_url),
            updated_at=self._clock(),
        )
        async with ctx.lock:
            await ctx.store.put_config(config)
        logger.info(
            "tenant_config_updated tenant=%s tier=%s webhook_configured=%s",
            ctx.tenant_id,
            config.tier.value,
            config.alert_webhook_url is not None,
        )
        return config

    async def record_fact(
        self,
        ctx: TenantContext,
        *,
        source: str | None,
        type: str | None,
        entity: str | None,
        meta: JSONValue = None,
    ) -> Fact:
        async with ctx.lock:
            return await ctx.facts.record(
                source=source,
                type=type,
                entity=entity,
                meta=meta,
                ts=self._clock(),
            )

    async def list_facts(self, ctx: TenantContext) -> list[Fact]:
        return await ctx.facts.list_all()

