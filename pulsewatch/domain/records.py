from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeAlias

from pydantic import BaseModel, field_validator

from pulsewatch.domain.state import HealthState


# Opaque caller metadata: null/bool/number/string/array/object, stored verbatim.
JSONValue: TypeAlias = Any


class Tier(str, Enum):
    FREE = "free"
    PREMIUM = "premium"

    @classmethod
    def parse(cls, value: Any) -> "Tier":
        # Unknown or malformed tiers fall back to free instead of failing the request.
        if isinstance(value, Tier):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.FREE


class TenantConfig(BaseModel):
    tier: Tier = Tier.FREE
    alert_webhook_url: str | None = None
    updated_at: int | None = None

    @field_validator("tier", mode="before")
    @classmethod
    def _coerce_tier(cls, value: Any) -> Tier:
        return Tier.parse(value)

    @property
    def alerts_enabled(self) -> bool:
        # Transition alerts are a premium feature and need a destination.
        return self.tier == Tier.PREMIUM and bool(self.alert_webhook_url)


class ClientRecord(BaseModel):
    id: str
    last_seen: int
    source_ip: str | None = None
    user_agent: str | None = None
    meta: JSONValue = None
    verified: bool = False


class Fact(BaseModel):
    ts: int
    source: str
    type: str
    entity: str
    meta: JSONValue = None


@dataclass(frozen=True)
class PingResult:
    record: ClientRecord
    state: HealthState
    previous_state: HealthState | None
    alerted: bool


@dataclass(frozen=True)
class ClientStatus:
    record: ClientRecord
    state: HealthState
    age_ms: int


@dataclass(frozen=True)
class ClientListResult:
    tenant_id: str
    tier: Tier
    generated_at: int
    clients: list[ClientStatus]
    alerts_sent: int = 0
