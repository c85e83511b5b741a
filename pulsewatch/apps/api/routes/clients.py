from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from pulsewatch.apps.api.deps import get_engine, get_tenant
from pulsewatch.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from pulsewatch.apps.api.response import SuccessEnvelope, success_response
from pulsewatch.domain.records import ClientStatus
from pulsewatch.services.heartbeat import HeartbeatEngine
from pulsewatch.services.tenants import TenantContext

router = APIRouter(prefix="/clients", tags=["heartbeat"], responses=DEFAULT_ERROR_RESPONSES)


class ClientStatusResponse(BaseModel):
    id: str
    state: str
    age_ms: int
    last_seen: int
    source_ip: str | None
    user_agent: str | None
    meta: Any = None
    verified: bool


class ClientListResponse(BaseModel):
    tenant: str
    tier: str
    generated_at: int
    clients: list[ClientStatusResponse]


def _to_response(status: ClientStatus) -> ClientStatusResponse:
    record = status.record
    return ClientStatusResponse(
        id=record.id,
        state=status.state.value,
        age_ms=status.age_ms,
        last_seen=record.last_seen,
        source_ip=record.source_ip,
        user_agent=record.user_agent,
        meta=record.meta,
        verified=record.verified,
    )


@router.get("", response_model=SuccessEnvelope[ClientListResponse])
async def list_clients(
    request: Request,
    tenant: TenantContext = Depends(get_tenant),
    engine: HeartbeatEngine = Depends(get_engine),
) -> dict:
    # Freshest clients first; premium tenants get transition alerts as a side effect.
    result = await engine.list_clients(tenant)
    data = ClientListResponse(
        tenant=result.tenant_id,
        tier=result.tier.value,
        generated_at=result.generated_at,
        clients=[_to_response(status) for status in result.clients],
    )
    return success_response(request=request, data=data)


@router.get("/{client_id:path}", response_model=SuccessEnvelope[ClientStatusResponse])
async def get_client(
    client_id: str,
    request: Request,
    tenant: TenantContext = Depends(get_tenant),
    engine: HeartbeatEngine = Depends(get_engine),
) -> dict:
    status = await engine.get_status(tenant, client_id)
    return success_response(request=request, data=_to_response(status))
