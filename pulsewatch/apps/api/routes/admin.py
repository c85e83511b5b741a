from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from pulsewatch.apps.api.deps import get_engine, get_tenant, require_admin
from pulsewatch.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from pulsewatch.apps.api.response import SuccessEnvelope, success_response
from pulsewatch.domain.records import TenantConfig
from pulsewatch.services.heartbeat import HeartbeatEngine
from pulsewatch.services.tenants import TenantContext

router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    responses=DEFAULT_ERROR_RESPONSES,
    dependencies=[Depends(require_admin)],
)


class TenantConfigResponse(BaseModel):
    tenant: str
    tier: str
    alert_webhook_url: str | None
    updated_at: int | None


class TenantConfigRequest(BaseModel):
    # Tier is free-form on purpose: unknown values fall back to "free".
    tier: str = Field(default="free", max_length=32)
    alert_webhook_url: str | None = Field(default=None, max_length=2048)


def _to_response(tenant_id: str, config: TenantConfig) -> TenantConfigResponse:
    return TenantConfigResponse(
        tenant=tenant_id,
        tier=config.tier.value,
        alert_webhook_url=config.alert_webhook_url,
        updated_at=config.updated_at,
    )


@router.get("/config", response_model=SuccessEnvelope[TenantConfigResponse])
async def get_config(
    request: Request,
    tenant: TenantContext = Depends(get_tenant),
    engine: HeartbeatEngine = Depends(get_engine),
) -> dict:
    config = await engine.get_config(tenant)
    return success_response(request=request, data=_to_response(tenant.tenant_id, config))


@router.put("/config", response_model=SuccessEnvelope[TenantConfigResponse])
async def put_config(
    payload: TenantConfigRequest,
    request: Request,
    tenant: TenantContext = Depends(get_tenant),
    engine: HeartbeatEngine = Depends(get_engine),
) -> dict:
    config = await engine.set_config(
        tenant,
        tier=payload.tier,
        alert_webhook_url=payload.alert_webhook_url,
    )
    return success_response(request=request, data=_to_response(tenant.tenant_id, config))
