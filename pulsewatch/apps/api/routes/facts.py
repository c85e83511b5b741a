from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from pulsewatch.apps.api.deps import get_engine, get_tenant
from pulsewatch.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from pulsewatch.apps.api.response import SuccessEnvelope, success_response
from pulsewatch.domain.records import Fact
from pulsewatch.services.heartbeat import HeartbeatEngine
from pulsewatch.services.tenants import TenantContext

router = APIRouter(prefix="/facts", tags=["facts"], responses=DEFAULT_ERROR_RESPONSES)


class FactRequest(BaseModel):
    # Blank fields are rejected by the facts log with MISSING_FIELD, not by schema validation.
    source: str | None = Field(default=None, max_length=256)
    type: str | None = Field(default=None, max_length=256)
    entity: str | None = Field(default=None, max_length=512)
    meta: Any = None


class FactListResponse(BaseModel):
    items: list[Fact]


@router.post("", response_model=SuccessEnvelope[Fact])
async def record_fact(
    payload: FactRequest,
    request: Request,
    tenant: TenantContext = Depends(get_tenant),
    engine: HeartbeatEngine = Depends(get_engine),
) -> dict:
    fact = await engine.record_fact(
        tenant,
        source=payload.source,
        type=payload.type,
        entity=payload.entity,
        meta=payload.meta,
    )
    return success_response(request=request, data=fact)


@router.get("", response_model=SuccessEnvelope[FactListResponse])
async def list_facts(
    request: Request,
    tenant: TenantContext = Depends(get_tenant),
    engine: HeartbeatEngine = Depends(get_engine),
) -> dict:
    items = await engine.list_facts(tenant)
    return success_response(request=request, data=FactListResponse(items=items))
