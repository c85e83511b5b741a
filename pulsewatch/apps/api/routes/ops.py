from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from pulsewatch.apps.api.deps import get_registry, require_admin
from pulsewatch.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from pulsewatch.apps.api.response import SuccessEnvelope, success_response
from pulsewatch.services.tenants import TenantRegistry
from pulsewatch.services.telemetry import (
    availability,
    counters_snapshot,
    external_call_stats,
    p95_latency,
)

router = APIRouter(
    prefix="/ops",
    tags=["ops"],
    responses=DEFAULT_ERROR_RESPONSES,
    dependencies=[Depends(require_admin)],
)

_WINDOW_S = 300


class OpsMetricsResponse(BaseModel):
    window_s: int
    availability_pct: float | None
    p95_latency_ms: float | None
    counters: dict[str, int]
    external_calls: dict[str, dict[str, float | int | None]]
    tenants_cached: int


@router.get("/metrics", response_model=SuccessEnvelope[OpsMetricsResponse])
async def ops_metrics(
    request: Request,
    registry: TenantRegistry = Depends(get_registry),
) -> dict:
    # In-process view only; each replica reports its own counters.
    data = OpsMetricsResponse(
        window_s=_WINDOW_S,
        availability_pct=availability(_WINDOW_S),
        p95_latency_ms=p95_latency(_WINDOW_S),
        counters=counters_snapshot(),
        external_calls=external_call_stats(_WINDOW_S),
        tenants_cached=len(registry),
    )
    return success_response(request=request, data=data)
