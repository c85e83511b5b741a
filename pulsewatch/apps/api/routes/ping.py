from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, Header, Query, Request
from pydantic import BaseModel

from pulsewatch.apps.api.deps import client_ip, get_engine, get_tenant
from pulsewatch.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from pulsewatch.apps.api.response import SuccessEnvelope, success_response
from pulsewatch.services.heartbeat import HeartbeatEngine
from pulsewatch.services.tenants import TenantContext

router = APIRouter(tags=["heartbeat"], responses=DEFAULT_ERROR_RESPONSES)

TIMESTAMP_HEADER = "X-Heartbeat-Timestamp"
SIGNATURE_HEADER = "X-Heartbeat-Signature"


class PingRequest(BaseModel):
    id: str | None = None
    # Opaque caller metadata, stored and returned verbatim.
    meta: Any = None


class PingResponse(BaseModel):
    id: str
    state: str
    verified: bool
    last_seen: int
    previous_state: str | None = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "id": "worker-1",
                    "state": "OK",
                    "verified": True,
                    "last_seen": 1792224000000,
                    "previous_state": "WARN",
                }
            ]
        }
    }


@router.post("/ping", response_model=SuccessEnvelope[PingResponse])
async def ping(
    request: Request,
    payload: PingRequest | None = Body(default=None),
    client_id: str | None = Query(default=None, alias="id", max_length=256),
    timestamp: str | None = Header(default=None, alias=TIMESTAMP_HEADER, max_length=64),
    signature: str | None = Header(default=None, alias=SIGNATURE_HEADER, max_length=256),
    user_agent: str | None = Header(default=None, alias="User-Agent"),
    tenant: TenantContext = Depends(get_tenant),
    engine: HeartbeatEngine = Depends(get_engine),
) -> dict:
    # Accept the id from the JSON body or the query string so curl-style pings stay simple.
    body = payload or PingRequest()
    result = await engine.ingest_ping(
        tenant,
        body.id if body.id is not None else client_id,
        timestamp=timestamp,
        signature=signature,
        source_ip=client_ip(request),
        user_agent=user_agent,
        meta=body.meta,
    )
    data = PingResponse(
        id=result.record.id,
        state=result.state.value,
        verified=result.record.verified,
        last_seen=result.record.last_seen,
        previous_state=result.previous_state.value if result.previous_state else None,
    )
    return success_response(request=request, data=data)
