from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from pulsewatch.apps.api.deps import get_app_settings, get_dispatcher
from pulsewatch.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from pulsewatch.apps.api.response import SuccessEnvelope, success_response
from pulsewatch.core.config import Settings
from pulsewatch.services.alerts import AlertDispatcher

router = APIRouter(tags=["health"], responses=DEFAULT_ERROR_RESPONSES)


class HealthResponse(BaseModel):
    status: str
    store_backend: str
    pending_alerts: int


@router.get("/health", response_model=SuccessEnvelope[HealthResponse])
async def health(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    dispatcher: AlertDispatcher = Depends(get_dispatcher),
) -> dict:
    # Liveness only; the store is not probed so a slow backend cannot fail the check.
    payload = HealthResponse(
        status="ok",
        store_backend=settings.store_backend,
        pending_alerts=dispatcher.pending,
    )
    return success_response(request=request, data=payload)
