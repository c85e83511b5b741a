from __future__ import annotations

from contextlib import asynccontextmanager
import time
from typing import AsyncIterator
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from pulsewatch.apps.api.errors import (
    http_exception_handler,
    pulse_error_handler,
    tenant_predicate_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from pulsewatch.apps.api.response import API_VERSION
from pulsewatch.apps.api.routes.admin import router as admin_router
from pulsewatch.apps.api.routes.clients import router as clients_router
from pulsewatch.apps.api.routes.facts import router as facts_router
from pulsewatch.apps.api.routes.health import router as health_router
from pulsewatch.apps.api.routes.ops import router as ops_router
from pulsewatch.apps.api.routes.ping import SIGNATURE_HEADER, TIMESTAMP_HEADER, router as ping_router
from pulsewatch.core.config import Settings, get_settings
from pulsewatch.core.errors import PulseError
from pulsewatch.core.logging import configure_logging
from pulsewatch.persistence.guards import TenantPredicateError
from pulsewatch.persistence.kv import KeyValueBackend, build_backend
from pulsewatch.services.alerts import AlertDispatcher
from pulsewatch.services.heartbeat import Clock, HeartbeatEngine
from pulsewatch.services.telemetry import record_request
from pulsewatch.services.tenants import TenantRegistry


def create_app(
    settings: Settings | None = None,
    *,
    backend: KeyValueBackend | None = None,
    dispatcher: AlertDispatcher | None = None,
    clock: Clock | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    dispatcher = dispatcher or AlertDispatcher(
        timeout_ms=settings.alert_webhook_timeout_ms,
        signing_secret=settings.alert_signing_secret,
    )
    registry = TenantRegistry(backend or build_backend(settings), max_tenants=settings.tenant_cache_size)
    engine = HeartbeatEngine(
        dispatcher=dispatcher,
        signing_secret=settings.heartbeat_signing_secret,
        clock=clock,
    )

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        # Let in-flight alert deliveries finish before closing store connections.
        await dispatcher.drain()
        await registry.close()

    app = FastAPI(title="Pulsewatch API", version=API_VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.dispatcher = dispatcher
    app.state.registry = registry
    app.state.engine = engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins(),
        allow_methods=["GET", "POST", "PUT", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Tenant-Id", TIMESTAMP_HEADER, SIGNATURE_HEADER],
    )

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        record_request(
            path=request.url.path,
            status_code=response.status_code,
            latency_ms=(time.monotonic() - start) * 1000.0,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    app.add_exception_handler(PulseError, pulse_error_handler)
    app.add_exception_handler(TenantPredicateError, tenant_predicate_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(health_router, prefix=f"/{API_VERSION}")
    app.include_router(ping_router, prefix=f"/{API_VERSION}")
    app.include_router(clients_router, prefix=f"/{API_VERSION}")
    app.include_router(facts_router, prefix=f"/{API_VERSION}")
    # Admin and ops routes require the bearer admin token.
    app.include_router(admin_router, prefix=f"/{API_VERSION}")
    app.include_router(ops_router, prefix=f"/{API_VERSION}")

    return app
