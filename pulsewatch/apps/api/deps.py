from __future__ import annotations

import hmac
from typing import AsyncGenerator

from fastapi import Depends, Header, Request

from pulsewatch.core.config import Settings
from pulsewatch.core.errors import ConfigError, UnauthorizedError
from pulsewatch.services.alerts import AlertDispatcher
from pulsewatch.services.heartbeat import HeartbeatEngine
from pulsewatch.services.tenants import TenantContext, TenantRegistry


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_engine(request: Request) -> HeartbeatEngine:
    return request.app.state.engine


def get_dispatcher(request: Request) -> AlertDispatcher:
    return request.app.state.dispatcher


def get_registry(request: Request) -> TenantRegistry:
    return request.app.state.registry


async def get_tenant(
    request: Request,
    x_tenant_id: str | None = Header(default=None, alias="X-Tenant-Id", max_length=128),
    settings: Settings = Depends(get_app_settings),
    registry: TenantRegistry = Depends(get_registry),
) -> AsyncGenerator[TenantContext, None]:
    # Lease the tenant context for the whole request so it cannot be evicted mid-flight.
    tenant_id = x_tenant_id if x_tenant_id is not None else settings.default_tenant
    async with registry.lease(tenant_id) as context:
        request.state.tenant_id = context.tenant_id
        yield context


def _parse_bearer_token(header_value: str | None) -> str | None:
    if not header_value:
        return None
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


def require_admin(
    authorization: str | None = Header(default=None),
    settings: Settings = Depends(get_app_settings),
) -> None:
    # A missing host token is an operator problem, reported apart from bad credentials.
    if not settings.admin_token:
        raise ConfigError("Admin token is not configured")
    token = _parse_bearer_token(authorization)
    if token is None or not hmac.compare_digest(token.encode("utf-8"), settings.admin_token.encode("utf-8")):
        raise UnauthorizedError("Missing or invalid admin token")


def client_ip(request: Request) -> str | None:
    # Prefer proxy-provided client addresses over the socket peer.
    connecting_ip = request.headers.get("CF-Connecting-IP")
    if connecting_ip:
        return connecting_ip.strip()
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else None
