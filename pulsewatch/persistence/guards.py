from __future__ import annotations

import re


# Tenant ids become key prefixes in shared stores, so separators are not allowed.
_TENANT_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")


class TenantPredicateError(RuntimeError):
    # Surface missing or malformed tenant ids before any store access happens.
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


def require_tenant_id(tenant_id: str | None) -> str:
    # Enforce non-empty, separator-free tenant identifiers for every keyspace.
    if not tenant_id or not tenant_id.strip():
        raise TenantPredicateError("Tenant id is required")
    normalized = tenant_id.strip()
    if not _TENANT_ID_RE.match(normalized):
        raise TenantPredicateError(f"Invalid tenant id: {normalized!r}")
    return normalized


def tenant_predicate(model, tenant_id: str) -> object:
    # Build tenant predicates through a single helper to guarantee guard coverage.
    return model.tenant_id == require_tenant_id(tenant_id)
