from __future__ import annotations

from fastapi import Depends, Request

from crmops.context import get_correlation_id
from crmops.core.auth import AuthUser, get_current_user
from crmops.platform.tenancy.context import TenantContext, TenantResolutionError


def get_tenant_context(request: Request, auth_user: AuthUser = Depends(get_current_user)) -> TenantContext:
    request_context = getattr(request.state, "context", None)
    tenant_id = getattr(request_context, "tenant_id", None) or (request.headers.get("x-tenant-id") or "").strip()
    if not tenant_id:
        raise TenantResolutionError("x-tenant-id header is required")

    correlation_id = get_correlation_id() or getattr(request_context, "request_id", None)
    return TenantContext(
        tenant_id=tenant_id,
        user_id=auth_user.sub,
        correlation_id=correlation_id,
        roles=[str(role) for role in auth_user.roles],
    )
