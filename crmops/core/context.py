from dataclasses import dataclass

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from crmops.context import reset_tenant_id, set_tenant_id


@dataclass
class RequestContext:
    request_id: str
    correlation_id: str
    tenant_id: str | None


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        correlation_id = getattr(request.state, "correlation_id", None)
        tenant_id = (request.headers.get("x-tenant-id") or "").strip() or None
        request.state.context = RequestContext(
            request_id=correlation_id or "",
            correlation_id=correlation_id or "",
            tenant_id=tenant_id,
        )
        token = set_tenant_id(tenant_id)
        try:
            response = await call_next(request)
        finally:
            reset_tenant_id(token)
        response.headers["x-request-id"] = request.state.context.request_id
        return response
