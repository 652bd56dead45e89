import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from crmops.api.routes import router as api_router
from crmops.context import get_correlation_id
from crmops.core.config import get_settings
from crmops.core.context import RequestContextMiddleware
from crmops.logging import configure_logging
from crmops.middleware.correlation_id import CorrelationIdMiddleware
from crmops.middleware.request_logging import RequestLoggingMiddleware
from crmops.otel import get_fastapi_server_request_hook, setup_otel
from crmops.platform.tenancy import TenantResolutionError


configure_logging()
logger = logging.getLogger("crmops.lifecycle")

settings = get_settings()

app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(RequestContextMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)


@app.exception_handler(TenantResolutionError)
async def tenant_resolution_error_handler(request: Request, exc: TenantResolutionError) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(getattr(request.state, "context", None), "request_id", None)
    return JSONResponse(status_code=400, content={"error": str(exc), "correlation_id": correlation_id})


if settings.otel_enabled:
    setup_otel("crmops-api", True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
