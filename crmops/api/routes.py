from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from crmops.business.reporting.opportunities.api import router as opportunity_reporting_router
from crmops.core.auth import AuthUser, get_current_user
from crmops.core.config import get_settings
from crmops.metrics import generate_metrics_payload, metrics_content_type

router = APIRouter()
router.include_router(opportunity_reporting_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/metrics", tags=["system"])
def metrics(user: AuthUser = Depends(get_current_user)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    if not user.has_role("system.metrics.read"):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Missing permission: system.metrics.read")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
