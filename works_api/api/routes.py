from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from works_api.agreements.api import router as agreements_router
from works_api.core.auth import AuthUser, get_current_user
from works_api.core.config import get_settings
from works_api.metrics import generate_metrics_payload, metrics_content_type
from works_api.webhooks.api import router as webhooks_router

router = APIRouter()
router.include_router(webhooks_router)
router.include_router(agreements_router)


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
    if "system.metrics.read" not in user.roles:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Missing permission: system.metrics.read")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
