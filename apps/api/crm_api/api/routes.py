from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from crm_api.core.config import get_settings
from crm_api.crm.api import contacts_router, dealers_router, deals_router, leads_router, subsidiaries_router
from crm_api.identity.api import auth_router, users_router
from crm_api.metrics import generate_metrics_payload, metrics_content_type
from crm_api.platform.security.authenticator import require_roles
from crm_api.platform.security.context import IdentityContext
from crm_api.platform.security.roles import Role

router = APIRouter()
router.include_router(auth_router)
router.include_router(users_router)
router.include_router(leads_router)
router.include_router(deals_router)
router.include_router(contacts_router)
router.include_router(dealers_router)
router.include_router(subsidiaries_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/metrics", tags=["system"])
def metrics(identity: IdentityContext = Depends(require_roles(Role.SUPER_ADMIN))) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
