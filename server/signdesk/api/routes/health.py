from fastapi import APIRouter, Depends

from signdesk.api.dependencies.services import get_signing_provider
from signdesk.core.config import get_settings
from signdesk.integrations.esignature import SigningProvider


router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict:
    settings = get_settings()
    return {"status": "ok", "app": settings.app_name, "environment": settings.environment}


@router.get("/health/provider")
async def provider_health(provider: SigningProvider = Depends(get_signing_provider)) -> dict:
    healthy = await provider.health_check()
    return {"status": "ok" if healthy else "degraded", "provider": provider.provider_type.value}
