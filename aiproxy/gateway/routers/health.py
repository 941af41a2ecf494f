"""
Health check endpoints.

Neither endpoint requires authentication.
"""

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from aiproxy.gateway.dependencies import AdaptersDep, SettingsDep
from aiproxy.schemas.health import HealthResponse

router = APIRouter(tags=["Health"])


@router.get("/test", response_class=PlainTextResponse)
async def smoke_test():
    """Liveness probe kept for existing clients."""
    return "ai proxy is working!"


@router.get("/healthz", response_model=HealthResponse)
async def health_check(settings: SettingsDep, adapters: AdaptersDep):
    """
    Basic health check endpoint.

    Returns the service status and configured providers without
    calling any upstream.
    """
    return HealthResponse(
        status="healthy",
        version=settings.app.app_version,
        providers=[provider.value for provider in adapters],
        rate_limiting=settings.rate_limit.enabled,
    )
