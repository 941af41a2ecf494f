"""
Gateway Routers Package.

This module provides the FastAPI routers for the AI Gateway:
- OpenAI-compatible API endpoints (/v1/chat/completions, /v1/models)
- Voice endpoints (/v1/listen, /v1/voice/*, /v1/text-to-speech)
- Health endpoints (/test, /healthz)

Usage:
    from aiproxy.gateway.routers import openai_router, voice_router, health_router

    app.include_router(health_router)
    app.include_router(openai_router)
    app.include_router(voice_router)
"""

from aiproxy.gateway.routers.health import router as health_router
from aiproxy.gateway.routers.openai_compat import router as openai_router
from aiproxy.gateway.routers.voice import router as voice_router

__all__ = [
    "health_router",
    "openai_router",
    "voice_router",
]
