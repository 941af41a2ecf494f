"""
AI Gateway Package.

The AI Gateway provides a unified OpenAI-compatible API in front of
OpenAI, Anthropic and Gemini, plus Deepgram-backed voice endpoints.

Features:
- OpenAI-compatible endpoints (/v1/chat/completions, /v1/models)
- Per-provider request/response and streaming translation
- Subscription / session token authentication
- Per-caller, per-route fixed window rate limiting
- Request logging with request IDs

Usage:
    from aiproxy.gateway.routers import openai_router

    app.include_router(openai_router)
"""

from aiproxy.gateway.adapters import (
    AdapterBase,
    create_adapters,
    get_adapter,
    resolve_provider,
)
from aiproxy.gateway.errors import GatewayError
from aiproxy.gateway.middleware import (
    GatewayAuthenticator,
    AuthContext,
    RateLimiter,
    TracingMiddleware,
)
from aiproxy.gateway.routers import (
    health_router,
    openai_router,
    voice_router,
)

__all__ = [
    # Adapters
    "AdapterBase",
    "create_adapters",
    "get_adapter",
    "resolve_provider",
    # Errors
    "GatewayError",
    # Middleware
    "GatewayAuthenticator",
    "AuthContext",
    "RateLimiter",
    "TracingMiddleware",
    # Routers
    "health_router",
    "openai_router",
    "voice_router",
]
