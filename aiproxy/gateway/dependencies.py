"""
Dependency injection utilities for the gateway routers.

Shared components (adapters, rate limiter, authenticator, Deepgram client)
are created in the application lifespan and stored on ``app.state``.

The auth and rate limit dependencies are chained: a rejected caller gets a
401 before any rate limit key is consulted, and a denied caller gets a 429
before any upstream call is made.
"""

from typing import Annotated, Any, Dict, Optional

from fastapi import Depends, Header, Request

from aiproxy.core.config import Settings
from aiproxy.gateway.adapters import AdapterBase
from aiproxy.gateway.errors import RateLimitError, ValidationError
from aiproxy.gateway.middleware import (
    AuthContext,
    GatewayAuthenticator,
    RateLimiter,
    RateLimitResult,
    TracingMiddleware,
)
from aiproxy.gateway.services.voice import DeepgramClient
from aiproxy.schemas.chat import Provider

_tracing = TracingMiddleware()


# ============================================================================
# Application State
# ============================================================================

def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_adapters(request: Request) -> Dict[Provider, AdapterBase]:
    return request.app.state.adapters


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def get_authenticator(request: Request) -> GatewayAuthenticator:
    return request.app.state.authenticator


def get_deepgram(request: Request) -> DeepgramClient:
    return request.app.state.deepgram


SettingsDep = Annotated[Settings, Depends(get_app_settings)]
AdaptersDep = Annotated[Dict[Provider, AdapterBase], Depends(get_adapters)]
DeepgramDep = Annotated[DeepgramClient, Depends(get_deepgram)]


# ============================================================================
# Authentication & Admission
# ============================================================================

async def get_auth_context(
    request: Request,
    authenticator: Annotated[GatewayAuthenticator, Depends(get_authenticator)],
    authorization: Optional[str] = Header(None)
) -> AuthContext:
    """Authenticate request and return auth context."""
    auth_ctx = await authenticator.authenticate(authorization)
    request.state.auth = auth_ctx
    return auth_ctx


AuthContextDep = Annotated[AuthContext, Depends(get_auth_context)]


def caller_identity(request: Request, auth_ctx: Optional[AuthContext]) -> str:
    """Rate limit identity: the authenticated user, else the client IP."""
    if auth_ctx is not None and auth_ctx.user_id:
        return f"user:{auth_ctx.user_id}"

    peer = request.client.host if request.client else None
    return f"ip:{_tracing.extract_client_ip(request.headers, peer)}"


async def enforce_rate_limit(
    request: Request,
    auth_ctx: AuthContextDep,
    rate_limiter: Annotated[RateLimiter, Depends(get_rate_limiter)]
) -> RateLimitResult:
    """
    Admit the request or reject it with 429.

    Raises:
        RateLimitError: If the caller's window for this route is exhausted
    """
    result = await rate_limiter.check(caller_identity(request, auth_ctx), request.url.path)
    request.state.rate_limit = result
    if not result.allowed:
        raise RateLimitError(result.reset_in)
    return result


AdmittedDep = Annotated[RateLimitResult, Depends(enforce_rate_limit)]


# ============================================================================
# Request Body
# ============================================================================

async def read_json_body(request: Request) -> Dict[str, Any]:
    """
    Parse the request body as a JSON object.

    Runs inside the handler, after authentication and admission.
    """
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Invalid JSON body")

    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body
