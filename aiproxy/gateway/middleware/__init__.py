"""
Gateway Middleware Package.

This module provides middleware components for the AI Gateway:
- Authentication: Subscription / session token validation
- Rate Limiting: Per-key admission control actors
- Tracing: Request ID generation and client identification

Usage:
    from aiproxy.gateway.middleware import (
        GatewayAuthenticator,
        RateLimiter,
        TracingMiddleware,
    )
"""

from aiproxy.gateway.middleware.auth import (
    GatewayAuthenticator,
    AuthContext,
    IdentityVerifier,
    SubscriptionCache,
    SubscriptionVerifier,
)
from aiproxy.gateway.middleware.rate_limit import (
    RateLimiter,
    RateLimiterNamespace,
    RateLimitActor,
    RateLimitKey,
    RateLimitResult,
    resolve_route_class,
)
from aiproxy.gateway.middleware.trace import (
    TracingMiddleware,
    RequestContext,
    RequestTimer,
    generate_request_id,
    get_request_id,
    set_request_context,
)

__all__ = [
    # Authentication
    "GatewayAuthenticator",
    "AuthContext",
    "IdentityVerifier",
    "SubscriptionCache",
    "SubscriptionVerifier",
    # Rate Limiting
    "RateLimiter",
    "RateLimiterNamespace",
    "RateLimitActor",
    "RateLimitKey",
    "RateLimitResult",
    "resolve_route_class",
    # Tracing
    "TracingMiddleware",
    "RequestContext",
    "RequestTimer",
    "generate_request_id",
    "get_request_id",
    "set_request_context",
]
